"""Typed configuration for the bridge."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from vrcam_bridge.errors import ConfigError

from .logging_utils import LoggerLike, ensure_structured_logger
from .paths import BRIDGE_LOG_FILE

Resolution = Tuple[int, int]
Pose = Tuple[float, float, float, float, float, float]

DEFAULT_OSC_LISTEN_HOST = "0.0.0.0"
DEFAULT_OSC_LISTEN_PORT = 9000
DEFAULT_OSC_TARGET_HOST = "127.0.0.1"
DEFAULT_OSC_TARGET_PORT = 9000
DEFAULT_ADDRESS_POSE = "/usercamera/Pose"
DEFAULT_ADDRESS_ZOOM = "/usercamera/Zoom"
DEFAULT_ZOOM_MIN = 20.0
DEFAULT_ZOOM_MAX = 150.0
DEFAULT_ZOOM = 45.0
DEFAULT_POSE: Pose = (0.0, 1.6, 0.0, 0.0, 0.0, 0.0)

CAPTURE_MODE_AUTO = "auto"
CAPTURE_BACKEND_NAMES = ("sender", "stream", "virtual_camera", "desktop")
# Mode names accepted from older deployments.
CAPTURE_MODE_ALIASES = {
    "camera": CAPTURE_MODE_AUTO,
    "spout": "sender",
    "obs": "virtual_camera",
}
DEFAULT_CAPTURE_MODE = CAPTURE_MODE_AUTO
DEFAULT_SENDER_NAME = "VRCSender1"
DEFAULT_STREAM_URL = "https://stream.vrcdn.live/live/"
DEFAULT_VIRTUAL_CAMERA_NAME = "OBS Virtual Camera"
DEFAULT_PROBE_TIMEOUT = 3.0
DEFAULT_RESTART_DELAY = 2.0
DEFAULT_OUTPUT_RESOLUTION: Resolution = (1280, 720)
DEFAULT_OUTPUT_FPS = 30
DEFAULT_MJPEG_QUALITY = 5
DEFAULT_NETWORK_TIMEOUT = 5.0

DEFAULT_RELAY_HOST = "0.0.0.0"
DEFAULT_RELAY_PORT = 8888
DEFAULT_TICK_INTERVAL_MS = 33
DEFAULT_BOUNDARY = "frame"

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FILE = BRIDGE_LOG_FILE

# Environment variable -> config key
ENV_OVERRIDES = {
    "SPOUT_SENDER": "capture.sender",
    "CAPTURE_MODE": "capture.mode",
    "STREAM_URL": "capture.stream_url",
    "OBS_CAMERA": "capture.virtual_camera",
}


@dataclass(slots=True)
class OscSettings:
    listen_host: str
    listen_port: int
    target_host: str
    target_port: int
    address_pose: str
    address_zoom: str
    zoom_min: float
    zoom_max: float
    initial_zoom: float
    initial_pose: Pose
    strict_decoding: bool = False


@dataclass(slots=True)
class CaptureSettings:
    mode: str = DEFAULT_CAPTURE_MODE
    sender: str = DEFAULT_SENDER_NAME
    stream_url: str = DEFAULT_STREAM_URL
    virtual_camera: Optional[str] = None
    ffmpeg_path: Optional[str] = None
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    restart_delay: float = DEFAULT_RESTART_DELAY
    resolution: Resolution = DEFAULT_OUTPUT_RESOLUTION
    fps: int = DEFAULT_OUTPUT_FPS
    quality: int = DEFAULT_MJPEG_QUALITY
    network_timeout: float = DEFAULT_NETWORK_TIMEOUT

    @property
    def forced_backend(self) -> Optional[str]:
        return None if self.mode == CAPTURE_MODE_AUTO else self.mode


@dataclass(slots=True)
class RelaySettings:
    host: str = DEFAULT_RELAY_HOST
    port: int = DEFAULT_RELAY_PORT
    interval_ms: int = DEFAULT_TICK_INTERVAL_MS
    boundary: str = DEFAULT_BOUNDARY

    @property
    def interval(self) -> float:
        return self.interval_ms / 1000.0


@dataclass(slots=True)
class LoggingSettings:
    level: str
    file: Path


@dataclass(slots=True)
class BridgeConfig:
    osc: OscSettings
    capture: CaptureSettings
    relay: RelaySettings
    logging: LoggingSettings
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Public API


def load_config(
    raw: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    logger: LoggerLike = None,
) -> BridgeConfig:
    """Build a typed config from parsed config-file values.

    Precedence, lowest first: ``raw`` (config file), ``environ`` (the
    relay's historical environment variables), ``overrides`` (CLI flags).
    ``None`` override values are ignored. Pass ``environ={}`` to ignore
    the process environment.
    """

    log = ensure_structured_logger(logger, fallback_name=__name__)
    merged: Dict[str, Any] = dict(raw or {})

    env = os.environ if environ is None else environ
    for variable, key in ENV_OVERRIDES.items():
        value = env.get(variable)
        if value:
            merged[key] = value

    if overrides:
        for key, value in overrides.items():
            if value is not None:
                merged[key] = value

    zoom_min = _coerce_float(merged, ("osc.zoom_min",), DEFAULT_ZOOM_MIN, logger=log)
    zoom_max = _coerce_float(merged, ("osc.zoom_max",), DEFAULT_ZOOM_MAX, logger=log)
    if zoom_min > zoom_max:
        raise ConfigError(f"osc.zoom_min ({zoom_min}) is greater than osc.zoom_max ({zoom_max})")

    osc = OscSettings(
        listen_host=_coerce_str(merged, ("osc.listen_host",), DEFAULT_OSC_LISTEN_HOST),
        listen_port=_coerce_port(merged, ("osc.listen_port",), DEFAULT_OSC_LISTEN_PORT, logger=log),
        target_host=_coerce_str(merged, ("osc.target_host", "osc_host"), DEFAULT_OSC_TARGET_HOST),
        target_port=_coerce_port(merged, ("osc.target_port", "osc_port"), DEFAULT_OSC_TARGET_PORT, logger=log),
        address_pose=_coerce_str(merged, ("osc.address_pose",), DEFAULT_ADDRESS_POSE),
        address_zoom=_coerce_address(merged, ("osc.address_zoom",), DEFAULT_ADDRESS_ZOOM),
        zoom_min=zoom_min,
        zoom_max=zoom_max,
        initial_zoom=_coerce_float(merged, ("osc.initial_zoom",), DEFAULT_ZOOM, logger=log),
        initial_pose=_coerce_pose(merged, ("osc.initial_pose",), DEFAULT_POSE, logger=log),
        strict_decoding=_coerce_bool(merged, ("osc.strict_decoding",), False),
    )

    capture = CaptureSettings(
        mode=_coerce_capture_mode(merged, ("capture.mode",)),
        sender=_coerce_str(merged, ("capture.sender",), DEFAULT_SENDER_NAME),
        stream_url=_coerce_address(merged, ("capture.stream_url",), DEFAULT_STREAM_URL),
        virtual_camera=_coerce_optional_str(merged, ("capture.virtual_camera",), None),
        ffmpeg_path=_coerce_optional_str(merged, ("capture.ffmpeg_path",), None),
        probe_timeout=_coerce_positive_float(merged, ("capture.probe_timeout",), DEFAULT_PROBE_TIMEOUT, logger=log),
        restart_delay=_coerce_positive_float(merged, ("capture.restart_delay",), DEFAULT_RESTART_DELAY, logger=log),
        resolution=_coerce_resolution(merged, ("capture.resolution",), DEFAULT_OUTPUT_RESOLUTION, logger=log),
        fps=_coerce_int(merged, ("capture.fps",), DEFAULT_OUTPUT_FPS, logger=log),
        quality=_coerce_int(merged, ("capture.quality",), DEFAULT_MJPEG_QUALITY, logger=log),
        network_timeout=_coerce_positive_float(
            merged, ("capture.network_timeout",), DEFAULT_NETWORK_TIMEOUT, logger=log
        ),
    )

    if capture.mode == "stream" and not capture.stream_url:
        raise ConfigError("capture.mode is 'stream' but capture.stream_url is empty")

    relay = RelaySettings(
        host=_coerce_str(merged, ("relay.host",), DEFAULT_RELAY_HOST),
        port=_coerce_port(merged, ("relay.port",), DEFAULT_RELAY_PORT, logger=log),
        interval_ms=max(1, _coerce_int(merged, ("relay.interval_ms",), DEFAULT_TICK_INTERVAL_MS, logger=log)),
        boundary=_coerce_str(merged, ("relay.boundary",), DEFAULT_BOUNDARY),
    )

    logging_settings = LoggingSettings(
        level=_coerce_str(merged, ("logging.level", "log_level"), DEFAULT_LOG_LEVEL).upper(),
        file=_coerce_path(merged, ("logging.file", "log_file"), DEFAULT_LOG_FILE),
    )

    return BridgeConfig(
        osc=osc,
        capture=capture,
        relay=relay,
        logging=logging_settings,
        raw=merged,
    )


# ---------------------------------------------------------------------------
# Internal helpers


def _first_present(data: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _coerce_bool(data: Mapping[str, Any], keys: Tuple[str, ...], default: bool) -> bool:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _coerce_str(data: Mapping[str, Any], keys: Tuple[str, ...], default: str) -> str:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    text = str(raw).strip()
    return text or default


def _coerce_optional_str(data: Mapping[str, Any], keys: Tuple[str, ...], default: Optional[str]) -> Optional[str]:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    text = str(raw).strip()
    return text if text else default


def _coerce_address(data: Mapping[str, Any], keys: Tuple[str, ...], default: str) -> str:
    """Like :func:`_coerce_str`, but an explicitly empty value stays empty."""
    raw = _first_present(data, keys)
    if raw is None:
        return default
    return str(raw).strip()


def _coerce_int(data: Mapping[str, Any], keys: Tuple[str, ...], default: int, *, logger) -> int:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s: %r, using default %s", keys[0], raw, default)
        return default


def _coerce_port(data: Mapping[str, Any], keys: Tuple[str, ...], default: int, *, logger) -> int:
    value = _coerce_int(data, keys, default, logger=logger)
    if not 0 <= value < 65536:
        logger.warning("Port out of range for %s: %s, using default %s", keys[0], value, default)
        return default
    return value


def _coerce_float(data: Mapping[str, Any], keys: Tuple[str, ...], default: float, *, logger) -> float:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid number for %s: %r, using default %s", keys[0], raw, default)
        return default


def _coerce_positive_float(data: Mapping[str, Any], keys: Tuple[str, ...], default: float, *, logger) -> float:
    value = _coerce_float(data, keys, default, logger=logger)
    if value <= 0:
        logger.warning("%s must be positive, using default %s", keys[0], default)
        return default
    return value


def _coerce_path(data: Mapping[str, Any], keys: Tuple[str, ...], default: Path) -> Path:
    raw = _first_present(data, keys)
    if raw is None or str(raw).strip() == "":
        return default
    return Path(str(raw).strip()).expanduser()


def _coerce_resolution(
    data: Mapping[str, Any],
    keys: Tuple[str, ...],
    default: Resolution,
    *,
    logger,
) -> Resolution:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    try:
        return _parse_resolution(raw)
    except (TypeError, ValueError):
        logger.warning("Failed to parse resolution from %r, using default %s", raw, default)
        return default


def _parse_resolution(raw: Any) -> Resolution:
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        width, height = int(raw[0]), int(raw[1])
    elif isinstance(raw, str) and "x" in raw.lower():
        w, h = raw.lower().split("x", 1)
        width, height = int(w.strip()), int(h.strip())
    else:
        raise ValueError(f"unrecognised resolution {raw!r}")
    if width <= 0 or height <= 0:
        raise ValueError(f"resolution must be positive, got {width}x{height}")
    return width, height


def _coerce_pose(data: Mapping[str, Any], keys: Tuple[str, ...], default: Pose, *, logger) -> Pose:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return default
    parts = raw if isinstance(raw, (list, tuple)) else str(raw).split(",")
    try:
        values = tuple(float(part) for part in parts)
    except (TypeError, ValueError):
        values = ()
    if len(values) != 6:
        logger.warning("osc.initial_pose needs six numbers (x,y,z,pitch,yaw,roll), got %r", raw)
        return default
    return values  # type: ignore[return-value]


def _coerce_capture_mode(data: Mapping[str, Any], keys: Tuple[str, ...]) -> str:
    raw = _first_present(data, keys)
    if raw is None or str(raw).strip() == "":
        return DEFAULT_CAPTURE_MODE
    mode = str(raw).strip().lower().replace("-", "_")
    mode = CAPTURE_MODE_ALIASES.get(mode, mode)
    if mode != CAPTURE_MODE_AUTO and mode not in CAPTURE_BACKEND_NAMES:
        choices = ", ".join((CAPTURE_MODE_AUTO,) + CAPTURE_BACKEND_NAMES)
        raise ConfigError(f"Unknown capture mode {raw!r} (expected one of: {choices})")
    return mode


__all__ = [
    "BridgeConfig",
    "CAPTURE_BACKEND_NAMES",
    "CAPTURE_MODE_AUTO",
    "CaptureSettings",
    "LoggingSettings",
    "OscSettings",
    "RelaySettings",
    "load_config",
]
