"""Capture backends: ffmpeg processes that emit an MJPEG stream on stdout."""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import shutil
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence

from vrcam_bridge.core.asyncio_utils import cancel_and_wait, create_logged_task
from vrcam_bridge.core.config import CaptureSettings
from vrcam_bridge.core.logging_utils import get_module_logger
from vrcam_bridge.errors import BackendStartError

READ_CHUNK_SIZE = 64 * 1024
STOP_GRACE_SECONDS = 2.0
DEVICE_LIST_TIMEOUT = 10.0

# ffmpeg stderr lines worth surfacing, and progress lines that never are.
_STDERR_ERROR_MARKERS = ("error", "Error", "Failed", "Connection", "I/O error")
_STDERR_PROGRESS_MARKERS = ("frame=", "fps=", "bitrate=")


@dataclass(frozen=True)
class BackendDescriptor:
    """Static facts about a backend, fixed at startup."""

    name: str
    priority: int
    probe_timeout: float = 3.0
    auto_restart: bool = False
    restart_delay: float = 2.0


class CaptureBackend(ABC):
    """One capture source candidate.

    Lifecycle: :meth:`start` launches it (raising :class:`BackendStartError`
    if that is impossible), :meth:`read` returns raw stream bytes until it
    returns ``b""`` at end of stream, :meth:`wait` resolves with the exit
    status, and :meth:`stop` tears it down. ``stop`` must be safe to call
    at any point, more than once.
    """

    def __init__(self, descriptor: BackendDescriptor):
        self.descriptor = descriptor

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    @abstractmethod
    def is_running(self) -> bool:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def read(self) -> bytes:
        ...

    @abstractmethod
    async def wait(self) -> Optional[int]:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    def describe(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, priority={self.descriptor.priority})"


# ---------------------------------------------------------------------------
# ffmpeg discovery and DirectShow device parsing


def find_ffmpeg(configured: Optional[str] = None, *, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Locate an ffmpeg executable, or return None."""
    if configured:
        if Path(configured).is_file():
            return configured
        found = shutil.which(configured)
        if found:
            return found

    found = shutil.which("ffmpeg")
    if found:
        return found

    env = os.environ if environ is None else environ
    for variable, fallback in (("PROGRAMFILES", r"C:\Program Files"), ("PROGRAMFILES(X86)", r"C:\Program Files (x86)")):
        candidate = Path(env.get(variable) or fallback) / "FFmpeg" / "bin" / "ffmpeg.exe"
        if candidate.is_file():
            return str(candidate)
    return None


_DSHOW_DEVICE = re.compile(r'\[[^\]]*\]\s*"(?P<name>[^"]*)"(?:\s*\((?P<kind>[^)]*)\))?')


def parse_dshow_devices(output: str) -> List[str]:
    """Extract video device names from ``ffmpeg -list_devices true`` output.

    Handles both the sectioned layout of older ffmpeg builds ("DirectShow
    video devices" ... "DirectShow audio devices") and the per-line
    ``"Name" (video)`` suffix of newer ones. ``@device`` alternative names
    are skipped.
    """
    devices: List[str] = []
    in_video_section = False

    for line in output.splitlines():
        if "video devices" in line:
            in_video_section = True
            continue
        if "audio devices" in line:
            in_video_section = False
            continue

        match = _DSHOW_DEVICE.search(line)
        if not match:
            continue
        kind = (match.group("kind") or "").strip().lower()
        if kind:
            if "video" not in kind:
                continue
        elif not in_video_section:
            continue

        name = match.group("name").strip()
        if not name or name.startswith("@device") or name in devices:
            continue
        devices.append(name)

    return devices


def select_virtual_camera(
    devices: Iterable[str],
    preferred: str = "OBS Virtual Camera",
    *,
    override: Optional[str] = None,
) -> Optional[str]:
    """Pick the OBS virtual camera from ``devices``.

    An exact (case-insensitive) match for ``preferred`` wins; otherwise the
    first device naming both "obs" and "virtual". Lovense's re-branded OBS
    camera is never chosen. ``override`` is used when nothing matches.
    """
    fallback = None
    for name in devices:
        lower = name.lower()
        if "lovense" in lower:
            continue
        if lower == preferred.lower():
            return name
        if fallback is None and "obs" in lower and "virtual" in lower:
            fallback = name
    return fallback or override


# ---------------------------------------------------------------------------
# ffmpeg backends


class FFmpegBackend(CaptureBackend):
    """Runs ffmpeg with a backend-specific input and a shared MJPEG output."""

    requires_windows = False

    def __init__(self, descriptor: BackendDescriptor, settings: CaptureSettings, *, ffmpeg: Optional[str] = None):
        super().__init__(descriptor)
        self.settings = settings
        self.ffmpeg = ffmpeg
        self.logger = get_module_logger(f"Capture.{descriptor.name}")
        self.process: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    @abstractmethod
    def input_args(self) -> List[str]:
        ...

    def output_args(self) -> List[str]:
        width, height = self.settings.resolution
        return [
            "-c:v", "mjpeg",
            "-q:v", str(self.settings.quality),
            "-s", f"{width}x{height}",
            "-r", str(self.settings.fps),
            "-f", "mjpeg",
            "pipe:1",
        ]

    def command(self, ffmpeg: Optional[str] = None) -> List[str]:
        executable = ffmpeg or self.ffmpeg or "ffmpeg"
        return [executable, "-hide_banner", "-nostdin", *self.input_args(), *self.output_args()]

    async def prepare(self, ffmpeg: str) -> None:
        """Hook for backends that must inspect the system before launching."""

    async def start(self) -> None:
        if self.process is not None:
            self.logger.warning("Capture process already running")
            return
        if self.requires_windows and sys.platform != "win32":
            raise BackendStartError(f"{self.name} capture uses DirectShow, which needs Windows")

        ffmpeg = self.ffmpeg or find_ffmpeg(self.settings.ffmpeg_path)
        if not ffmpeg:
            raise BackendStartError("ffmpeg not found; install FFmpeg or set capture.ffmpeg_path")
        self.ffmpeg = ffmpeg

        await self.prepare(ffmpeg)
        cmd = self.command(ffmpeg)
        self.logger.info("Starting capture: %s", self.describe())
        self.logger.debug("Command: %s", " ".join(cmd))

        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise BackendStartError(f"failed to launch ffmpeg: {exc}") from exc

        self.logger.debug("ffmpeg started with PID: %d", self.process.pid)
        self._stderr_task = create_logged_task(
            self._stderr_reader(self.process),
            logger=self.logger,
            context=f"{self.name}-stderr",
        )

    async def read(self) -> bytes:
        if self.process is None or self.process.stdout is None:
            return b""
        return await self.process.stdout.read(READ_CHUNK_SIZE)

    async def wait(self) -> Optional[int]:
        if self.process is None:
            return None
        return await self.process.wait()

    async def stop(self, timeout: float = STOP_GRACE_SECONDS) -> None:
        process = self.process
        if process is None:
            return

        if process.returncode is None:
            self.logger.debug("Terminating ffmpeg (PID %d)", process.pid)
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                self.logger.warning("ffmpeg did not terminate, killing...")
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        await cancel_and_wait(self._stderr_task)
        self._stderr_task = None
        self.process = None
        self.logger.info("Capture stopped: %s", self.name)

    async def _stderr_reader(self, process: asyncio.subprocess.Process) -> None:
        if process.stderr is None:
            return
        while True:
            line = await process.stderr.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").strip()
            if not text or any(marker in text for marker in _STDERR_PROGRESS_MARKERS):
                continue
            if any(marker in text for marker in _STDERR_ERROR_MARKERS):
                self.logger.warning("ffmpeg: %s", text)
            else:
                self.logger.debug("ffmpeg: %s", text)


class SenderBackend(FFmpegBackend):
    """DirectShow capture of a named texture sender (e.g. VRCSender1)."""

    requires_windows = True

    def input_args(self) -> List[str]:
        return [
            "-f", "dshow",
            "-rtbufsize", "200M",
            "-framerate", str(self.settings.fps),
            "-i", f"video={self.settings.sender}",
        ]

    def describe(self) -> str:
        return f"sender {self.settings.sender}"


class NetworkStreamBackend(FFmpegBackend):
    """Pull from a network stream URL, letting ffmpeg reconnect on drops."""

    def input_args(self) -> List[str]:
        return [
            "-timeout", str(int(self.settings.network_timeout * 1_000_000)),
            "-reconnect", "1",
            "-reconnect_at_eof", "1",
            "-reconnect_streamed", "1",
            "-reconnect_delay_max", "2",
            "-i", self.settings.stream_url,
        ]

    def describe(self) -> str:
        return f"stream {self.settings.stream_url}"


class VirtualCameraBackend(FFmpegBackend):
    """DirectShow capture of OBS's virtual camera, found by device listing."""

    requires_windows = True

    def __init__(self, descriptor: BackendDescriptor, settings: CaptureSettings, *, ffmpeg: Optional[str] = None):
        super().__init__(descriptor, settings, ffmpeg=ffmpeg)
        self.device: Optional[str] = None

    async def list_devices(self, ffmpeg: str) -> List[str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                ffmpeg, "-hide_banner", "-f", "dshow", "-list_devices", "true", "-i", "dummy",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise BackendStartError(f"failed to list DirectShow devices: {exc}") from exc

        try:
            output, _ = await asyncio.wait_for(proc.communicate(), timeout=DEVICE_LIST_TIMEOUT)
        except asyncio.TimeoutError as exc:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise BackendStartError("timed out listing DirectShow devices") from exc

        return parse_dshow_devices(output.decode("utf-8", errors="replace"))

    async def prepare(self, ffmpeg: str) -> None:
        devices = await self.list_devices(ffmpeg)
        if devices:
            self.logger.info("Found %d video device(s): %s", len(devices), ", ".join(devices))
        else:
            self.logger.warning("No DirectShow video devices detected")

        device = select_virtual_camera(devices, override=self.settings.virtual_camera)
        if not device:
            raise BackendStartError(
                "OBS Virtual Camera not found; start it in OBS (Tools > Start Virtual Camera) "
                "or set OBS_CAMERA to the device name"
            )
        self.device = device

    def input_args(self) -> List[str]:
        device = self.device or self.settings.virtual_camera or "OBS Virtual Camera"
        return [
            "-f", "dshow",
            "-rtbufsize", "200M",
            "-framerate", str(self.settings.fps),
            "-i", f"video={device}",
        ]

    def describe(self) -> str:
        return f"virtual camera {self.device or '<undetected>'}"


class DesktopBackend(FFmpegBackend):
    """Screen grab of the whole desktop; the last resort."""

    def __init__(
        self,
        descriptor: BackendDescriptor,
        settings: CaptureSettings,
        *,
        ffmpeg: Optional[str] = None,
        platform: Optional[str] = None,
        display: Optional[str] = None,
    ):
        super().__init__(descriptor, settings, ffmpeg=ffmpeg)
        self.platform = platform or sys.platform
        self.display = display or os.environ.get("DISPLAY") or ":0.0"

    def input_args(self) -> List[str]:
        grabber, source = ("gdigrab", "desktop") if self.platform == "win32" else ("x11grab", self.display)
        return ["-f", grabber, "-framerate", str(self.settings.fps), "-i", source]

    def describe(self) -> str:
        return "desktop"


# ---------------------------------------------------------------------------
# Priority list


def build_backends(settings: CaptureSettings, *, ffmpeg: Optional[str] = None) -> List[CaptureBackend]:
    """Return every configured backend, highest priority first."""
    probe = settings.probe_timeout
    backends: List[CaptureBackend] = [
        SenderBackend(BackendDescriptor("sender", 1, probe), settings, ffmpeg=ffmpeg),
    ]
    if settings.stream_url:
        backends.append(
            NetworkStreamBackend(
                BackendDescriptor("stream", 2, probe, auto_restart=True, restart_delay=settings.restart_delay),
                settings,
                ffmpeg=ffmpeg,
            )
        )
    backends.append(VirtualCameraBackend(BackendDescriptor("virtual_camera", 3, probe), settings, ffmpeg=ffmpeg))
    backends.append(DesktopBackend(BackendDescriptor("desktop", 4, probe), settings, ffmpeg=ffmpeg))
    return backends


def backend_names(backends: Sequence[CaptureBackend]) -> List[str]:
    return [backend.name for backend in backends]


__all__ = [
    "BackendDescriptor",
    "CaptureBackend",
    "DesktopBackend",
    "FFmpegBackend",
    "NetworkStreamBackend",
    "SenderBackend",
    "VirtualCameraBackend",
    "backend_names",
    "build_backends",
    "find_ffmpeg",
    "parse_dshow_devices",
    "select_virtual_camera",
]
