"""Authoritative virtual-camera pose and the controller that owns it.

The controller is the only writer. Every mutation builds a new frozen
:class:`CameraState`, clamps the zoom into the configured range and swaps
it in under a lock, so readers only ever see complete, in-range states.
"""

from __future__ import annotations

import math
import threading
from dataclasses import asdict, dataclass, fields, replace
from typing import Dict, Mapping, Optional

from vrcam_bridge.core.logging_utils import get_module_logger

from .codec import OscMessage
from .routing import ADDRESS_FLYING, POSE_FIELDS, OscRouting
from .transport import OscDispatcher, OscSender


@dataclass(frozen=True, slots=True)
class ZoomRange:
    minimum: float
    maximum: float

    def __post_init__(self) -> None:
        if not self.minimum <= self.maximum:
            raise ValueError(f"zoom range is inverted: [{self.minimum}, {self.maximum}]")

    def clamp(self, value: float) -> float:
        if math.isnan(value):
            return self.minimum
        return max(self.minimum, min(self.maximum, value))


# VRChat's user camera zoom slider, and a field-of-view style deployment.
ZOOM_RANGE = ZoomRange(20.0, 150.0)
FOV_RANGE = ZoomRange(1.0, 179.0)


@dataclass(frozen=True, slots=True)
class CameraState:
    x: float = 0.0
    y: float = 1.6
    z: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0
    roll: float = 0.0
    zoom: float = 45.0

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


STATE_FIELDS = tuple(f.name for f in fields(CameraState))


class CameraStateController:
    """Owns the single live :class:`CameraState` and broadcasts it over OSC."""

    def __init__(
        self,
        sender: Optional[OscSender] = None,
        routing: Optional[OscRouting] = None,
        *,
        initial: Optional[CameraState] = None,
        zoom_range: ZoomRange = ZOOM_RANGE,
    ) -> None:
        self.logger = get_module_logger("CameraStateController")
        self.sender = sender
        self.zoom_range = zoom_range
        self._routing = routing or OscRouting()
        self._lock = threading.Lock()
        start = initial or CameraState()
        self._state = replace(start, zoom=zoom_range.clamp(start.zoom))

    # ------------------------------------------------------------------
    # State

    @property
    def routing(self) -> OscRouting:
        return self._routing

    @routing.setter
    def routing(self, routing: OscRouting) -> None:
        self._routing = routing
        self.logger.info(
            "OSC target set to %s:%d (pose=%s zoom=%s)",
            routing.host, routing.port, routing.address_pose, routing.address_zoom or "<off>",
        )

    def snapshot(self) -> CameraState:
        return self._state

    def apply_delta(self, changes: Mapping[str, float]) -> CameraState:
        """Add each given component to the current state."""
        self._check_fields(changes)
        with self._lock:
            current = self._state
            updated = {name: getattr(current, name) + float(value) for name, value in changes.items()}
            self._state = self._clamped(replace(current, **updated))
            return self._state

    def apply_absolute(self, values: Mapping[str, float]) -> CameraState:
        """Overwrite each given component of the current state."""
        self._check_fields(values)
        with self._lock:
            updated = {name: float(value) for name, value in values.items()}
            self._state = self._clamped(replace(self._state, **updated))
            return self._state

    def _clamped(self, state: CameraState) -> CameraState:
        zoom = self.zoom_range.clamp(state.zoom)
        if zoom == state.zoom:
            return state
        return replace(state, zoom=zoom)

    @staticmethod
    def _check_fields(values: Mapping[str, float]) -> None:
        unknown = set(values) - set(STATE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown camera state field(s): {', '.join(sorted(unknown))}")

    # ------------------------------------------------------------------
    # Outbound

    def broadcast(self) -> int:
        """Send the current state to the routing target. Returns messages sent."""
        if self.sender is None:
            self.logger.debug("No OSC sender attached; broadcast skipped")
            return 0

        state = self._state
        routing = self._routing
        sent = 0
        for address, names in routing.mappings():
            values = [getattr(state, name) for name in names]
            if self.sender.send(routing.target, address, "f" * len(values), values):
                sent += 1
        return sent

    def send_flying(self, enabled: bool) -> bool:
        """Toggle the camera's flying mode with a bare boolean tag."""
        if self.sender is None:
            return False
        return self.sender.send(self._routing.target, ADDRESS_FLYING, "T" if enabled else "F")

    # ------------------------------------------------------------------
    # Inbound feedback from the VR client

    def register_handlers(self, dispatcher: OscDispatcher) -> None:
        """Map the routing's pose/zoom addresses onto this controller."""
        dispatcher.map(self._routing.address_pose, self.handle_pose_message)
        if self._routing.address_zoom:
            dispatcher.map(self._routing.address_zoom, self.handle_zoom_message)

    def handle_pose_message(self, message: OscMessage) -> None:
        values = _numeric_prefix(message, len(POSE_FIELDS))
        if values is None:
            self.logger.debug("Ignoring %s with %d argument(s)", message.address, len(message))
            return
        state = self.apply_absolute(dict(zip(POSE_FIELDS, values)))
        self.logger.debug(
            "Updated camera pose: x=%.2f y=%.2f z=%.2f pitch=%.2f yaw=%.2f roll=%.2f",
            state.x, state.y, state.z, state.pitch, state.yaw, state.roll,
        )

    def handle_zoom_message(self, message: OscMessage) -> None:
        values = _numeric_prefix(message, 1)
        if values is None:
            return
        state = self.apply_absolute({"zoom": values[0]})
        self.logger.debug("Updated zoom: %.2f", state.zoom)


def _numeric_prefix(message: OscMessage, count: int) -> Optional[list[float]]:
    head = message.arguments[:count]
    if len(head) < count:
        return None
    if any(isinstance(value, bool) or not isinstance(value, (int, float)) for value in head):
        return None
    return [float(value) for value in head]


__all__ = [
    "CameraState",
    "CameraStateController",
    "FOV_RANGE",
    "STATE_FIELDS",
    "ZOOM_RANGE",
    "ZoomRange",
]
