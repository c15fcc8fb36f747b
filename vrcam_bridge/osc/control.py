"""Request-level operations for the web control layer.

The serving layer hands us decoded JSON bodies; everything here works on
plain dicts so it stays independent of whichever HTTP framework fronts it.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Mapping

from vrcam_bridge.core.logging_utils import get_module_logger

from .camera_state import STATE_FIELDS, CameraState, CameraStateController
from .routing import OscRouting

logger = get_module_logger("ControlSurface")

# Body key -> state field for relative moves.
DELTA_KEYS: Dict[str, str] = {f"d{name}": name for name in STATE_FIELDS}


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _require_mapping(body: Any) -> Mapping[str, Any]:
    if not isinstance(body, Mapping):
        raise ValueError("request body must be a JSON object")
    return body


class ControlSurface:

    def __init__(self, controller: CameraStateController):
        self.controller = controller

    def get_state(self) -> Dict[str, Any]:
        return {
            "state": self.controller.snapshot().as_dict(),
            "cfg": self._routing_dict(self.controller.routing),
        }

    def update_config(self, body: Any) -> Dict[str, Any]:
        """Apply routing changes from ``body``; unknown keys are ignored."""
        body = _require_mapping(body)
        changes: Dict[str, Any] = {}

        host = body.get("oscHost")
        if host:
            if not isinstance(host, str):
                raise ValueError("oscHost must be a string")
            changes["host"] = host.strip()

        port = body.get("oscPort")
        if port:
            try:
                port = int(float(port))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"oscPort must be numeric, got {body['oscPort']!r}") from exc
            if not 0 < port < 65536:
                raise ValueError(f"oscPort out of range: {port}")
            changes["port"] = port

        pose = body.get("addressPose")
        if pose:
            changes["address_pose"] = str(pose)

        if "addressZoom" in body:
            zoom = body["addressZoom"]
            changes["address_zoom"] = "" if zoom is None else str(zoom)

        if changes:
            self.controller.routing = self.controller.routing.with_updates(**changes)
        return self._routing_dict(self.controller.routing)

    def move(self, body: Any) -> CameraState:
        """Apply an absolute or relative move, then broadcast the result."""
        body = _require_mapping(body)

        if body.get("absolute"):
            values = {name: body[name] for name in STATE_FIELDS if _is_number(body.get(name))}
            state = self.controller.apply_absolute(values)
        else:
            deltas = {field: body[key] for key, field in DELTA_KEYS.items() if _is_number(body.get(key))}
            state = self.controller.apply_delta(deltas)

        self.controller.broadcast()
        return state

    def set_flying(self, enabled: bool) -> bool:
        logger.info("Flying mode %s", "on" if enabled else "off")
        return self.controller.send_flying(bool(enabled))

    @staticmethod
    def _routing_dict(routing: OscRouting) -> Dict[str, Any]:
        return {
            "oscHost": routing.host,
            "oscPort": routing.port,
            "addressPose": routing.address_pose,
            "addressZoom": routing.address_zoom,
        }


__all__ = ["ControlSurface", "DELTA_KEYS"]
