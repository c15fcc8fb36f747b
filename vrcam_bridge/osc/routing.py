"""Where camera state goes when it is broadcast."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Iterator, Tuple

POSE_FIELDS: Tuple[str, ...] = ("x", "y", "z", "pitch", "yaw", "roll")
ZOOM_FIELDS: Tuple[str, ...] = ("zoom",)

DEFAULT_TARGET_HOST = "127.0.0.1"
DEFAULT_TARGET_PORT = 9000
DEFAULT_ADDRESS_POSE = "/usercamera/Pose"
DEFAULT_ADDRESS_ZOOM = "/usercamera/Zoom"
ADDRESS_FLYING = "/usercamera/Flying"


@dataclass(frozen=True, slots=True)
class OscRouting:
    """Target endpoint plus the address each group of state fields is sent to.

    An empty ``address_zoom`` disables the zoom message.
    """

    host: str = DEFAULT_TARGET_HOST
    port: int = DEFAULT_TARGET_PORT
    address_pose: str = DEFAULT_ADDRESS_POSE
    address_zoom: str = DEFAULT_ADDRESS_ZOOM

    @property
    def target(self) -> Tuple[str, int]:
        return self.host, self.port

    def mappings(self) -> Iterator[Tuple[str, Tuple[str, ...]]]:
        """Yield ``(address, fields)`` in broadcast order."""
        yield self.address_pose, POSE_FIELDS
        if self.address_zoom:
            yield self.address_zoom, ZOOM_FIELDS

    def with_updates(self, **changes: Any) -> "OscRouting":
        return replace(self, **changes)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = [
    "ADDRESS_FLYING",
    "DEFAULT_ADDRESS_POSE",
    "DEFAULT_ADDRESS_ZOOM",
    "OscRouting",
    "POSE_FIELDS",
    "ZOOM_FIELDS",
]
