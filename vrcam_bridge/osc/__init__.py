"""OSC control path: wire codec, camera state, UDP transport."""

from .camera_state import CameraState, CameraStateController, ZoomRange
from .codec import OscMessage, decode, encode
from .control import ControlSurface
from .routing import OscRouting
from .transport import OscDispatcher, OscReceiver, OscSender

__all__ = [
    "CameraState",
    "CameraStateController",
    "ControlSurface",
    "OscDispatcher",
    "OscMessage",
    "OscReceiver",
    "OscRouting",
    "OscSender",
    "ZoomRange",
    "decode",
    "encode",
]
