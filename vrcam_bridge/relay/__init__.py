"""Video relay: capture backends, MJPEG demuxing and HTTP fan-out."""

from .backends import BackendDescriptor, CaptureBackend, build_backends
from .capture_manager import CaptureSourceManager, CaptureState
from .demuxer import FrameDemuxer
from .multiplexer import FrameMultiplexer, LatestFrame
from .server import RelayServer

__all__ = [
    "BackendDescriptor",
    "CaptureBackend",
    "CaptureSourceManager",
    "CaptureState",
    "FrameDemuxer",
    "FrameMultiplexer",
    "LatestFrame",
    "RelayServer",
    "build_backends",
]
