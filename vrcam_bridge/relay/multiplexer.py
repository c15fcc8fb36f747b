"""Latest-frame slot fanned out to independently paced viewers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set

from vrcam_bridge.core.asyncio_utils import cancel_and_wait, create_logged_task
from vrcam_bridge.core.logging_utils import get_module_logger

DEFAULT_BOUNDARY = "frame"
DEFAULT_INTERVAL = 0.033

FrameWriter = Callable[[bytes], Awaitable[None]]


@dataclass(frozen=True)
class LatestFrame:
    data: bytes
    sequence: int


def format_part(data: bytes, boundary: str = DEFAULT_BOUNDARY, content_type: str = "image/jpeg") -> bytes:
    """Render one ``multipart/x-mixed-replace`` part."""
    header = (
        f"--{boundary}\r\n"
        f"Content-Type: {content_type}\r\n"
        f"Content-Length: {len(data)}\r\n"
        "\r\n"
    ).encode("ascii")
    return header + data + b"\r\n"


class Viewer:
    """One attached connection with its own tick timer."""

    def __init__(self, mux: "FrameMultiplexer", viewer_id: int, write: FrameWriter, interval: float):
        self.viewer_id = viewer_id
        self.interval = interval
        self.frames_sent = 0
        self.last_sequence: Optional[int] = None
        self._mux = mux
        self._write = write
        self._closed = asyncio.Event()
        self.task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def _run(self) -> None:
        logger = self._mux.logger
        try:
            while True:
                frame = self._mux.latest
                if frame is not None:
                    await self._write(format_part(frame.data, self._mux.boundary))
                    self.frames_sent += 1
                    self.last_sequence = frame.sequence
                await asyncio.sleep(self.interval)
        except OSError as exc:
            logger.info("Viewer %d disconnected: %s", self.viewer_id, exc)
        finally:
            self._mux._forget(self)
            self._closed.set()


class FrameMultiplexer:
    """Holds the newest frame and serves it to every attached viewer.

    The producer replaces :attr:`latest` wholesale; viewers read it on
    their own schedule, so a slow viewer never holds up the producer or
    another viewer.
    """

    def __init__(self, *, interval: float = DEFAULT_INTERVAL, boundary: str = DEFAULT_BOUNDARY):
        self.interval = interval
        self.boundary = boundary
        self.logger = get_module_logger("FrameMultiplexer")
        self._latest: Optional[LatestFrame] = None
        self._viewers: Set[Viewer] = set()
        self._next_viewer_id = 1

    @property
    def latest(self) -> Optional[LatestFrame]:
        return self._latest

    @property
    def frame_count(self) -> int:
        return self._latest.sequence if self._latest else 0

    @property
    def viewer_count(self) -> int:
        return len(self._viewers)

    def publish(self, data: bytes) -> LatestFrame:
        sequence = self._latest.sequence + 1 if self._latest else 1
        frame = LatestFrame(bytes(data), sequence)
        self._latest = frame
        return frame

    def attach(self, write: FrameWriter, *, interval: Optional[float] = None) -> Viewer:
        viewer = Viewer(self, self._next_viewer_id, write, self.interval if interval is None else interval)
        self._next_viewer_id += 1
        self._viewers.add(viewer)
        viewer.task = create_logged_task(
            viewer._run(),
            logger=self.logger,
            context=f"viewer-{viewer.viewer_id}",
        )
        self.logger.info("Viewer %d attached (%d active)", viewer.viewer_id, len(self._viewers))
        return viewer

    async def detach(self, viewer: Viewer) -> None:
        await cancel_and_wait(viewer.task)
        self._forget(viewer)
        viewer._closed.set()

    async def close(self) -> None:
        viewers = list(self._viewers)
        for viewer in viewers:
            await cancel_and_wait(viewer.task)
            viewer._closed.set()
        self._viewers.clear()
        if viewers:
            self.logger.info("Closed %d viewer(s)", len(viewers))

    def _forget(self, viewer: Viewer) -> None:
        if viewer in self._viewers:
            self._viewers.discard(viewer)
            self.logger.info("Viewer %d detached (%d active)", viewer.viewer_id, len(self._viewers))
