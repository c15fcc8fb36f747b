"""Split a raw MJPEG byte stream into complete JPEG frames."""

from __future__ import annotations

from typing import Callable

FrameSink = Callable[[bytes], None]

START_MARKER = b"\xff\xd8"
END_MARKER = b"\xff\xd9"


class FrameDemuxer:
    """Reassembles JPEG frames from arbitrarily fragmented chunks.

    Each completed frame (start marker through end marker inclusive) is
    passed to ``sink`` in arrival order. Bytes before a start marker are
    discarded, so the buffer never holds more than one partial frame plus
    a single trailing byte that may be the first half of a split marker.
    """

    def __init__(self, sink: FrameSink):
        self._sink = sink
        self._buffer = bytearray()
        # Offset to resume the end-marker search from once a frame has begun.
        self._scan_from = 0
        self.frame_count = 0
        self.bytes_received = 0

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()
        self._scan_from = 0

    def feed(self, chunk: bytes) -> int:
        """Consume ``chunk``. Returns the number of frames it completed."""
        if not chunk:
            return 0
        self.bytes_received += len(chunk)
        buf = self._buffer
        buf.extend(chunk)
        emitted = 0

        while True:
            if self._scan_from == 0:
                start = buf.find(START_MARKER)
                if start < 0:
                    # Keep a trailing 0xFF in case the marker straddles chunks.
                    if buf[-1:] == START_MARKER[:1]:
                        del buf[:-1]
                    else:
                        buf.clear()
                    return emitted
                if start:
                    del buf[:start]
                self._scan_from = len(START_MARKER)

            end = buf.find(END_MARKER, self._scan_from)
            if end < 0:
                # Back up one byte so a marker split across chunks is found.
                self._scan_from = max(len(START_MARKER), len(buf) - 1)
                return emitted

            frame_end = end + len(END_MARKER)
            frame = bytes(buf[:frame_end])
            del buf[:frame_end]
            self._scan_from = 0
            self.frame_count += 1
            emitted += 1
            self._sink(frame)
