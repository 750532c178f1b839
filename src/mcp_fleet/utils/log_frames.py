"""Decoding of Docker's multiplexed stdout/stderr log stream.

Every frame is an 8 byte header followed by the payload::

    [stream_type(1), 0, 0, 0, size(4, big-endian)] payload

``demux_lines`` handles a complete response body; ``FrameDemultiplexer``
handles a followed stream whose chunks may split frames anywhere.
"""

import re
import struct
from dataclasses import dataclass
from typing import Iterator, List

FRAME_HEADER_SIZE = 8

STREAM_NAMES = {0: "stdin", 1: "stdout", 2: "stderr"}

# SGR colors plus cursor movement / erase sequences
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")

_HEADER = struct.Struct(">BxxxL")


@dataclass
class LogFrame:
    """One decoded frame of the multiplexed stream."""

    stream: str
    payload: bytes

    def text(self) -> str:
        """Decode the payload as UTF-8."""
        return self.payload.decode("utf-8", errors="replace")


def clean_log_line(text: str) -> str:
    """Strip ANSI escapes and carriage returns, then trim."""
    text = _ANSI_ESCAPE.sub("", text)
    return text.replace("\r", "").strip()


def frame_lines(frame: LogFrame) -> List[str]:
    """Return the non-empty cleaned lines carried by a frame."""
    lines = []
    for raw in frame.text().split("\n"):
        line = clean_log_line(raw)
        if line:
            lines.append(line)
    return lines


def _parse_frames(buffer: bytes | bytearray | memoryview, offset: int = 0) -> tuple[List[LogFrame], int]:
    """Parse complete frames starting at offset; return them and the consumed offset."""
    frames = []
    size = len(buffer)
    while offset + FRAME_HEADER_SIZE <= size:
        stream_type, length = _HEADER.unpack_from(buffer, offset)
        end = offset + FRAME_HEADER_SIZE + length
        if end > size:
            break
        frames.append(
            LogFrame(
                stream=STREAM_NAMES.get(stream_type, "stdout"),
                payload=bytes(buffer[offset + FRAME_HEADER_SIZE : end]),
            )
        )
        offset = end
    return frames, offset


def iter_frames(buffer: bytes) -> Iterator[LogFrame]:
    """
    Iterate over the complete frames of a buffer.

    A truncated trailing frame ends the iteration without error.
    """
    frames, _ = _parse_frames(buffer)
    yield from frames


def demux_lines(buffer: bytes) -> List[str]:
    """
    Decode a complete multiplexed log body into clean text lines.

    Args:
        buffer: Raw response body from the logs endpoint

    Returns:
        Non-empty lines in stream order; partial trailing data is dropped
    """
    lines: List[str] = []
    for frame in iter_frames(buffer):
        lines.extend(frame_lines(frame))
    return lines


class FrameDemultiplexer:
    """
    Stateful frame parser for a live log stream.

    Bytes that do not yet form a complete frame are kept and prepended to
    the next chunk.
    """

    def __init__(self) -> None:
        """Initialize an empty accumulator."""
        self._buffer = bytearray()

    @property
    def pending_bytes(self) -> int:
        """Number of buffered bytes waiting for the rest of their frame."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[LogFrame]:
        """
        Add a chunk and return every frame it completes.

        Args:
            chunk: Raw bytes as delivered by the transport

        Returns:
            Frames completed by this chunk, in order
        """
        if chunk:
            self._buffer.extend(chunk)
        frames, consumed = _parse_frames(self._buffer)
        if consumed:
            del self._buffer[:consumed]
        return frames

    def feed_lines(self, chunk: bytes) -> List[tuple[str, str]]:
        """Add a chunk and return ``(stream, line)`` pairs for completed frames."""
        result = []
        for frame in self.feed(chunk):
            for line in frame_lines(frame):
                result.append((frame.stream, line))
        return result
