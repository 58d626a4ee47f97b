"""Split a chunked byte stream into complete lines."""

from __future__ import annotations


class LineSplitter:
    """Buffers partial lines between chunks of a single stream.

    Lines are returned without their trailing newline. Whatever follows the
    last newline is held back until more data arrives or the stream closes.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, chunk: bytes) -> list[bytes]:
        """Add a chunk and return every line it completes."""
        if self._closed:
            raise ValueError("feed() called on a closed LineSplitter")
        if not chunk:
            return []

        self._buffer.extend(chunk)
        # Only the new bytes can complete a line
        if b"\n" not in chunk:
            return []
        *lines, rest = self._buffer.split(b"\n")
        self._buffer = rest
        return [bytes(line) for line in lines]

    def close(self) -> list[bytes]:
        """Return the trailing partial line, if any, and close the stream."""
        if self._closed:
            return []
        self._closed = True
        rest = bytes(self._buffer)
        self._buffer.clear()
        return [rest] if rest else []
