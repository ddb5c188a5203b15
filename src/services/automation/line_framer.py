"""Split a chunked byte stream into newline-delimited text lines."""

from __future__ import annotations

import codecs


class LineFramer:
    """Accumulate chunks and hand back complete lines in arrival order.

    The incremental decoder keeps an incomplete multi-byte sequence across
    ``feed`` calls, so a chunk boundary inside a character never corrupts it.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[str]:
        """Append ``chunk`` and return every line it completed."""
        if isinstance(chunk, bytes | bytearray):
            text = self._decoder.decode(bytes(chunk))
        else:
            text = chunk
        if not text:
            return []
        self._buffer += text
        return self._drain()

    def flush(self) -> str | None:
        """Return the trailing partial line, if any, and reset the framer."""
        # Held bytes are never a newline, so the final decode completes no line.
        remainder = (self._buffer + self._decoder.decode(b"", final=True)).removesuffix(
            "\r"
        )
        self._buffer = ""
        self._decoder.reset()
        return remainder if remainder.strip() else None

    @property
    def pending(self) -> str:
        return self._buffer

    def _drain(self) -> list[str]:
        lines: list[str] = []
        while True:
            index = self._buffer.find("\n")
            if index < 0:
                break
            lines.append(self._buffer[:index].removesuffix("\r"))
            self._buffer = self._buffer[index + 1 :]
        return lines
