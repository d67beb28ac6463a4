"""Incremental line splitter for SSE byte streams.

Accepts arbitrarily sized byte chunks and returns complete lines with their
terminator removed. LF, CR and CRLF all end a line, including a CRLF whose
two bytes arrive in separate chunks.
"""

from __future__ import annotations

import re

import structlog

from sselink.errors import DecodeError

log = structlog.get_logger()

_EOL = re.compile(rb"\r\n|\r|\n")
_BOM = "\ufeff"


class LineSplitter:
    """Splits a byte stream into decoded text lines."""

    def __init__(self, max_line_bytes: int = 0, errors: str = "replace") -> None:
        self.max_line_bytes = max_line_bytes
        self.errors = errors
        self._buffer = bytearray()
        # A chunk ended in CR: an LF opening the next chunk belongs to it.
        self._skip_lf = False
        self._first_line = True

    @property
    def pending_bytes(self) -> int:
        """Number of buffered bytes of the unterminated tail."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        """Feed a chunk of bytes, return every line it completes."""
        lines: list[str] = []
        if not chunk:
            return lines

        pos = 0
        if self._skip_lf:
            self._skip_lf = False
            if chunk[0] == 0x0A:
                pos = 1

        for match in _EOL.finditer(chunk, pos):
            line_bytes = chunk[pos:match.start()]
            if self._buffer:
                self._buffer.extend(line_bytes)
                line_bytes = bytes(self._buffer)
                self._buffer.clear()
            lines.append(self._decode(line_bytes))
            pos = match.end()

        if pos == len(chunk) and chunk[-1] == 0x0D:
            self._skip_lf = True

        if pos < len(chunk):
            self._buffer.extend(chunk[pos:])
            if self.max_line_bytes and len(self._buffer) > self.max_line_bytes:
                size = len(self._buffer)
                self._buffer.clear()
                raise DecodeError(
                    f"Line exceeds {self.max_line_bytes} bytes without a terminator ({size} buffered)"
                )

        return lines

    def finish(self) -> list[str]:
        """Signal end of stream. An unterminated tail is a truncated record and is dropped."""
        if self._buffer:
            log.debug("unterminated_tail_discarded", size=len(self._buffer))
        self._buffer.clear()
        self._skip_lf = False
        return []

    def _decode(self, line_bytes: bytes) -> str:
        try:
            text = line_bytes.decode("utf-8", self.errors)
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Invalid UTF-8 in event stream: {exc.reason}", cause=exc) from exc
        if self._first_line:
            self._first_line = False
            text = text.removeprefix(_BOM)
        return text
