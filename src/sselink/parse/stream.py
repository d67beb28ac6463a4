"""Byte stream to message pipeline.

Composes the line splitter and the message assembler. A parser instance is
bound to a single connection: partial records are never carried over.
"""

from __future__ import annotations

from typing import AsyncIterable, AsyncIterator

from .lines import LineSplitter
from .messages import EventSourceMessage, MessageAssembler


class SSEParser:
    """Incremental SSE parser that processes byte chunks into messages."""

    def __init__(self, max_line_bytes: int = 0, errors: str = "replace") -> None:
        self.lines = LineSplitter(max_line_bytes=max_line_bytes, errors=errors)
        self.assembler = MessageAssembler()

    def feed(self, chunk: bytes) -> list[EventSourceMessage]:
        """Feed a chunk of bytes, return any complete messages."""
        messages: list[EventSourceMessage] = []
        for line in self.lines.feed(chunk):
            message = self.assembler.feed(line)
            if message is not None:
                messages.append(message)
        return messages

    def finish(self) -> list[EventSourceMessage]:
        """Signal end of stream; the unfinished record is discarded."""
        self.lines.finish()
        self.assembler.reset()
        return []


async def parse_stream(
    chunks: AsyncIterable[bytes],
    max_line_bytes: int = 0,
    errors: str = "replace",
) -> AsyncIterator[EventSourceMessage]:
    """Yield messages decoded from an async byte stream, in dispatch order."""
    parser = SSEParser(max_line_bytes=max_line_bytes, errors=errors)
    async for chunk in chunks:
        for message in parser.feed(chunk):
            yield message
    parser.finish()
