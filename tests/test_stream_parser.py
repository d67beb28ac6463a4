"""Tests for the byte stream to message pipeline."""

import random

import pytest

from sselink.errors import DecodeError
from sselink.parse.messages import EventSourceMessage
from sselink.parse.stream import SSEParser, parse_stream

STREAM = (
    b": welcome\r\n"
    b"retry: 2500\r\n"
    b"\r\n"
    b"event: update\n"
    b"id: 1\n"
    b"data: {\"text\": \"h\xc3\xa9llo\"}\n"
    b"data: second line\n"
    b"\n"
    b"id:\r"
    b"data:  two spaces\r"
    b"\r"
    b"data: \xe2\x82\xac\n"
    b"\n"
    b"data: truncated"
)

EXPECTED = [
    EventSourceMessage(retry=2500),
    EventSourceMessage(id="1", event="update", data='{"text": "héllo"}\nsecond line'),
    EventSourceMessage(id="", data=" two spaces"),
    EventSourceMessage(data="€"),
]


def _parse_chunks(chunks: list[bytes]) -> list[EventSourceMessage]:
    parser = SSEParser()
    messages: list[EventSourceMessage] = []
    for chunk in chunks:
        messages.extend(parser.feed(chunk))
    messages.extend(parser.finish())
    return messages


async def _aiter(chunks):
    for chunk in chunks:
        yield chunk


class TestSSEParser:
    def test_whole_stream(self):
        assert _parse_chunks([STREAM]) == EXPECTED

    def test_single_byte_chunks(self):
        chunks = [STREAM[i:i + 1] for i in range(len(STREAM))]
        assert _parse_chunks(chunks) == EXPECTED

    def test_random_chunkings(self):
        rng = random.Random(1234)
        for _ in range(200):
            cuts = sorted(rng.sample(range(1, len(STREAM)), rng.randint(1, 30)))
            bounds = [0, *cuts, len(STREAM)]
            chunks = [STREAM[a:b] for a, b in zip(bounds, bounds[1:])]
            assert _parse_chunks(chunks) == EXPECTED

    def test_incremental_feed(self):
        parser = SSEParser()
        assert parser.feed(b"event: te") == []
        assert parser.feed(b"st\nda") == []
        messages = parser.feed(b"ta: hello\n\n")
        assert messages == [EventSourceMessage(event="test", data="hello")]

    def test_finish_drops_partial_record(self):
        parser = SSEParser()
        assert parser.feed(b"data: complete line\n") == []
        assert parser.finish() == []
        # A fresh record after finish starts clean
        assert parser.feed(b"data: next\n\n") == [EventSourceMessage(data="next")]

    def test_roundtrip(self):
        original = EventSourceMessage(id="7", event="test", data="hello\nworld", retry=10)
        assert _parse_chunks([original.to_bytes()]) == [original]


class TestParseStream:
    @pytest.mark.asyncio
    async def test_yields_in_dispatch_order(self):
        chunks = [b"data: 1\n\nda", b"ta: 2\n", b"\ndata: 3\n\n"]
        messages = [m async for m in parse_stream(_aiter(chunks))]
        assert [m.data for m in messages] == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_strict_decoding_raises(self):
        with pytest.raises(DecodeError):
            async for _ in parse_stream(_aiter([b"data: \xc3\x28\n\n"]), errors="strict"):
                pass

    @pytest.mark.asyncio
    async def test_messages_before_error_are_delivered(self):
        async def failing():
            yield b"data: ok\n\n"
            raise ConnectionResetError("peer reset")

        received = []
        with pytest.raises(ConnectionResetError):
            async for message in parse_stream(failing()):
                received.append(message)
        assert received == [EventSourceMessage(data="ok")]
