"""Tests for SSE message assembly."""

from sselink.parse.messages import EventSourceMessage, MessageAssembler, parse_field


def _feed_all(assembler: MessageAssembler, lines: list[str]) -> list[EventSourceMessage]:
    messages = []
    for line in lines:
        message = assembler.feed(line)
        if message is not None:
            messages.append(message)
    return messages


class TestEventSourceMessage:
    def test_to_bytes_basic(self):
        message = EventSourceMessage(event="update", data='{"n":1}')
        result = message.to_bytes()
        assert b"event: update\n" in result
        assert b'data: {"n":1}\n' in result
        assert result.endswith(b"\n\n")

    def test_to_bytes_multiline_data(self):
        result = EventSourceMessage(data="line1\nline2").to_bytes()
        assert b"data: line1\n" in result
        assert b"data: line2\n" in result

    def test_to_bytes_empty_id_kept(self):
        result = EventSourceMessage(id="", data="x").to_bytes()
        assert b"id: \n" in result

    def test_to_bytes_omits_absent_fields(self):
        assert EventSourceMessage(retry=500).to_bytes() == b"retry: 500\n\n"


class TestParseField:
    def test_single_leading_space_stripped(self):
        assert parse_field("data: hello world") == ("data", "hello world")

    def test_additional_spaces_preserved(self):
        assert parse_field("data:   indented") == ("data", "  indented")

    def test_no_space(self):
        assert parse_field("data:tight") == ("data", "tight")

    def test_value_with_colons(self):
        assert parse_field("data: a:b: c") == ("data", "a:b: c")

    def test_no_colon(self):
        assert parse_field("data") == ("data", "")


class TestMessageAssembler:
    def test_single_event(self):
        messages = _feed_all(MessageAssembler(), ["event: test", "data: hello", ""])
        assert messages == [EventSourceMessage(event="test", data="hello")]

    def test_multiline_data(self):
        messages = _feed_all(MessageAssembler(), ["data: a", "data: b", ""])
        assert messages[0].data == "a\nb"

    def test_empty_data_lines(self):
        messages = _feed_all(MessageAssembler(), ["data", "data", ""])
        assert messages[0].data == "\n"

    def test_comment_ignored(self):
        messages = _feed_all(MessageAssembler(), [": this is ignored", "data: hi", ""])
        assert messages == [EventSourceMessage(data="hi")]

    def test_comment_only_record_not_dispatched(self):
        assert _feed_all(MessageAssembler(), [": keepalive", ""]) == []

    def test_blank_line_without_fields_is_noop(self):
        assert _feed_all(MessageAssembler(), ["", "", ""]) == []

    def test_event_last_occurrence_wins(self):
        messages = _feed_all(MessageAssembler(), ["event: a", "event: b", "data: x", ""])
        assert messages[0].event == "b"

    def test_field_without_value(self):
        messages = _feed_all(MessageAssembler(), ["event", "data: hi", ""])
        assert messages[0].event == ""

    def test_empty_id_distinct_from_absent(self):
        messages = _feed_all(MessageAssembler(), ["id:", "data: a", "", "data: b", ""])
        assert messages[0].id == ""
        assert messages[1].id is None

    def test_id_with_nul_dropped(self):
        messages = _feed_all(MessageAssembler(), ["id: 1", "id: bad\0id", "data: x", ""])
        assert messages[0].id == "1"

    def test_id_only_record_dispatched(self):
        messages = _feed_all(MessageAssembler(), ["id: 9", ""])
        assert messages == [EventSourceMessage(id="9")]

    def test_retry_field(self):
        messages = _feed_all(MessageAssembler(), ["retry: 3000", "data: hi", ""])
        assert messages[0].retry == 3000

    def test_non_numeric_retry_ignored(self):
        messages = _feed_all(MessageAssembler(), ["retry: soon", "retry: 1.5", "retry: -3", "data: x", ""])
        assert messages[0].retry is None

    def test_non_ascii_digits_retry_ignored(self):
        messages = _feed_all(MessageAssembler(), ["retry: ٣", "data: x", ""])
        assert messages[0].retry is None

    def test_unknown_fields_ignored(self):
        messages = _feed_all(MessageAssembler(), ["foo: bar", ": x", "data: y", ""])
        assert messages == [EventSourceMessage(data="y")]

    def test_unknown_field_alone_not_dispatched(self):
        assert _feed_all(MessageAssembler(), ["foo: bar", ""]) == []

    def test_buffer_reset_after_dispatch(self):
        messages = _feed_all(MessageAssembler(), ["event: a", "id: 1", "data: x", "", "data: y", ""])
        assert messages[1] == EventSourceMessage(data="y")

    def test_reset_drops_partial_record(self):
        assembler = MessageAssembler()
        assembler.feed("data: partial")
        assembler.reset()
        assert assembler.feed("") is None
