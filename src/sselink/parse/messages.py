"""SSE message model and field assembler.

Groups decoded lines into fields and dispatches one message per blank line,
following the event stream interpretation rules:

- Lines starting with ':' are comments (ignored)
- 'event' sets the event type, last occurrence wins
- 'data' appends a segment; segments are joined with '\\n'
- 'id' sets the event id unless the value contains NUL
- 'retry' sets the reconnection time if the value is all ASCII digits
- Unknown fields are ignored
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

log = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class EventSourceMessage:
    """A single dispatched Server-Sent Event.

    ``None`` means the field did not occur in the record. An empty string is
    a real value: ``id=""`` is a valid resumption token.
    """

    id: str | None = None
    event: str | None = None
    data: str | None = None
    retry: int | None = None

    def to_bytes(self) -> bytes:
        """Serialize back to SSE wire format."""
        lines: list[str] = []
        if self.event is not None:
            lines.append(f"event: {self.event}")
        if self.data is not None:
            for data_line in self.data.split("\n"):
                lines.append(f"data: {data_line}")
        if self.id is not None:
            lines.append(f"id: {self.id}")
        if self.retry is not None:
            lines.append(f"retry: {self.retry}")
        lines.append("")  # blank line terminates the record
        return ("\n".join(lines) + "\n").encode()


@dataclass
class _PendingMessage:
    id: str | None = None
    event: str | None = None
    data: list[str] = field(default_factory=list)
    retry: int | None = None

    @property
    def is_empty(self) -> bool:
        return self.id is None and self.event is None and not self.data and self.retry is None

    def build(self) -> EventSourceMessage:
        return EventSourceMessage(
            id=self.id,
            event=self.event,
            data="\n".join(self.data) if self.data else None,
            retry=self.retry,
        )


def parse_field(line: str) -> tuple[str, str]:
    """Split a non-comment line into (name, value).

    At most one space after the colon is stripped; a line without a colon is
    a field name with an empty value.
    """
    if ":" not in line:
        return line, ""
    name, _, value = line.partition(":")
    if value.startswith(" "):
        value = value[1:]
    return name, value


class MessageAssembler:
    """Accumulates fields for one connection and dispatches on blank lines."""

    def __init__(self) -> None:
        self._pending = _PendingMessage()

    def feed(self, line: str) -> EventSourceMessage | None:
        """Process one line, returning a message when it completes a record."""
        if not line:
            if self._pending.is_empty:
                return None
            message = self._pending.build()
            self._pending = _PendingMessage()
            return message

        if line.startswith(":"):
            return None

        name, value = parse_field(line)

        if name == "event":
            self._pending.event = value
        elif name == "data":
            self._pending.data.append(value)
        elif name == "id":
            if "\0" in value:
                log.debug("id_with_nul_dropped")
            else:
                self._pending.id = value
        elif name == "retry":
            if value.isascii() and value.isdigit():
                self._pending.retry = int(value)
            else:
                log.debug("invalid_retry_field", value=value[:32])
        return None

    def reset(self) -> None:
        """Drop any partially accumulated record."""
        self._pending = _PendingMessage()
