"""Connection lifecycle state machine.

IDLE ──[subscribe / timer fired / visible again]──→ CONNECTING
                                                        │
                                              [open validator passed]
                                                        │
                                                        v
                                                      OPEN
                                                        │
                          ┌─────────────────────────────┼──────────────────┐
                          │                             │                  │
                    [body ended]                [error, retry]        [hidden]
                          │                             │                  │
                          v                             v                  v
                      CLOSING ──[on_close raised]──→ RETRY_WAIT          IDLE
                          │                             │
                  [on_close returned]             [timer fired]
                          │                             │
                          v                             v
                     TERMINATED                    CONNECTING

Any non-terminal state may move to TERMINATED on external cancellation or a
fatal error policy decision. TERMINATED is final.
"""

from __future__ import annotations

import enum

import structlog

log = structlog.get_logger()


class ConnectionState(enum.Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    RETRY_WAIT = "RETRY_WAIT"
    TERMINATED = "TERMINATED"


# Valid transitions: (from_state, to_state)
VALID_TRANSITIONS: set[tuple[ConnectionState, ConnectionState]] = {
    (ConnectionState.IDLE, ConnectionState.CONNECTING),
    (ConnectionState.CONNECTING, ConnectionState.OPEN),
    (ConnectionState.CONNECTING, ConnectionState.RETRY_WAIT),
    (ConnectionState.OPEN, ConnectionState.CLOSING),
    (ConnectionState.OPEN, ConnectionState.RETRY_WAIT),
    (ConnectionState.CLOSING, ConnectionState.RETRY_WAIT),
    (ConnectionState.RETRY_WAIT, ConnectionState.CONNECTING),
    # Visibility: abort the attempt and pause, or reconnect immediately
    (ConnectionState.CONNECTING, ConnectionState.IDLE),
    (ConnectionState.OPEN, ConnectionState.IDLE),
    (ConnectionState.CLOSING, ConnectionState.IDLE),
    (ConnectionState.RETRY_WAIT, ConnectionState.IDLE),
    (ConnectionState.CONNECTING, ConnectionState.CONNECTING),
    (ConnectionState.OPEN, ConnectionState.CONNECTING),
    (ConnectionState.CLOSING, ConnectionState.CONNECTING),
    # Termination from any live state
    (ConnectionState.IDLE, ConnectionState.TERMINATED),
    (ConnectionState.CONNECTING, ConnectionState.TERMINATED),
    (ConnectionState.OPEN, ConnectionState.TERMINATED),
    (ConnectionState.CLOSING, ConnectionState.TERMINATED),
    (ConnectionState.RETRY_WAIT, ConnectionState.TERMINATED),
}


class InvalidTransition(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: ConnectionState, to_state: ConnectionState) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} → {to_state.value}")


def validate_transition(from_state: ConnectionState, to_state: ConnectionState) -> None:
    """Validate a state transition, raising InvalidTransition if not allowed."""
    if (from_state, to_state) not in VALID_TRANSITIONS:
        raise InvalidTransition(from_state, to_state)


def transition(
    current: ConnectionState,
    target: ConnectionState,
    sub_id: str,
    trigger: str = "",
) -> ConnectionState:
    """Execute a validated state transition, logging the change."""
    validate_transition(current, target)
    log.debug(
        "state_transition",
        sub_id=sub_id,
        from_state=current.value,
        to_state=target.value,
        trigger=trigger,
    )
    return target
