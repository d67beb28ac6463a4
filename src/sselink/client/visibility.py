"""Host visibility capability.

A subscription can pause while its host is backgrounded and reconnect as
soon as it comes back to the foreground. Hosts that have no such notion use
``NullVisibility``; hosts that do drive a ``ManualVisibility``.
"""

from __future__ import annotations

from typing import Callable, Protocol

import structlog

log = structlog.get_logger()

VisibilityListener = Callable[[], None]


class Visibility(Protocol):
    def is_hidden(self) -> bool: ...

    def subscribe(self, listener: VisibilityListener) -> Callable[[], None]:
        """Register ``listener()``, called after each change; return a function that deregisters it."""
        ...


class NullVisibility:
    """Always visible, never notifies."""

    def is_hidden(self) -> bool:
        return False

    def subscribe(self, listener: VisibilityListener) -> Callable[[], None]:
        return lambda: None


class ManualVisibility:
    """Visibility state set by the host application."""

    def __init__(self, hidden: bool = False) -> None:
        self._hidden = hidden
        self._listeners: list[VisibilityListener] = []

    def is_hidden(self) -> bool:
        return self._hidden

    def set_hidden(self, hidden: bool) -> None:
        """Update the state and notify listeners if it changed."""
        if hidden == self._hidden:
            return
        self._hidden = hidden
        log.debug("visibility_changed", hidden=hidden, listeners=len(self._listeners))
        for listener in list(self._listeners):
            listener()

    def subscribe(self, listener: VisibilityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
