"""Explicit cancellation handles."""

from __future__ import annotations

from typing import Callable

import structlog

log = structlog.get_logger()


class CancelToken:
    """A one-shot cancellation signal.

    Callbacks registered before cancellation run once, in registration order,
    when ``cancel()`` is first called. Callbacks registered after cancellation
    run immediately. Repeated ``cancel()`` calls have no effect.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str = ""
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                log.exception("cancel_callback_error", reason=reason)

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback``; return a function that deregisters it."""
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return remove
