"""Error hierarchy for event stream subscriptions.

Every failure the lifecycle controller sees is funneled into one of four
kinds before it reaches the caller's ``on_error`` policy.
"""

from __future__ import annotations


class SSEError(Exception):
    """Base error for all subscription errors."""

    def __init__(self, message: str, *, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class TransportError(SSEError):
    """Connection could not be established or the body read was interrupted."""


class ValidationError(SSEError):
    """The open validator rejected the response."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        content_type: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, cause=cause)
        self.status = status
        self.content_type = content_type


class DecodeError(SSEError):
    """The byte stream cannot be split into lines or decoded as UTF-8."""


class HandlerError(SSEError):
    """A caller-supplied message or close handler raised."""

    def __init__(self, message: str, *, handler: str, cause: BaseException | None = None):
        super().__init__(message, cause=cause)
        self.handler = handler
