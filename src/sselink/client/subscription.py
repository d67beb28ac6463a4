"""Connection lifecycle controller for one event stream subscription.

Opens the stream through the transport, feeds the body to the parser,
keeps the resumption state (last event id, retry interval) and decides
after every failure whether to retry or give up. At most one connection
attempt and one retry timer exist at any time.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

import structlog

from sselink.client.cancel import CancelToken
from sselink.client.state_machine import ConnectionState, transition
from sselink.client.transport import HttpxTransport, Request, Response, Transport
from sselink.client.visibility import NullVisibility, Visibility
from sselink.config import ClientConfig
from sselink.errors import HandlerError, SSEError, TransportError, ValidationError
from sselink.parse.messages import EventSourceMessage
from sselink.parse.stream import parse_stream

log = structlog.get_logger()

EVENT_STREAM_CONTENT_TYPE = "text/event-stream"

OpenHandler = Callable[[Response], Awaitable[None] | None]
MessageHandler = Callable[[EventSourceMessage], Awaitable[None] | None]
CloseHandler = Callable[[], Awaitable[None] | None]
ErrorHandler = Callable[[SSEError], Awaitable[float | None] | float | None]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def default_on_open(response: Response) -> None:
    """Accept only 2xx responses whose media type is text/event-stream."""
    content_type = response.header("content-type")
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if not 200 <= response.status < 300:
        raise ValidationError(
            f"Expected a 2xx status, Actual: {response.status}",
            status=response.status,
            content_type=content_type,
        )
    if media_type != EVENT_STREAM_CONTENT_TYPE:
        raise ValidationError(
            f"Expected content-type to be {EVENT_STREAM_CONTENT_TYPE}, Actual: {content_type}",
            status=response.status,
            content_type=content_type,
        )


@dataclass
class Attempt:
    """The in-flight connection attempt."""

    number: int
    token: CancelToken
    task: asyncio.Task[None]


@dataclass
class RetryTimer:
    """A scheduled reconnection."""

    delay_ms: float
    handle: asyncio.TimerHandle

    def cancel(self) -> None:
        self.handle.cancel()


class Subscription:
    """Owns one logical event stream subscription until it terminates."""

    def __init__(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: bytes | str | None = None,
        on_open: OpenHandler | None = None,
        on_message: MessageHandler | None = None,
        on_close: CloseHandler | None = None,
        on_error: ErrorHandler | None = None,
        open_when_hidden: bool | None = None,
        transport: Transport | None = None,
        signal: CancelToken | None = None,
        visibility: Visibility | None = None,
        config: ClientConfig | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.url = url
        self.method = method
        self.body = body
        # Owned copy; callers' mappings are never mutated.
        self.headers: dict[str, str] = dict(headers or {})
        if not any(name.lower() == "accept" for name in self.headers):
            self.headers["accept"] = EVENT_STREAM_CONTENT_TYPE

        self.on_open = on_open or default_on_open
        self.on_message = on_message
        self.on_close = on_close
        self.on_error = on_error
        self.open_when_hidden = (
            self.config.open_when_hidden if open_when_hidden is None else open_when_hidden
        )
        self.transport = transport
        self.signal = signal
        self.visibility: Visibility = visibility or NullVisibility()
        self.sub_id = uuid.uuid4().hex[:12]

        # Resumption state; a caller-supplied last-event-id header seeds it.
        self.last_event_id: str | None = None
        for name in [n for n in self.headers if n.lower() == "last-event-id"]:
            self.last_event_id = self.headers.pop(name)
        self.retry_interval_ms: float = self.config.default_retry_ms

        self.state = ConnectionState.IDLE
        self.active_attempt: Attempt | None = None
        self.pending_retry: RetryTimer | None = None
        self.attempt_count = 0

        self._started = False
        self._done: asyncio.Future[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._cleanups: list[Callable[[], None]] = []
        self._owned_transport: HttpxTransport | None = None

    @property
    def terminated(self) -> bool:
        return self.state is ConnectionState.TERMINATED

    async def run(self) -> None:
        """Run until the subscription ends.

        Returns after a normal close or external cancellation. Raises whatever
        ``on_error`` raised when it declared an error fatal.
        """
        if self._started:
            raise RuntimeError("Subscription.run() can only be called once")
        self._started = True
        if self.terminated:
            return

        self._done = asyncio.get_running_loop().create_future()
        if self.transport is None:
            self._owned_transport = HttpxTransport.from_config(self.config)
            self.transport = self._owned_transport

        log.info("subscription_started", sub_id=self.sub_id, url=self.url, method=self.method)
        try:
            if not self.open_when_hidden:
                self._cleanups.append(self.visibility.subscribe(self._on_visibility_change))
            if self.signal is not None:
                self._cleanups.append(self.signal.add_callback(self.cancel))
            self._connect("subscribe")
            try:
                await self._done
            except asyncio.CancelledError:
                self.cancel()
                raise
        finally:
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            if self._owned_transport is not None:
                await self._owned_transport.aclose()

    def cancel(self) -> None:
        """Cancel the subscription. Idempotent; ``run()`` returns without error."""
        if self.terminated:
            return
        log.info("subscription_cancelled", sub_id=self.sub_id, state=self.state.value)
        self._terminate(trigger="cancelled")

    # --- attempts ---

    def _connect(self, trigger: str) -> None:
        if self.terminated:
            return
        self._cancel_retry_timer()
        self._abort_attempt(trigger)
        self.state = transition(self.state, ConnectionState.CONNECTING, self.sub_id, trigger)

        self.attempt_count += 1
        token = CancelToken()
        task = asyncio.get_running_loop().create_task(
            self._attempt(token, self.attempt_count),
            name=f"sselink-{self.sub_id}-{self.attempt_count}",
        )
        token.add_callback(lambda: _cancel_task(task))
        self.active_attempt = Attempt(self.attempt_count, token, task)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _abort_attempt(self, reason: str) -> None:
        attempt = self.active_attempt
        if attempt is None:
            return
        self.active_attempt = None
        log.debug("attempt_aborted", sub_id=self.sub_id, attempt=attempt.number, reason=reason)
        attempt.token.cancel(reason)

    def _request_headers(self) -> dict[str, str]:
        headers = dict(self.headers)
        if self.last_event_id is not None:
            headers["last-event-id"] = self.last_event_id
        return headers

    async def _attempt(self, token: CancelToken, number: int) -> None:
        request = Request(
            url=self.url,
            method=self.method,
            headers=self._request_headers(),
            body=self.body,
            token=token,
        )
        log.info(
            "attempt_started",
            sub_id=self.sub_id,
            attempt=number,
            last_event_id=self.last_event_id,
        )
        try:
            response = await self._open(request)
            try:
                await self._validate(response)
                if token.cancelled:
                    return
                self.state = transition(self.state, ConnectionState.OPEN, self.sub_id, "validated")
                await self._consume(response, token)
            finally:
                await self._release(response)
            if token.cancelled:
                return
            self.state = transition(self.state, ConnectionState.CLOSING, self.sub_id, "body_ended")
            await self._close()
        except SSEError as exc:
            if not token.cancelled:
                await self._handle_error(exc, number, token)
            return
        except Exception as exc:
            log.exception("attempt_internal_error", sub_id=self.sub_id, attempt=number)
            self._terminate(exc, trigger="internal_error")
            return
        finally:
            if self.active_attempt is not None and self.active_attempt.token is token:
                self.active_attempt = None

        if not token.cancelled:
            self._terminate(trigger="closed")

    async def _open(self, request: Request) -> Response:
        assert self.transport is not None
        try:
            return await self.transport(request)
        except SSEError:
            raise
        except Exception as exc:
            raise TransportError(f"Request to {request.url} failed: {exc}", cause=exc) from exc

    async def _release(self, response: Response) -> None:
        try:
            await response.aclose()
        except Exception as exc:
            log.warning("response_close_failed", sub_id=self.sub_id, error=str(exc))

    async def _validate(self, response: Response) -> None:
        try:
            await _maybe_await(self.on_open(response))
        except ValidationError:
            raise
        except Exception as exc:
            raise ValidationError(
                f"Response rejected: {exc}",
                status=response.status,
                content_type=response.header("content-type"),
                cause=exc,
            ) from exc

    async def _read_body(self, response: Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.body:
                yield chunk
        except SSEError:
            raise
        except Exception as exc:
            raise TransportError(f"Stream from {self.url} interrupted: {exc}", cause=exc) from exc

    async def _consume(self, response: Response, token: CancelToken) -> None:
        # A handler may cancel its own attempt; the task is not interrupted then.
        async with aclosing(self._read_body(response)) as chunks:
            messages = parse_stream(
                chunks,
                max_line_bytes=self.config.max_line_bytes,
                errors=self.config.decode_errors,
            )
            async with aclosing(messages):
                async for message in messages:
                    await self._dispatch(message)
                    if token.cancelled:
                        return

    async def _dispatch(self, message: EventSourceMessage) -> None:
        if message.id is not None:
            self.last_event_id = message.id
        if message.retry is not None:
            self.retry_interval_ms = message.retry
        if message.data is None or self.on_message is None:
            return
        try:
            await _maybe_await(self.on_message(message))
        except Exception as exc:
            raise HandlerError(f"on_message raised: {exc}", handler="on_message", cause=exc) from exc

    async def _close(self) -> None:
        if self.on_close is None:
            return
        try:
            await _maybe_await(self.on_close())
        except Exception as exc:
            raise HandlerError(f"on_close raised: {exc}", handler="on_close", cause=exc) from exc

    # --- error policy and retries ---

    async def _handle_error(self, error: SSEError, number: int, token: CancelToken) -> None:
        log.warning(
            "attempt_failed",
            sub_id=self.sub_id,
            attempt=number,
            state=self.state.value,
            error_type=type(error).__name__,
            error=str(error),
        )
        delay: float | None = None
        if self.on_error is not None:
            try:
                delay = await _maybe_await(self.on_error(error))
            except Exception as fatal:
                log.error(
                    "subscription_failed",
                    sub_id=self.sub_id,
                    attempt=number,
                    error_type=type(fatal).__name__,
                    error=str(fatal),
                )
                self._terminate(fatal, trigger="fatal_error")
                return
        if self.terminated or token.cancelled:
            return

        if delay is None:
            delay = self.retry_interval_ms
        elif delay < 0:
            log.warning("negative_retry_delay_clamped", sub_id=self.sub_id, delay_ms=delay)
            delay = 0
        self._schedule_retry(delay)

    def _schedule_retry(self, delay_ms: float) -> None:
        self._cancel_retry_timer()
        self.state = transition(self.state, ConnectionState.RETRY_WAIT, self.sub_id, "error")
        handle = asyncio.get_running_loop().call_later(delay_ms / 1000, self._on_retry_timer)
        self.pending_retry = RetryTimer(delay_ms, handle)
        log.info(
            "retry_scheduled",
            sub_id=self.sub_id,
            delay_ms=delay_ms,
            last_event_id=self.last_event_id,
        )

    def _on_retry_timer(self) -> None:
        self.pending_retry = None
        self._connect("retry_timer")

    def _cancel_retry_timer(self) -> None:
        timer = self.pending_retry
        if timer is None:
            return
        self.pending_retry = None
        timer.cancel()

    # --- visibility ---

    def _on_visibility_change(self) -> None:
        if self.terminated:
            return
        hidden = self.visibility.is_hidden()
        log.info("visibility_changed", sub_id=self.sub_id, hidden=hidden, state=self.state.value)
        self._cancel_retry_timer()
        self._abort_attempt("visibility")
        if hidden:
            if self.state is not ConnectionState.IDLE:
                self.state = transition(self.state, ConnectionState.IDLE, self.sub_id, "hidden")
        else:
            self._connect("visible")

    # --- teardown ---

    def _terminate(self, error: BaseException | None = None, trigger: str = "") -> None:
        if self.terminated:
            return
        self.state = transition(self.state, ConnectionState.TERMINATED, self.sub_id, trigger)

        cleanups, self._cleanups = self._cleanups, []
        for cleanup in cleanups:
            cleanup()
        self._cancel_retry_timer()
        self._abort_attempt(trigger)

        log.info(
            "subscription_terminated",
            sub_id=self.sub_id,
            trigger=trigger,
            attempts=self.attempt_count,
            last_event_id=self.last_event_id,
            failed=error is not None,
        )
        if self._done is not None and not self._done.done():
            if error is None:
                self._done.set_result(None)
            else:
                self._done.set_exception(error)


def _cancel_task(task: asyncio.Task[None]) -> None:
    """Cancel an attempt task unless it is the one running.

    A running attempt cancels itself from a handler; it checks its token
    after each handler call and returns.
    """
    try:
        current = asyncio.current_task()
    except RuntimeError:
        current = None
    if task is not current:
        task.cancel()


async def subscribe(url: str, **options: Any) -> None:
    """Subscribe to an event stream and run until the subscription ends.

    Accepts the keyword arguments of ``Subscription``.
    """
    await Subscription(url, **options).run()
