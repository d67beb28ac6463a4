"""HTTP transport seam.

The lifecycle controller only sees ``Request`` and ``Response`` descriptors
and a ``Transport`` callable. ``HttpxTransport`` is the default
implementation; tests and hosts can inject any coroutine function with the
same shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Protocol

import httpx
import structlog

from sselink.client.cancel import CancelToken
from sselink.config import ClientConfig
from sselink.errors import TransportError

log = structlog.get_logger()


@dataclass
class Request:
    """One connection attempt as handed to the transport."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | str | None = None
    token: CancelToken = field(default_factory=CancelToken)


@dataclass
class Response:
    """Response head plus a streaming body."""

    status: int
    headers: Mapping[str, str]
    body: AsyncIterator[bytes]
    close: Callable[[], Awaitable[Any]] | None = None

    def __post_init__(self) -> None:
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str, default: str | None = None) -> str | None:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    async def aclose(self) -> None:
        if self.close is not None:
            await self.close()


class Transport(Protocol):
    async def __call__(self, request: Request) -> Response: ...


async def _iter_body(response: httpx.Response, url: str) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.HTTPError as exc:
        raise TransportError(f"Stream from {url} interrupted: {exc}", cause=exc) from exc


class HttpxTransport:
    """Transport backed by an ``httpx.AsyncClient``.

    An injected client is borrowed and never closed here; otherwise the
    transport owns a client and closes it in ``aclose()``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        connect_timeout: float = 10.0,
        read_timeout: float | None = None,
    ) -> None:
        self._owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=connect_timeout,
                    read=read_timeout,
                    write=connect_timeout,
                    pool=connect_timeout,
                ),
                follow_redirects=True,
            )
        self.client = client

    @classmethod
    def from_config(cls, config: ClientConfig) -> HttpxTransport:
        return cls(connect_timeout=config.connect_timeout, read_timeout=config.read_timeout)

    async def __call__(self, request: Request) -> Response:
        if request.token.cancelled:
            raise TransportError(f"Request to {request.url} aborted before sending")

        http_request = self.client.build_request(
            request.method,
            request.url,
            headers=request.headers,
            content=request.body,
        )
        try:
            http_response = await self.client.send(http_request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportError(f"Request to {request.url} failed: {exc}", cause=exc) from exc

        log.debug(
            "response_received",
            url=request.url,
            status=http_response.status_code,
            http_version=http_response.http_version,
        )
        return Response(
            status=http_response.status_code,
            headers=dict(http_response.headers.items()),
            body=_iter_body(http_response, request.url),
            close=http_response.aclose,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
