"""Default transport built on aiohttp."""

from __future__ import annotations

import asyncio
import logging
import ssl as ssl_module
from collections.abc import AsyncIterator, Mapping
from types import SimpleNamespace, TracebackType
from typing import Any, Optional, Union

import aiohttp
from multidict import CIMultiDictProxy
from yarl import URL

from ..models.events import AttemptEvent
from .protocols import RequestHandle, TransportOptions

logger = logging.getLogger(__name__)

_EOF = object()

# aiohttp would otherwise add these on its own
SKIP_AUTO_HEADERS = frozenset({"Accept-Encoding", "User-Agent"})

SSLOption = Union[bool, ssl_module.SSLContext]


def _retrieve(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


def _handle_of(ctx: SimpleNamespace) -> Optional[AiohttpRequestHandle]:
    request_ctx = getattr(ctx, "trace_request_ctx", None)
    if isinstance(request_ctx, Mapping):
        handle = request_ctx.get("handle")
        if isinstance(handle, AiohttpRequestHandle):
            return handle
    return None


async def _on_connection_create_start(session: Any, ctx: SimpleNamespace, params: Any) -> None:
    handle = _handle_of(ctx)
    if handle is not None:
        handle._emit(AttemptEvent.SOCKET, False, None)


async def _on_connection_reuseconn(session: Any, ctx: SimpleNamespace, params: Any) -> None:
    handle = _handle_of(ctx)
    if handle is not None:
        handle._emit(AttemptEvent.SOCKET, True, handle.initial_connection)


async def _on_dns_resolved(session: Any, ctx: SimpleNamespace, params: Any) -> None:
    handle = _handle_of(ctx)
    if handle is not None:
        handle._emit(AttemptEvent.LOOKUP)


async def _on_connection_create_end(session: Any, ctx: SimpleNamespace, params: Any) -> None:
    handle = _handle_of(ctx)
    if handle is None:
        return
    handle._emit(AttemptEvent.CONNECT)
    # aiohttp completes the TLS handshake inside the same connect call
    if handle.secure:
        handle._emit(AttemptEvent.SECURE_CONNECT)


async def _on_request_headers_sent(session: Any, ctx: SimpleNamespace, params: Any) -> None:
    handle = _handle_of(ctx)
    if handle is not None:
        handle.touch()
        if not handle.has_body:
            handle._emit(AttemptEvent.UPLOAD)


async def _on_request_chunk_sent(session: Any, ctx: SimpleNamespace, params: Any) -> None:
    handle = _handle_of(ctx)
    if handle is not None:
        handle.touch()


def build_trace_config() -> aiohttp.TraceConfig:
    """Map aiohttp tracing signals onto attempt events."""
    trace_config = aiohttp.TraceConfig()
    trace_config.on_connection_create_start.append(_on_connection_create_start)
    trace_config.on_connection_reuseconn.append(_on_connection_reuseconn)
    trace_config.on_dns_resolvehost_end.append(_on_dns_resolved)
    trace_config.on_dns_cache_hit.append(_on_dns_resolved)
    trace_config.on_connection_create_end.append(_on_connection_create_end)
    trace_config.on_request_headers_sent.append(_on_request_headers_sent)
    trace_config.on_request_chunk_sent.append(_on_request_chunk_sent)
    return trace_config


class AiohttpRawResponse:
    """Adapt an ``aiohttp.ClientResponse`` to the raw response protocol."""

    def __init__(self, response: aiohttp.ClientResponse, handle: AiohttpRequestHandle) -> None:
        self._response = response
        self._handle = handle
        self.status = response.status
        self.reason = response.reason
        self.headers: CIMultiDictProxy = response.headers
        self.ip = handle.remote_ip
        self.from_cache = False

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.content.iter_any():
            self._handle.touch()
            yield chunk

    def release(self) -> None:
        self._handle.released = True
        self._response.release()


class AiohttpRequestHandle(RequestHandle):
    """
    One in-flight aiohttp request.

    The request is started immediately; the body is fed to aiohttp from an
    unbounded queue filled by :meth:`write`.
    """

    def __init__(
        self,
        transport: AiohttpTransport,
        session: aiohttp.ClientSession,
        url: URL,
        options: TransportOptions,
    ) -> None:
        super().__init__()
        self.url = url
        self.secure = url.scheme == "https"
        self.has_body = options.has_body
        self.origin = str(url.origin())
        self.initial_connection = transport.connection_timings(self.origin)
        self._transport = transport
        self._body: Optional[asyncio.Queue[Any]] = asyncio.Queue() if options.has_body else None
        self._response: Optional[aiohttp.ClientResponse] = None
        self._aborted = False
        self.released = False
        self._task = asyncio.ensure_future(
            session.request(
                options.method,
                url,
                headers=options.headers,
                data=self._iter_body() if self._body is not None else None,
                allow_redirects=False,
                skip_auto_headers=SKIP_AUTO_HEADERS,
                proxy=transport.proxy,
                ssl=transport.ssl,
                trace_request_ctx={"handle": self},
            )
        )
        self._task.add_done_callback(_retrieve)

    def _emit(self, event: AttemptEvent, *args: Any) -> None:
        if not self._aborted:
            self.events.emit(event, *args)

    async def _iter_body(self) -> AsyncIterator[bytes]:
        assert self._body is not None
        while True:
            chunk = await self._body.get()
            if chunk is _EOF:
                break
            yield chunk
        self._emit(AttemptEvent.UPLOAD)

    async def write(self, chunk: bytes) -> None:
        if self._body is None:
            raise RuntimeError("This request was started without a body")
        self._body.put_nowait(chunk)
        self.touch()

    async def end(self) -> None:
        if self._body is not None:
            self._body.put_nowait(_EOF)

    async def response(self) -> AiohttpRawResponse:
        response = await self._task
        self._response = response
        connection = response.connection
        if connection is not None and connection.transport is not None:
            peer = connection.transport.get_extra_info("peername")
            if peer:
                self.remote_ip = peer[0]
        return AiohttpRawResponse(response, self)

    def record_connection(self, timings: Any) -> None:
        self._transport.record_connection(self.origin, timings)

    def abort(self) -> None:
        if self._aborted:
            return
        self._aborted = True
        self.clear_idle_timeout()
        if not self._task.done():
            self._task.cancel()
        elif self._response is None and not self._task.cancelled() and self._task.exception() is None:
            self._task.result().close()
        if self._response is not None and not self.released:
            self._response.close()


class AiohttpTransport:
    """
    Transport backed by a shared ``aiohttp.ClientSession``.

    The session is created lazily on first use. aiohttp's own redirect
    handling, cookie jar, decompression and timeouts are switched off;
    the engine handles all of them.

    Example:
        async with AiohttpTransport(limit_per_host=4) as transport:
            client = Client(transport=transport)
            response = await client.get("https://example.com")
    """

    def __init__(
        self,
        *,
        limit: int = 100,
        limit_per_host: int = 10,
        ttl_dns_cache: int = 300,
        proxy: Optional[str] = None,
        ssl: SSLOption = True,
    ) -> None:
        """
        Initialize the transport.

        Args:
            limit: Total connection limit
            limit_per_host: Per-host connection limit
            ttl_dns_cache: DNS cache TTL in seconds
            proxy: Proxy URL
            ssl: ``False`` to skip certificate checks, or an ``ssl.SSLContext``
        """
        self._limit = limit
        self._limit_per_host = limit_per_host
        self._ttl_dns_cache = ttl_dns_cache
        self.proxy = proxy
        self.ssl = ssl
        self._sessions: dict[bool, aiohttp.ClientSession] = {}
        self._connections: dict[str, Any] = {}

    async def __aenter__(self) -> AiohttpTransport:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close every session created by this transport."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        self._connections.clear()
        for session in sessions:
            await session.close()

    def _session(self, use_dns_cache: bool) -> aiohttp.ClientSession:
        session = self._sessions.get(use_dns_cache)
        if session is None or session.closed:
            connector = aiohttp.TCPConnector(
                limit=self._limit,
                limit_per_host=self._limit_per_host,
                use_dns_cache=use_dns_cache,
                ttl_dns_cache=self._ttl_dns_cache if use_dns_cache else None,
            )
            session = aiohttp.ClientSession(
                connector=connector,
                cookie_jar=aiohttp.DummyCookieJar(),
                auto_decompress=False,
                timeout=aiohttp.ClientTimeout(total=None),
                trace_configs=[build_trace_config()],
            )
            self._sessions[use_dns_cache] = session
            logger.debug(f"Created aiohttp session (dns cache {'on' if use_dns_cache else 'off'})")
        return session

    def connection_timings(self, origin: str) -> Any:
        """Connection timings recorded for the last socket opened to ``origin``."""
        return self._connections.get(origin)

    def record_connection(self, origin: str, timings: Any) -> None:
        self._connections[origin] = timings

    def __call__(self, url: URL, options: TransportOptions) -> AiohttpRequestHandle:
        return AiohttpRequestHandle(self, self._session(options.dns_cache), url, options)
