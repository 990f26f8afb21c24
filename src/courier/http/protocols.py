"""Protocol definitions for the pluggable transport, responses and cookie jars."""

from __future__ import annotations

import abc
import asyncio
from collections.abc import AsyncIterator, Awaitable, Iterable
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Union, runtime_checkable

from multidict import CIMultiDict, CIMultiDictProxy
from yarl import URL

from ..core.emitter import EventEmitter

Headers = Union[CIMultiDict, CIMultiDictProxy]


@dataclass
class TransportOptions:
    """
    What the engine asks a transport to send.

    Attributes:
        method: Uppercase HTTP method
        headers: Final request headers (lowercase names)
        has_body: Whether the engine will write a body to the handle
        content_length: Body size when known up front
        dns_cache: Whether DNS answers may be cached
        context: Free-form options context
    """

    method: str
    headers: dict[str, str]
    has_body: bool = False
    content_length: Optional[int] = None
    dns_cache: bool = True
    context: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class RawResponse(Protocol):
    """
    A response as produced by a transport, before the engine interprets it.

    Attributes:
        status: HTTP status code
        reason: Reason phrase, if any
        headers: Case-insensitive response headers
        ip: Remote address, if known
        from_cache: True if served from a cache
    """

    status: int
    reason: Optional[str]
    headers: Headers
    ip: Optional[str]
    from_cache: bool

    def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield the raw (still encoded) body."""
        ...

    def release(self) -> None:
        """Release the underlying connection."""
        ...


class ResponseLike:
    """
    In-memory response. Returned by hooks, caches and test transports in
    place of a network exchange.

    Example:
        def serve_stub(options):
            return ResponseLike(200, {"content-type": "application/json"}, b"[]")
    """

    def __init__(
        self,
        status: int = 200,
        headers: Optional[Any] = None,
        body: Union[bytes, Iterable[bytes]] = b"",
        *,
        reason: Optional[str] = None,
        ip: Optional[str] = None,
        from_cache: bool = False,
    ) -> None:
        self.status = status
        self.reason = reason
        self.headers: Headers = CIMultiDict(headers or {})
        self.ip = ip
        self.from_cache = from_cache
        self._chunks = [body] if isinstance(body, (bytes, bytearray)) else list(body)
        self.released = False

    @property
    def body(self) -> bytes:
        return b"".join(self._chunks)

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            if chunk:
                yield bytes(chunk)

    def release(self) -> None:
        self.released = True


class RequestHandle(abc.ABC):
    """
    Writable side of one in-flight exchange.

    Transports emit :class:`courier.models.events.AttemptEvent` connection
    events (``socket``, ``lookup``, ``connect``, ``secure_connect``,
    ``upload``) on :attr:`events`. ``socket`` carries ``(reused, initial)``
    where ``initial`` is the :class:`courier.core.timings.ConnectionTimings`
    of the attempt that opened a reused socket.

    The base class provides the idle-timeout primitive used for the
    ``socket`` budget: subclasses call :meth:`touch` on any socket activity.
    """

    def __init__(self) -> None:
        self.events = EventEmitter()
        self.remote_ip: Optional[str] = None
        self._idle_budget: Optional[float] = None
        self._idle_callback: Optional[Callable[[], None]] = None
        self._idle_timer: Optional[asyncio.TimerHandle] = None

    @abc.abstractmethod
    async def write(self, chunk: bytes) -> None:
        """Queue a chunk of the request body."""

    @abc.abstractmethod
    async def end(self) -> None:
        """Finish the request body."""

    @abc.abstractmethod
    async def response(self) -> RawResponse:
        """Wait for the response headers."""

    @abc.abstractmethod
    def abort(self) -> None:
        """Tear the exchange down. Must be idempotent."""

    def record_connection(self, timings: Any) -> None:
        """Called with the connection timings of a freshly opened socket."""

    @property
    def idle_timeout_active(self) -> bool:
        return self._idle_timer is not None

    def set_idle_timeout(self, seconds: float, callback: Callable[[], None]) -> None:
        self._idle_budget = seconds
        self._idle_callback = callback
        self.touch()

    def clear_idle_timeout(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None
        self._idle_budget = None
        self._idle_callback = None

    def touch(self) -> None:
        """Restart the idle timer after socket activity."""
        if self._idle_budget is None or self._idle_callback is None:
            return
        if self._idle_timer is not None:
            self._idle_timer.cancel()
        loop = asyncio.get_running_loop()
        self._idle_timer = loop.call_later(self._idle_budget, self._fire_idle_timeout)

    def _fire_idle_timeout(self) -> None:
        callback = self._idle_callback
        self._idle_timer = None
        self._idle_budget = None
        self._idle_callback = None
        if callback is not None:
            callback()


TransportResult = Union[RequestHandle, RawResponse]


class Transport(Protocol):
    """Perform one exchange: return a writable handle or a finished response."""

    def __call__(
        self, url: URL, options: TransportOptions
    ) -> Union[TransportResult, Awaitable[TransportResult]]: ...


class CookieJar(Protocol):
    """Cookie storage used by the engine."""

    async def get_cookie_string(self, url: str) -> str: ...

    async def set_cookie(self, raw_cookie: str, url: str) -> None: ...
