"""HTTP response cache: storage protocol, in-memory storage and a caching transport wrapper."""

from __future__ import annotations

import inspect
import logging
import time
from collections import OrderedDict
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Optional, Protocol

from yarl import URL

from .protocols import Headers, RawResponse, RequestHandle, ResponseLike, TransportOptions

logger = logging.getLogger(__name__)

CACHEABLE_METHODS = frozenset({"GET", "HEAD"})
CACHEABLE_STATUS_CODES = frozenset({200, 203, 204, 300, 301, 308, 404, 405, 410, 414, 501})

# Default maximum entries kept by MemoryCacheStorage
DEFAULT_MAX_ENTRIES = 1000


class CacheStorageError(Exception):
    """The cache storage raised while reading or writing an entry."""


@dataclass
class CachedEntry:
    """A stored response."""

    status: int
    reason: Optional[str]
    headers: list[tuple[str, str]]
    body: bytes
    stored_at: float = field(default_factory=time.time)

    def to_response(self) -> ResponseLike:
        return ResponseLike(self.status, self.headers, self.body, reason=self.reason, from_cache=True)


class CacheStorage(Protocol):
    """Async key/value storage for cached responses."""

    async def get(self, key: str) -> Optional[CachedEntry]: ...

    async def set(self, key: str, entry: CachedEntry, ttl: float) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryCacheStorage:
    """
    In-process cache storage with per-entry TTL and LRU eviction.

    Example:
        cache = MemoryCacheStorage(max_entries=500)
        client = Client(cache=cache)
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: OrderedDict[str, tuple[float, CachedEntry]] = OrderedDict()
        self._max_entries = max_entries
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[CachedEntry]:
        item = self._entries.get(key)
        if item is None:
            return None
        expires_at, entry = item
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry

    async def set(self, key: str, entry: CachedEntry, ttl: float) -> None:
        self._entries[key] = (self._clock() + ttl, entry)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


def cache_key(method: str, url: URL) -> str:
    return f"{method}:{url}"


def _directives(value: Optional[str]) -> dict[str, Optional[str]]:
    directives: dict[str, Optional[str]] = {}
    if not value:
        return directives
    for part in value.split(","):
        name, _, argument = part.strip().partition("=")
        if name:
            directives[name.lower()] = argument.strip('"') or None
    return directives


def freshness_lifetime(headers: Headers, now: Optional[float] = None) -> Optional[float]:
    """
    How long a response may be served from cache, in seconds.

    Returns:
        Lifetime in seconds, or None if the response must not be stored
    """
    directives = _directives(headers.get("cache-control"))
    if "no-store" in directives or "private" in directives:
        return None

    for name in ("s-maxage", "max-age"):
        value = directives.get(name)
        if value is not None and value.isdigit():
            lifetime = float(value)
            return lifetime if lifetime > 0 else None

    expires = headers.get("expires")
    if expires:
        try:
            expires_at = parsedate_to_datetime(expires)
        except (TypeError, ValueError, IndexError):
            return None
        if expires_at is None:
            return None
        lifetime = expires_at.timestamp() - (now if now is not None else time.time())
        return lifetime if lifetime > 0 else None

    return None


def _request_bypasses_cache(headers: dict[str, str]) -> bool:
    directives = _directives(headers.get("cache-control"))
    return "no-cache" in directives or "no-store" in directives or headers.get("pragma") == "no-cache"


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class _RecordingResponse:
    """Pass a raw response through and store it once fully read."""

    def __init__(self, raw: RawResponse, storage: CacheStorage, key: str, ttl: float) -> None:
        self._raw = raw
        self._storage = storage
        self._key = key
        self._ttl = ttl
        self.status = raw.status
        self.reason = raw.reason
        self.headers = raw.headers
        self.ip = raw.ip
        self.from_cache = False

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        chunks = []
        async for chunk in self._raw.iter_chunks():
            chunks.append(chunk)
            yield chunk
        entry = CachedEntry(
            status=self.status,
            reason=self.reason,
            headers=list(self.headers.items()),
            body=b"".join(chunks),
        )
        try:
            await self._storage.set(self._key, entry, self._ttl)
        except Exception as e:
            raise CacheStorageError(f"Failed to store {self._key}: {e}") from e
        logger.debug(f"Cached {self._key} for {self._ttl:.0f}s")

    def release(self) -> None:
        self._raw.release()


class _CachingHandle(RequestHandle):
    """Delegate to the transport's handle and record cacheable responses."""

    def __init__(self, inner: RequestHandle, storage: CacheStorage, key: str) -> None:
        super().__init__()
        self._inner = inner
        self._storage = storage
        self._key = key
        self.events = inner.events

    async def write(self, chunk: bytes) -> None:
        await self._inner.write(chunk)

    async def end(self) -> None:
        await self._inner.end()

    async def response(self) -> RawResponse:
        raw = await self._inner.response()
        self.remote_ip = self._inner.remote_ip
        if raw.status not in CACHEABLE_STATUS_CODES:
            return raw
        ttl = freshness_lifetime(raw.headers)
        if ttl is None:
            return raw
        return _RecordingResponse(raw, self._storage, self._key, ttl)

    def abort(self) -> None:
        self._inner.abort()

    def record_connection(self, timings: Any) -> None:
        self._inner.record_connection(timings)

    @property
    def idle_timeout_active(self) -> bool:
        return self._inner.idle_timeout_active

    def set_idle_timeout(self, seconds: float, callback: Callable[[], None]) -> None:
        self._inner.set_idle_timeout(seconds, callback)

    def clear_idle_timeout(self) -> None:
        self._inner.clear_idle_timeout()

    def touch(self) -> None:
        self._inner.touch()


class CachingTransport:
    """
    Wrap a transport with a response cache.

    Fresh GET/HEAD entries are served as :class:`ResponseLike` with
    ``from_cache=True`` without calling the wrapped transport. Responses
    with a freshness lifetime (``cache-control: max-age`` or ``expires``)
    are stored once their body has been read. Storage failures raise
    :class:`CacheStorageError`.
    """

    def __init__(self, transport: Any, storage: CacheStorage) -> None:
        self._transport = transport
        self._storage = storage

    async def __call__(self, url: URL, options: TransportOptions) -> Any:
        if options.method not in CACHEABLE_METHODS or _request_bypasses_cache(options.headers):
            return await _maybe_await(self._transport(url, options))

        key = cache_key(options.method, url)
        try:
            entry = await self._storage.get(key)
        except Exception as e:
            raise CacheStorageError(f"Failed to read {key}: {e}") from e

        if entry is not None:
            logger.debug(f"Cache hit for {key}")
            return entry.to_response()

        result = await _maybe_await(self._transport(url, options))
        if isinstance(result, RequestHandle):
            return _CachingHandle(result, self._storage, key)
        return result
