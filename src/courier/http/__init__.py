"""Transports, cookie jar and response cache for courier."""

from .aiohttp_transport import AiohttpRawResponse, AiohttpRequestHandle, AiohttpTransport
from .cache import CachedEntry, CacheStorage, CacheStorageError, CachingTransport, MemoryCacheStorage
from .cookies import AiohttpCookieJar
from .protocols import CookieJar, RawResponse, RequestHandle, ResponseLike, Transport, TransportOptions

__all__ = [
    # Transport
    "AiohttpRawResponse",
    "AiohttpRequestHandle",
    "AiohttpTransport",
    "RawResponse",
    "RequestHandle",
    "ResponseLike",
    "Transport",
    "TransportOptions",
    # Cookies
    "AiohttpCookieJar",
    "CookieJar",
    # Cache
    "CachedEntry",
    "CacheStorage",
    "CacheStorageError",
    "CachingTransport",
    "MemoryCacheStorage",
]
