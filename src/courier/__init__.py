"""
courier - Async HTTP client with retries, redirects, per-phase timeouts and timings.

Usage:
    import courier

    async with courier.Client(prefix_url="https://api.example.com", retry=3) as client:
        items = await client.get("items").json()

        response = await client.post("items", json={"name": "widget"})
        print(response.status_code, response.timings.phases.total)

        async with client.stream("export.csv") as stream:
            async for chunk in stream:
                ...
"""

__version__ = "1.0.0"

from .errors import (
    CacheError,
    CancelError,
    HTTPError,
    MaxRedirectsError,
    ParseError,
    ReadError,
    RequestError,
    RetryError,
    TimeoutError,
    UnsupportedProtocolError,
    UploadError,
)
from .models import (
    AttemptEvent,
    ClientSettings,
    EventType,
    Hooks,
    HookType,
    Options,
    Progress,
    RetryOptions,
    TimeoutOptions,
)
from .client import Client, request, stream
from .core.promise import CancelableRequest, Continue, Retry
from .core.response import Response
from .core.stream import RequestStream
from .core.timings import Phases, Timings
from .http import AiohttpCookieJar, AiohttpTransport, CachingTransport, MemoryCacheStorage, ResponseLike
from .logging_config import setup_logging
from .pagination import PaginationOptions, paginate, parse_link_header

__all__ = [
    "__version__",
    # Client
    "Client",
    "request",
    "stream",
    "CancelableRequest",
    "RequestStream",
    "Continue",
    "Retry",
    "Response",
    # Options
    "Options",
    "Hooks",
    "HookType",
    "RetryOptions",
    "TimeoutOptions",
    "ClientSettings",
    # Events and timings
    "AttemptEvent",
    "EventType",
    "Progress",
    "Phases",
    "Timings",
    # Errors
    "RequestError",
    "HTTPError",
    "MaxRedirectsError",
    "TimeoutError",
    "ReadError",
    "UploadError",
    "CacheError",
    "UnsupportedProtocolError",
    "ParseError",
    "RetryError",
    "CancelError",
    # Transport, cookies and cache
    "AiohttpTransport",
    "AiohttpCookieJar",
    "CachingTransport",
    "MemoryCacheStorage",
    "ResponseLike",
    # Pagination
    "PaginationOptions",
    "paginate",
    "parse_link_header",
    # Logging
    "setup_logging",
]
