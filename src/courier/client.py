"""Client instances carrying shared defaults and a shared transport."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from types import TracebackType
from typing import Any, Optional, Union

from yarl import URL

from . import __version__
from .core.promise import CancelableRequest
from .core.stream import RequestStream
from .http.aiohttp_transport import AiohttpTransport
from .models.config import ClientSettings
from .models.options import Options

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"courier/{__version__} (https://github.com/courier-http/courier)"

URLType = Union[str, URL, None]


def default_options() -> Options:
    """Options every request starts from."""
    return Options(headers={"user-agent": DEFAULT_USER_AGENT})


def _merge_defaults(base: Options, options: Mapping[str, Any]) -> Options:
    """Fold keyword options into a defaults record without resolving a URL."""
    explicit = Options.model_validate(dict(options))
    return base.merge({name: getattr(explicit, name) for name in explicit.model_fields_set})


class Client:
    """
    HTTP client with shared defaults.

    Every request made through the client starts from its defaults: headers
    and nested ``timeout``/``retry`` settings are merged key by key, hooks of
    the client run before per-request hooks. Requests share one transport,
    so connections are pooled across them.

    Example:
        async with Client(prefix_url="https://api.example.com", retry=4) as client:
            user = await client.get("users/1").json()
            created = await client.post("users", json={"name": "Ada"})

            github = client.extend(headers={"authorization": "token ..."})
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        *,
        defaults: Optional[Options] = None,
        transport: Any = None,
        **options: Any,
    ) -> None:
        """
        Initialize the client.

        Args:
            settings: Declarative profile, applied before ``options``
            defaults: Options record to start from instead of the built-in defaults
            transport: Transport to share; an ``AiohttpTransport`` is created
                (and closed with the client) when omitted
            **options: Default request options
        """
        base = defaults.clone() if defaults is not None else default_options()

        if settings is not None:
            base.merge(settings.to_options())

        if options:
            _merge_defaults(base, options)

        self._owns_transport = False
        if transport is not None:
            base.transport = transport
        elif base.transport is None:
            base.transport = AiohttpTransport()
            self._owns_transport = True

        self.defaults = base

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the transport if the client created it."""
        if self._owns_transport:
            logger.debug("Closing client transport")
            await self.defaults.transport.close()

    def extend(self, **options: Any) -> Client:
        """
        Create a child client whose defaults are merged over these.

        The child shares this client's transport and never closes it.
        """
        return Client(defaults=self.defaults, **options)

    def build_options(self, url: URLType = None, **options: Any) -> Options:
        return Options.create(url, defaults=self.defaults, **options)

    def request(self, url: URLType = None, **options: Any) -> CancelableRequest:
        """
        Start a request.

        Raises:
            TypeError: On invalid or conflicting options
            UnsupportedProtocolError: If the URL is not http(s)
        """
        return CancelableRequest(self.build_options(url, **options))

    def get(self, url: URLType = None, **options: Any) -> CancelableRequest:
        return self.request(url, **{**options, "method": "GET"})

    def post(self, url: URLType = None, **options: Any) -> CancelableRequest:
        return self.request(url, **{**options, "method": "POST"})

    def put(self, url: URLType = None, **options: Any) -> CancelableRequest:
        return self.request(url, **{**options, "method": "PUT"})

    def patch(self, url: URLType = None, **options: Any) -> CancelableRequest:
        return self.request(url, **{**options, "method": "PATCH"})

    def delete(self, url: URLType = None, **options: Any) -> CancelableRequest:
        return self.request(url, **{**options, "method": "DELETE"})

    def head(self, url: URLType = None, **options: Any) -> CancelableRequest:
        return self.request(url, **{**options, "method": "HEAD"})

    def stream(self, url: URLType = None, **options: Any) -> RequestStream:
        """Start a streaming request."""
        return RequestStream(self.build_options(url, **options))

    def paginate(self, url: URLType = None, **options: Any) -> AsyncIterator[Any]:
        """Iterate items across pages. See :func:`courier.pagination.paginate`."""
        from .pagination import paginate

        return paginate(self, url, **options)

    async def paginate_all(self, url: URLType = None, **options: Any) -> list[Any]:
        """Collect every paginated item into a list."""
        return [item async for item in self.paginate(url, **options)]


def request(url: URLType = None, **options: Any) -> CancelableRequest:
    """
    Start a one-off request with the default options.

    The transport is created for this request and closed once it settles.
    """
    return CancelableRequest(Options.create(url, defaults=default_options(), **options))


def stream(url: URLType = None, **options: Any) -> RequestStream:
    """Start a one-off streaming request with the default options."""
    return RequestStream(Options.create(url, defaults=default_options(), **options))
