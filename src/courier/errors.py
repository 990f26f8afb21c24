"""Error taxonomy for courier requests.

Every error raised by the engine is a :class:`RequestError`. Each one carries
the options it was raised for, the response when there is one, and a string
``code`` (``ETIMEDOUT``, ``ECONNRESET``, ``ERR_NON_2XX_3XX_RESPONSE``...) that
retry policies match against.
"""

from __future__ import annotations

import asyncio
import errno
import socket
import ssl
from typing import TYPE_CHECKING, Any, Optional

import aiohttp

if TYPE_CHECKING:
    from .core.response import Response
    from .core.timings import Timings
    from .models.options import Options

GENERIC_CODE = "ERR_GENERIC"


def classify_error(exc: BaseException) -> str:
    """
    Map a transport-level exception to an error code.

    Args:
        exc: Exception raised by a transport or the network stack

    Returns:
        Error code string such as ``ECONNREFUSED`` or ``ETIMEDOUT``
    """
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code:
        return code

    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return "ETIMEDOUT"

    if isinstance(exc, aiohttp.ServerDisconnectedError):
        return "ECONNRESET"

    if isinstance(exc, aiohttp.ClientConnectorError):
        return classify_error(exc.os_error)

    if isinstance(exc, socket.gaierror):
        if exc.errno == socket.EAI_AGAIN:
            return "EAI_AGAIN"
        return "ENOTFOUND"

    if isinstance(exc, (ssl.SSLError, ssl.CertificateError)):
        return "ERR_TLS"

    if isinstance(exc, ConnectionRefusedError):
        return "ECONNREFUSED"
    if isinstance(exc, ConnectionResetError):
        return "ECONNRESET"
    if isinstance(exc, BrokenPipeError):
        return "EPIPE"

    if isinstance(exc, OSError) and exc.errno is not None:
        return errno.errorcode.get(exc.errno, GENERIC_CODE)

    cause = exc.__cause__
    if cause is not None and cause is not exc:
        return classify_error(cause)

    return GENERIC_CODE


class RequestError(Exception):
    """
    Base error for a failed logical request.

    Attributes:
        code: Error code matched against ``retry.error_codes``
        options: Options of the request that failed
        response: Response, when one was received
        request: Engine that raised the error
    """

    def __init__(
        self,
        message: str,
        error: Optional[BaseException] = None,
        *,
        options: Optional[Options] = None,
        response: Optional[Response] = None,
        request: Any = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.options = options
        self.response = response
        self.request = request
        if code is None:
            code = classify_error(error) if error is not None else GENERIC_CODE
        self.code = code
        if error is not None:
            self.__cause__ = error

    @property
    def timings(self) -> Optional[Timings]:
        """Timings of the attempt that failed, if any."""
        if self.response is not None:
            return self.response.timings
        if self.request is not None:
            return getattr(self.request, "timings", None)
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, code={self.code!r})"


class HTTPError(RequestError):
    """Response received with a status outside the ok range."""

    def __init__(self, response: Response, *, request: Any = None) -> None:
        super().__init__(
            f"Response code {response.status_code} ({response.reason or 'Unknown'})",
            options=response.request_options,
            response=response,
            request=request,
            code="ERR_NON_2XX_3XX_RESPONSE",
        )


class MaxRedirectsError(RequestError):
    """The redirect chain grew past ``max_redirects``."""

    def __init__(self, response: Response, max_redirects: int, *, request: Any = None) -> None:
        super().__init__(
            f"Redirected {max_redirects} times. Aborting.",
            options=response.request_options,
            response=response,
            request=request,
            code="ERR_TOO_MANY_REDIRECTS",
        )
        self.max_redirects = max_redirects


class TimeoutError(RequestError):
    """
    A phase budget expired.

    Attributes:
        event: Phase that timed out (``lookup``, ``connect``, ``request``...)
        budget: Budget in seconds
    """

    def __init__(
        self,
        event: str,
        budget: float,
        *,
        options: Optional[Options] = None,
        request: Any = None,
    ) -> None:
        super().__init__(
            f"Timeout awaiting '{event}' for {budget:g}s",
            options=options,
            request=request,
            code="ETIMEDOUT",
        )
        self.event = event
        self.budget = budget


class ReadError(RequestError):
    """Reading or decompressing the response body failed."""

    def __init__(self, error: BaseException, *, options: Optional[Options] = None, **kwargs: Any) -> None:
        super().__init__(str(error) or type(error).__name__, error, options=options, **kwargs)


class UploadError(RequestError):
    """Streaming the request body failed."""

    def __init__(self, error: BaseException, *, options: Optional[Options] = None, **kwargs: Any) -> None:
        super().__init__(str(error) or type(error).__name__, error, options=options, **kwargs)


class CacheError(RequestError):
    """The cache adapter raised."""

    def __init__(self, error: BaseException, *, options: Optional[Options] = None, **kwargs: Any) -> None:
        super().__init__(str(error) or type(error).__name__, error, options=options, code="ERR_CACHE_ACCESS", **kwargs)


class UnsupportedProtocolError(RequestError):
    """The resolved URL is neither http nor https."""

    def __init__(self, url: str, *, options: Optional[Options] = None, request: Any = None) -> None:
        super().__init__(
            f"Unsupported protocol in URL: {url}",
            options=options,
            request=request,
            code="ERR_UNSUPPORTED_PROTOCOL",
        )
        self.url = url


class ParseError(RequestError):
    """The response body could not be parsed as the requested type."""

    def __init__(self, error: BaseException, response: Response, *, request: Any = None) -> None:
        super().__init__(
            f"{error} in {response.url}",
            error,
            options=response.request_options,
            response=response,
            request=request,
            code="ERR_BODY_PARSE_FAILURE",
        )


class RetryError(RequestError):
    """Raised internally to force another attempt from an ``after_response`` hook."""

    def __init__(self, *, options: Optional[Options] = None, request: Any = None) -> None:
        super().__init__("Retrying", options=options, request=request, code="ERR_RETRYING")


class CancelError(RequestError):
    """The caller canceled the request."""

    def __init__(self, *, options: Optional[Options] = None, request: Any = None) -> None:
        super().__init__("Promise was canceled", options=options, request=request, code="ERR_CANCELED")

    @property
    def is_canceled(self) -> bool:
        return True


__all__ = [
    "CacheError",
    "CancelError",
    "HTTPError",
    "MaxRedirectsError",
    "ParseError",
    "ReadError",
    "RequestError",
    "RetryError",
    "TimeoutError",
    "UnsupportedProtocolError",
    "UploadError",
    "classify_error",
]
