"""Response model, ok-range check and body parsing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from multidict import CIMultiDict, CIMultiDictProxy

from ..errors import ParseError

# Better encoding detection (charset-normalizer is an aiohttp dependency)
try:
    from charset_normalizer import from_bytes as detect_encoding

    CHARSET_NORMALIZER_AVAILABLE = True
except ImportError:
    CHARSET_NORMALIZER_AVAILABLE = False

if TYPE_CHECKING:
    from ..http.protocols import RawResponse
    from ..models.options import Options
    from .timings import Timings

logger = logging.getLogger(__name__)

REDIRECT_CODES = frozenset({300, 301, 302, 303, 304, 307, 308})


@dataclass(eq=False)
class Response:
    """
    Response of a logical request.

    Attributes:
        status_code: HTTP status code
        reason: Reason phrase
        headers: Case-insensitive response headers
        url: Final URL of the attempt that produced this response
        request_url: URL of the first attempt
        redirect_urls: URLs followed, in order
        retry_count: Number of retries before this response
        timings: Timings of the attempt
        is_from_cache: True if served by the cache adapter
        ip: Remote address, if known
        raw_body: Buffered (decompressed) body, once downloaded
        body: Parsed body according to ``response_type``
        request_options: Options the attempt was sent with
    """

    status_code: int
    reason: Optional[str]
    headers: CIMultiDictProxy
    url: str
    request_url: str
    redirect_urls: list[str] = field(default_factory=list)
    retry_count: int = 0
    timings: Optional[Timings] = None
    is_from_cache: bool = False
    ip: Optional[str] = None
    raw_body: Optional[bytes] = None
    body: Any = None
    request_options: Optional[Options] = None
    raw: Optional[RawResponse] = field(default=None, repr=False)

    @classmethod
    def from_raw(
        cls,
        raw: RawResponse,
        *,
        url: str,
        request_url: str,
        redirect_urls: list[str],
        retry_count: int,
        timings: Optional[Timings],
        options: Options,
    ) -> Response:
        headers = raw.headers
        if not isinstance(headers, CIMultiDictProxy):
            headers = CIMultiDictProxy(CIMultiDict(headers))
        return cls(
            status_code=raw.status,
            reason=raw.reason,
            headers=headers,
            url=url,
            request_url=request_url,
            redirect_urls=list(redirect_urls),
            retry_count=retry_count,
            timings=timings,
            is_from_cache=bool(getattr(raw, "from_cache", False)),
            ip=getattr(raw, "ip", None),
            request_options=options,
            raw=raw,
        )

    @property
    def ok(self) -> bool:
        follow = self.request_options.follow_redirect if self.request_options is not None else True
        return is_response_ok(self.status_code, follow)

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    def text(self, encoding: Optional[str] = None) -> str:
        """Decode the buffered body."""
        if self.raw_body is None:
            raise RuntimeError("The response body has not been downloaded")
        if encoding is None and self.request_options is not None:
            encoding = self.request_options.encoding
        return decode_text(self.raw_body, self.content_type, encoding)


def is_response_ok(status_code: int, follow_redirect: bool = True) -> bool:
    """
    Whether a status is considered successful.

    3xx responses count as ok when redirects are not followed; 304 always does.
    """
    limit = 299 if follow_redirect else 399
    return 200 <= status_code <= limit or status_code == 304


def decode_text(content: bytes, content_type: str = "", encoding: Optional[str] = None) -> str:
    """
    Decode content with intelligent encoding detection.

    Fallback chain:
    1. Explicit encoding
    2. Content-Type header charset
    3. charset-normalizer detection
    4. UTF-8 with replacement
    """
    if encoding is None and content_type:
        for part in content_type.split(";"):
            part = part.strip()
            if part.lower().startswith("charset="):
                encoding = part.split("=", 1)[1].strip().strip("\"'")
                break

    if encoding:
        try:
            return content.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            logger.debug(f"Failed to decode with declared encoding: {encoding}")

    if not content:
        return ""

    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        pass

    if CHARSET_NORMALIZER_AVAILABLE:
        try:
            result = detect_encoding(content)
            best_match = result.best() if result else None
            if best_match:
                logger.debug(f"Detected encoding: {best_match.encoding}")
                return str(best_match)
        except Exception as e:
            logger.debug(f"Encoding detection failed: {e}")

    return content.decode("utf-8", errors="replace")


def parse_body(response: Response, response_type: str, options: Options) -> Any:
    """
    Parse the buffered body according to ``response_type``.

    Raises:
        ParseError: If the body is not valid JSON
    """
    raw_body = response.raw_body or b""
    if response_type == "buffer":
        return raw_body
    if response_type == "text":
        return decode_text(raw_body, response.content_type, options.encoding)
    if response_type == "json":
        text = decode_text(raw_body, response.content_type, options.encoding)
        if not text:
            return None
        try:
            return options.parse_json(text)
        except ValueError as e:
            raise ParseError(e, response) from e
    raise TypeError(f"Unknown response type: {response_type}")
