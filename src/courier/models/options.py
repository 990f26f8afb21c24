"""Pydantic models for request options, retry policy, timeouts and hooks."""

import json
from collections.abc import Mapping
from enum import Enum
from typing import Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator
from yarl import URL

from ..errors import UnsupportedProtocolError

DEFAULT_RETRY_METHODS = ("GET", "PUT", "HEAD", "DELETE", "OPTIONS", "TRACE")
DEFAULT_RETRY_STATUS_CODES = (408, 413, 429, 500, 502, 503, 504, 521, 522, 524)
DEFAULT_RETRY_ERROR_CODES = (
    "ETIMEDOUT",
    "ECONNRESET",
    "EADDRINUSE",
    "ECONNREFUSED",
    "EPIPE",
    "ENOTFOUND",
    "ENETUNREACH",
    "EAI_AGAIN",
)

SUPPORTED_SCHEMES = frozenset({"http", "https"})


class HookType(str, Enum):
    """Lifecycle points where hooks can be registered."""

    INIT = "init"
    BEFORE_REQUEST = "before_request"
    BEFORE_REDIRECT = "before_redirect"
    BEFORE_ERROR = "before_error"
    BEFORE_RETRY = "before_retry"
    AFTER_RESPONSE = "after_response"


def _dedupe(values: Any) -> list[Any]:
    seen: list[Any] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def _to_url(value: Any) -> Optional[URL]:
    if value is None or isinstance(value, URL):
        return value
    if isinstance(value, str):
        return URL(value)
    raise TypeError(f"Expected a URL or string, got {type(value).__name__}")


def check_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    """
    Lowercase header names and validate values.

    A value of None marks the header for removal and is kept so that it can
    override a default. Numbers are stringified; anything else that is not a
    string is rejected.

    Raises:
        TypeError: On a value that cannot be sent as a header
    """
    result: dict[str, Any] = {}
    for name, value in headers.items():
        if value is None or isinstance(value, str):
            result[name.lower()] = value
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            result[name.lower()] = str(value)
        else:
            raise TypeError(f"Invalid value for header `{name}`: {value!r}. Use None to remove a header.")
    return result


def _timeout_shorthand(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return {"request": value}
    return value


def _retry_shorthand(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return {"limit": value}
    return value


_SHORTHANDS: dict[str, Callable[[Any], Any]] = {"timeout": _timeout_shorthand, "retry": _retry_shorthand}


class TimeoutOptions(BaseModel):
    """Per-phase time budgets, in seconds. Unset phases have no budget."""

    lookup: Optional[float] = Field(None, gt=0, description="DNS resolution")
    connect: Optional[float] = Field(None, gt=0, description="TCP connection established")
    secure_connect: Optional[float] = Field(None, gt=0, description="TLS handshake completed")
    socket: Optional[float] = Field(None, gt=0, description="Socket idle time")
    send: Optional[float] = Field(None, gt=0, description="Request fully written")
    response: Optional[float] = Field(None, gt=0, description="Response headers received")
    read: Optional[float] = Field(None, gt=0, description="Response body fully read")
    request: Optional[float] = Field(None, gt=0, description="Whole attempt, start to end")

    model_config = {"extra": "forbid"}

    def budgets(self) -> dict[str, float]:
        """Return only the phases that have a budget."""
        return {name: value for name, value in self.model_dump().items() if value is not None}


class RetryOptions(BaseModel):
    """
    Retry policy.

    ``calculate_delay`` receives a :class:`courier.core.retry.RetryContext`
    and returns the delay in seconds actually used; 0 cancels the retry.
    """

    limit: int = Field(2, ge=0, description="Maximum number of retries")
    methods: list[str] = Field(
        default_factory=lambda: list(DEFAULT_RETRY_METHODS),
        description="Methods that may be retried",
    )
    status_codes: list[int] = Field(
        default_factory=lambda: list(DEFAULT_RETRY_STATUS_CODES),
        description="Response statuses that trigger a retry",
    )
    error_codes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_RETRY_ERROR_CODES),
        description="Error codes that trigger a retry",
    )
    max_retry_after: Optional[float] = Field(
        None,
        gt=0,
        description="Longest Retry-After (seconds) that is honored; longer values cancel the retry",
    )
    calculate_delay: Optional[Callable[..., Any]] = Field(None, description="Delay override")

    model_config = {"extra": "forbid"}

    @field_validator("methods")
    @classmethod
    def _normalize_methods(cls, value: list[str]) -> list[str]:
        return _dedupe(method.upper() for method in value)

    @field_validator("status_codes", "error_codes")
    @classmethod
    def _dedupe_codes(cls, value: list[Any]) -> list[Any]:
        return _dedupe(value)


class Hooks(BaseModel):
    """
    Typed hook registry: one ordered list per :class:`HookType`.

    Signatures (any hook may also be a coroutine function, except ``init``):

    - ``init(raw_options: dict) -> None | Mapping``
    - ``before_request(options) -> None | Mapping | ResponseLike``
    - ``before_redirect(options, response) -> None | Mapping``
    - ``before_retry(error, retry_count) -> None | Mapping``
    - ``before_error(error) -> RequestError``
    - ``after_response(response, retry_with_merged_options) -> Response | Retry``

    A returned Mapping is a patch folded into the options with
    :meth:`Options.merge`.
    """

    init: list[Callable[..., Any]] = Field(default_factory=list)
    before_request: list[Callable[..., Any]] = Field(default_factory=list)
    before_redirect: list[Callable[..., Any]] = Field(default_factory=list)
    before_error: list[Callable[..., Any]] = Field(default_factory=list)
    before_retry: list[Callable[..., Any]] = Field(default_factory=list)
    after_response: list[Callable[..., Any]] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    def get(self, hook_type: Union[HookType, str]) -> list[Callable[..., Any]]:
        return getattr(self, HookType(hook_type).value)

    def add(self, hook_type: Union[HookType, str], hook: Callable[..., Any]) -> "Hooks":
        """Append a hook of the given kind; returns self for chaining."""
        if not callable(hook):
            raise TypeError(f"Hook must be callable, got {type(hook).__name__}")
        self.get(hook_type).append(hook)
        return self

    def merged(self, other: Union["Hooks", Mapping[str, Any], None]) -> "Hooks":
        """Return a new registry with this registry's hooks before ``other``'s."""
        if other is None:
            other = Hooks()
        elif not isinstance(other, Hooks):
            other = Hooks.model_validate(dict(other))
        return Hooks(**{kind.value: self.get(kind) + other.get(kind) for kind in HookType})

    def clone(self) -> "Hooks":
        return Hooks(**{kind.value: list(self.get(kind)) for kind in HookType})


class Options(BaseModel):
    """
    Normalized options for one logical request.

    Build with :meth:`Options.create`, which resolves the URL and folds in
    defaults. The engine mutates the record in place across redirects and
    retries; only the live attempt writes to it.

    Example:
        options = Options.create(
            "https://api.example.com/items",
            method="post",
            json={"name": "widget"},
            timeout={"connect": 2, "request": 10},
            retry=3,
        )
    """

    url: Optional[URL] = Field(None, description="Target URL")
    prefix_url: Optional[URL] = Field(None, description="Base URL prepended to relative urls")
    search_params: Optional[dict[str, Any]] = Field(None, description="Query parameters to add to the URL")
    method: str = Field("GET", description="HTTP method")
    headers: dict[str, Any] = Field(default_factory=dict, description="Request headers, lowercased")

    body: Any = Field(None, description="bytes, str, or an (async) iterable of bytes")
    json_body: Any = Field(None, alias="json", description="Value serialized as a JSON body")
    form: Optional[dict[str, Any]] = Field(None, description="Fields sent url-encoded")
    allow_get_body: bool = Field(False, description="Permit a body on GET requests")

    username: str = Field("", description="Basic auth username")
    password: str = Field("", description="Basic auth password")

    timeout: TimeoutOptions = Field(default_factory=TimeoutOptions)
    retry: RetryOptions = Field(default_factory=RetryOptions)
    hooks: Hooks = Field(default_factory=Hooks)

    follow_redirect: bool = Field(True, description="Follow 3xx responses with a location")
    max_redirects: int = Field(10, ge=0, description="Longest redirect chain before failing")
    method_rewriting: bool = Field(False, description="Rewrite non-GET methods to GET on 301/302")
    decompress: bool = Field(True, description="Decode gzip, deflate and br bodies")
    throw_http_errors: bool = Field(True, description="Raise HTTPError on non-ok responses")

    cookie_jar: Any = Field(None, description="Object with get_cookie_string/set_cookie")
    ignore_invalid_cookies: bool = Field(False, description="Skip cookies the jar rejects")
    cache: Any = Field(None, description="CacheStorage for GET/HEAD responses")
    dns_cache: bool = Field(True, description="Let the transport cache DNS lookups")
    transport: Any = Field(None, description="Callable performing one exchange")

    response_type: Literal["text", "json", "buffer"] = Field("text", description="How the body is parsed")
    resolve_body_only: bool = Field(False, description="Await the parsed body instead of the response")
    encoding: Optional[str] = Field(None, description="Text encoding override")
    parse_json: Callable[[str], Any] = Field(json.loads, description="JSON decoder")
    stringify_json: Callable[[Any], str] = Field(json.dumps, description="JSON encoder")
    context: dict[str, Any] = Field(default_factory=dict, description="Free-form data for hooks")

    model_config = {"extra": "forbid", "arbitrary_types_allowed": True, "populate_by_name": True}

    @field_validator("url", "prefix_url", mode="before")
    @classmethod
    def _coerce_url(cls, value: Any) -> Optional[URL]:
        return _to_url(value)

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    @field_validator("headers", mode="before")
    @classmethod
    def _lower_headers(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return check_headers(value)
        return value

    @field_validator("timeout", mode="before")
    @classmethod
    def _coerce_timeout(cls, value: Any) -> Any:
        return _SHORTHANDS["timeout"](value)

    @field_validator("retry", mode="before")
    @classmethod
    def _coerce_retry(cls, value: Any) -> Any:
        return _SHORTHANDS["retry"](value)

    @classmethod
    def create(cls, url: Union[str, URL, None] = None, *, defaults: Optional["Options"] = None, **kwargs: Any) -> "Options":
        """
        Normalize keyword options over ``defaults``.

        ``init`` hooks (defaults first) see the raw keyword dict and may
        mutate it or return a patch.

        Raises:
            pydantic.ValidationError: On unknown options or invalid values
            TypeError: On invalid header values
            UnsupportedProtocolError: If the URL is not http(s)
        """
        raw = dict(kwargs)
        if url is not None:
            raw["url"] = url

        base = defaults.clone() if defaults is not None else cls()
        hooks = base.hooks.merged(raw.pop("hooks", None))
        for hook in hooks.init:
            patch = hook(raw)
            if isinstance(patch, Mapping):
                raw.update(patch)

        explicit = cls.model_validate(raw)
        base.merge({name: getattr(explicit, name) for name in explicit.model_fields_set})
        base.hooks = hooks
        base.resolve()
        return base

    def clone(self) -> "Options":
        """Copy the options; mutable containers are copied, bodies are shared."""
        return self.model_copy(
            update={
                "headers": dict(self.headers),
                "context": dict(self.context),
                "timeout": self.timeout.model_copy(),
                "retry": self.retry.model_copy(
                    update={
                        "methods": list(self.retry.methods),
                        "status_codes": list(self.retry.status_codes),
                        "error_codes": list(self.retry.error_codes),
                    }
                ),
                "hooks": self.hooks.clone(),
            }
        )

    def merge(self, patch: Union[Mapping[str, Any], "Options"]) -> "Options":
        """
        Fold ``patch`` into these options in place.

        Headers and context are merged key by key, ``timeout`` and ``retry``
        field by field, hooks are appended. Everything else is replaced.

        Returns:
            self
        """
        if isinstance(patch, Options):
            patch = {name: getattr(patch, name) for name in patch.model_fields_set}

        for key, value in patch.items():
            name = "json_body" if key == "json" else key
            if name not in type(self).model_fields:
                raise TypeError(f"Unknown option: {key}")

            if name == "headers":
                self.headers.update(check_headers(value))
            elif name == "context":
                self.context.update(value)
            elif name == "hooks":
                self.hooks = self.hooks.merged(value)
            elif name in ("timeout", "retry"):
                setattr(self, name, self._merge_section(name, value))
            elif name in ("url", "prefix_url"):
                setattr(self, name, _to_url(value))
            elif name == "method":
                self.method = value.upper()
            else:
                setattr(self, name, value)
        return self

    def _merge_section(self, name: str, value: Any) -> BaseModel:
        current = getattr(self, name)
        if isinstance(value, BaseModel):
            update = {field: getattr(value, field) for field in value.model_fields_set}
        else:
            update = dict(_SHORTHANDS[name](value))
        data = {field: getattr(current, field) for field in type(current).model_fields}
        data.update(update)
        return type(current).model_validate(data)

    def resolve(self) -> None:
        """
        Resolve the final URL and derived settings.

        Applies ``prefix_url`` and ``search_params``, lifts credentials out of
        the URL, validates the scheme and derives ``retry.max_retry_after``.
        """
        self.headers = check_headers(self.headers)

        if self.url is None:
            if self.prefix_url is None:
                return
            self.url = self.prefix_url
        elif not self.url.is_absolute():
            if self.prefix_url is None:
                raise ValueError(f"Invalid URL: {self.url} (relative URL without prefix_url)")
            self.url = URL(str(self.prefix_url).rstrip("/") + "/" + str(self.url).lstrip("/"))

        if self.search_params:
            self.url = self.url.update_query({k: str(v) for k, v in self.search_params.items()})
            self.search_params = None

        if self.url.user is not None or self.url.password is not None:
            self.username = self.username or (self.url.user or "")
            self.password = self.password or (self.url.password or "")
            self.url = self.url.with_user(None)

        if self.url.scheme not in SUPPORTED_SCHEMES:
            raise UnsupportedProtocolError(str(self.url), options=self)

        if self.retry.max_retry_after is None:
            budgets = [b for b in (self.timeout.request, self.timeout.connect) if b is not None]
            if budgets:
                self.retry.max_retry_after = min(budgets)
