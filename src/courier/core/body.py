"""Request body preparation."""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Union
from urllib.parse import urlencode

if TYPE_CHECKING:
    from ..models.options import Options

METHODS_WITHOUT_BODY = frozenset({"GET", "HEAD"})

Payload = Union[bytes, AsyncIterable, Iterable]


@dataclass
class PreparedBody:
    """
    Body of a request after serialization.

    Attributes:
        payload: bytes, an (async) iterable of bytes, or None for no body
        size: Body size in bytes when known
        replayable: False for single-use iterables that can only be sent once
    """

    payload: Optional[Payload] = None
    size: Optional[int] = None
    replayable: bool = True
    consumed: bool = False

    @property
    def is_empty(self) -> bool:
        return self.payload is None

    async def chunks(self) -> AsyncIterator[bytes]:
        """Iterate the payload as bytes chunks, marking single-use bodies consumed."""
        payload = self.payload
        if payload is None:
            return
        if isinstance(payload, bytes):
            if payload:
                yield payload
            return

        self.consumed = True
        if isinstance(payload, AsyncIterable):
            async for chunk in payload:
                yield _as_bytes(chunk)
        else:
            for chunk in payload:
                yield _as_bytes(chunk)


def _as_bytes(chunk: Any) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    raise TypeError(f"Body chunks must be bytes or str, got {type(chunk).__name__}")


def _is_stream(value: Any) -> bool:
    if isinstance(value, (str, bytes, bytearray, memoryview, Mapping)):
        return False
    return isinstance(value, (AsyncIterable, Iterable)) or inspect.isasyncgen(value)


def body_options_given(options: Options) -> list[str]:
    given = []
    if options.body is not None:
        given.append("body")
    if options.json_body is not None:
        given.append("json")
    if options.form is not None:
        given.append("form")
    return given


def prepare_body(options: Options) -> PreparedBody:
    """
    Validate and serialize the body options.

    Sets ``content-type`` for ``json``/``form`` bodies and ``content-length``
    when the size is known and neither ``content-length`` nor
    ``transfer-encoding`` is already present.

    Raises:
        TypeError: On conflicting body options, a body on GET/HEAD or an
            unsupported body type
    """
    given = body_options_given(options)
    if len(given) > 1:
        raise TypeError("The `body`, `json` and `form` options are mutually exclusive")

    headers = options.headers
    method = options.method

    if given:
        if method in METHODS_WITHOUT_BODY and not (options.allow_get_body and method == "GET"):
            raise TypeError(f"The `{given[0]}` option cannot be used with a {method} request")

    prepared = PreparedBody()
    if options.body is not None:
        body = options.body
        if isinstance(body, str):
            prepared = PreparedBody(payload=body.encode("utf-8"))
        elif isinstance(body, (bytes, bytearray, memoryview)):
            prepared = PreparedBody(payload=bytes(body))
        elif isinstance(body, (list, tuple)):
            chunks = [_as_bytes(chunk) for chunk in body]
            prepared = PreparedBody(payload=b"".join(chunks))
        elif _is_stream(body):
            prepared = PreparedBody(payload=body, replayable=False)
        else:
            raise TypeError(
                "The `body` option must be bytes, str or an iterable of bytes, "
                f"got {type(body).__name__}"
            )
    elif options.form is not None:
        if not isinstance(options.form, Mapping):
            raise TypeError("The `form` option must be a mapping")
        headers.setdefault("content-type", "application/x-www-form-urlencoded")
        prepared = PreparedBody(payload=urlencode(options.form, doseq=True).encode("utf-8"))
    elif options.json_body is not None:
        headers.setdefault("content-type", "application/json")
        prepared = PreparedBody(payload=options.stringify_json(options.json_body).encode("utf-8"))

    if isinstance(prepared.payload, bytes):
        prepared.size = len(prepared.payload)

    if (
        prepared.size is not None
        and headers.get("content-length") is None
        and headers.get("transfer-encoding") is None
    ):
        headers["content-length"] = str(prepared.size)

    return prepared
