"""Duplex streaming interface over the request engine."""

from __future__ import annotations

from collections.abc import AsyncIterator
from types import TracebackType
from typing import Any, Callable, Optional, Union

from ..models.options import Options
from .request import Request
from .response import Response, decode_text
from .timings import Timings


class RequestStream:
    """
    Readable response body plus a writable request body.

    Iterating yields the decompressed body as it arrives. When no
    ``body``/``json``/``form`` option is given and the method can carry a
    body, the request body is streamed with :meth:`write` and finished with
    :meth:`end`; the upload does not complete until :meth:`end` is called.

    Example:
        async with client.stream("https://example.com/upload", method="POST") as stream:
            stream.write(b"chunk one")
            stream.end(b"chunk two")
            response = await stream.response()
            async for chunk in stream:
                sink.write(chunk)
    """

    def __init__(self, options: Options) -> None:
        self.options = options
        self._request = Request(options, accept_writes=True)
        self._request.start()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._request.iter_chunks()

    async def __aenter__(self) -> RequestStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    @property
    def request(self) -> Request:
        return self._request

    @property
    def timings(self) -> Optional[Timings]:
        return self._request.timings

    @property
    def redirect_urls(self) -> list[str]:
        return list(self._request.redirect_urls)

    @property
    def retry_count(self) -> int:
        return self._request.retry_count

    @property
    def writable(self) -> bool:
        return self._request.writable

    @property
    def settled(self) -> bool:
        return self._request.settled

    def on(self, event: Any, listener: Callable[..., Any]) -> RequestStream:
        self._request.events.on(event, listener)
        return self

    def once(self, event: Any, listener: Callable[..., Any]) -> RequestStream:
        self._request.events.once(event, listener)
        return self

    def write(self, chunk: Union[bytes, str]) -> None:
        """
        Write a chunk of the request body.

        Raises:
            TypeError: If a body option was given or the method has no body
        """
        self._request.write(chunk)

    def end(self, chunk: Union[bytes, str, None] = None) -> None:
        self._request.end(chunk)

    async def response(self) -> Response:
        """Wait for the final response headers."""
        return await self._request.response()

    async def read(self) -> bytes:
        """Read the rest of the body."""
        return b"".join([chunk async for chunk in self._request.iter_chunks()])

    async def text(self) -> str:
        body = await self.read()
        response = await self._request.response()
        return decode_text(body, response.content_type, self.options.encoding)

    def destroy(self, error: Optional[BaseException] = None) -> None:
        """Abort the request; pending reads raise ``error`` or :class:`CancelError`."""
        self._request.destroy(error)

    async def aclose(self) -> None:
        """Abort the request if it is still running and wait for teardown."""
        if not self._request.settled:
            self._request.destroy()
        await self._request.wait_settled()
