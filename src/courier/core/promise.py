"""Awaitable, cancelable interface over the request engine."""

from __future__ import annotations

import logging
from collections.abc import Generator, Mapping
from typing import Any, Callable, Union

from ..errors import ParseError
from ..models.options import Options
from .request import Continue, Request, Retry, maybe_await
from .response import Response, decode_text, parse_body

logger = logging.getLogger(__name__)


class CancelableRequest:
    """
    Awaitable result of a logical request.

    The engine starts as soon as the object is created. Awaiting it yields
    the :class:`Response` with a fully downloaded and parsed body (or the
    parsed body alone with ``resolve_body_only``).

    Example:
        request = client.get("https://api.example.com/items")
        request.on("download_progress", print)
        items = await request.json()

        slow = client.get("https://example.com/slow")
        slow.cancel()
    """

    def __init__(self, options: Options) -> None:
        self.options = options
        self._canceled = False
        self._request = Request(options, buffer_body=True, after_response=self._after_response)
        self._request.start()

    def __await__(self) -> Generator[Any, None, Any]:
        return self._result().__await__()

    async def _result(self) -> Any:
        response = await self._request.response()
        if self.options.resolve_body_only:
            return response.body
        return response

    @property
    def request(self) -> Request:
        return self._request

    @property
    def is_canceled(self) -> bool:
        return self._canceled

    def on(self, event: Any, listener: Callable[..., Any]) -> CancelableRequest:
        """Subscribe to engine events (``request``, ``redirect``, ``retry``...)."""
        self._request.events.on(event, listener)
        return self

    def cancel(self) -> bool:
        """
        Cancel the request; the awaiting caller gets :class:`CancelError`.

        Returns:
            False if the request had already settled
        """
        if self._request.settled:
            return False
        self._canceled = True
        self._request.destroy()
        return True

    async def json(self) -> Any:
        """Wait for the shared download and parse it as JSON."""
        if not self._request.dispatched:
            self.options.headers.setdefault("accept", "application/json")
        response = await self._request.response()
        return parse_body(response, "json", self.options)

    async def text(self) -> str:
        response = await self._request.response()
        return decode_text(response.raw_body or b"", response.content_type, self.options.encoding)

    async def buffer(self) -> bytes:
        response = await self._request.response()
        return response.raw_body or b""

    async def _after_response(self, response: Response) -> Union[Continue, Retry]:
        options = self.options
        try:
            response.body = parse_body(response, options.response_type, options)
        except ParseError:
            if response.ok:
                raise
            response.body = decode_text(response.raw_body or b"", response.content_type, options.encoding)

        hooks = list(options.hooks.after_response)
        for index, hook in enumerate(hooks):

            def retry_with_merged_options(patch: Mapping[str, Any], index: int = index) -> Retry:
                # Hooks from this one on must not run twice for the same response
                options.hooks.after_response = hooks[:index]
                return Retry(patch)

            result = await maybe_await(hook(response, retry_with_merged_options))
            if isinstance(result, Retry):
                logger.debug(f"after_response hook requested a retry of {response.url}")
                return result
            if isinstance(result, Response):
                response = result

        return Continue(response)


__all__ = ["CancelableRequest", "Continue", "Retry"]
