"""Shared fixtures: an in-memory scripted transport for engine tests."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional, Union
from unittest.mock import patch

import pytest
from courier.http.protocols import RequestHandle, ResponseLike, TransportOptions
from courier.models.events import AttemptEvent
from yarl import URL


@dataclass
class Reply:
    """Scripted outcome of one exchange."""

    status: int = 200
    headers: dict[str, Any] = field(default_factory=dict)
    body: Union[bytes, list[bytes]] = b""
    reason: Optional[str] = None
    # Seconds to wait before the response headers arrive
    delay: float = 0.0
    # Raised from response() instead of returning a response
    error: Optional[BaseException] = None
    # Seconds to wait between body chunks
    chunk_delay: float = 0.0


class SlowResponse(ResponseLike):
    """ResponseLike whose chunks trickle in."""

    def __init__(self, *args: Any, chunk_delay: float = 0.0, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.chunk_delay = chunk_delay

    async def iter_chunks(self):
        for chunk in self._chunks:
            if not chunk:
                continue
            await asyncio.sleep(self.chunk_delay)
            yield bytes(chunk)


class FakeHandle(RequestHandle):
    """Request handle that plays back a :class:`Reply`."""

    def __init__(self, reply: Reply, url: URL) -> None:
        super().__init__()
        self.reply = reply
        self.url = url
        self.written: list[bytes] = []
        self.ended = asyncio.Event()
        self.aborted = False
        self.raw: Optional[ResponseLike] = None

    @property
    def body(self) -> bytes:
        return b"".join(self.written)

    async def write(self, chunk: bytes) -> None:
        self.written.append(chunk)
        self.touch()

    async def end(self) -> None:
        self.ended.set()

    async def response(self) -> ResponseLike:
        self.events.emit(AttemptEvent.SOCKET, False, None)
        self.events.emit(AttemptEvent.LOOKUP)
        self.events.emit(AttemptEvent.CONNECT)
        if self.url.scheme == "https":
            self.events.emit(AttemptEvent.SECURE_CONNECT)
        await self.ended.wait()
        self.events.emit(AttemptEvent.UPLOAD)
        if self.reply.delay:
            await asyncio.sleep(self.reply.delay)
        if self.reply.error is not None:
            raise self.reply.error
        self.raw = SlowResponse(
            self.reply.status,
            self.reply.headers,
            self.reply.body,
            reason=self.reply.reason,
            chunk_delay=self.reply.chunk_delay,
        )
        return self.raw

    def abort(self) -> None:
        self.aborted = True


@dataclass
class Call:
    url: URL
    options: TransportOptions
    handle: Optional[FakeHandle] = None


class ScriptedTransport:
    """
    Transport that answers each call with the next scripted item.

    Items may be a :class:`Reply` (played back through a :class:`FakeHandle`),
    a ``ResponseLike`` (returned directly) or an exception (raised from the
    transport call).
    """

    def __init__(self, *replies: Any) -> None:
        self.replies = list(replies)
        self.calls: list[Call] = []

    def __call__(self, url: URL, options: TransportOptions) -> Any:
        call = Call(url=url, options=options)
        self.calls.append(call)
        if not self.replies:
            raise AssertionError(f"Unexpected request to {url}")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, ResponseLike):
            return reply
        call.handle = FakeHandle(reply, url)
        return call.handle

    @property
    def urls(self) -> list[str]:
        return [str(call.url) for call in self.calls]

    @property
    def methods(self) -> list[str]:
        return [call.options.method for call in self.calls]

    async def close(self) -> None:
        pass


@pytest.fixture
def no_sleep():
    """Record retry delays instead of sleeping."""
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    with patch("courier.core.request._sleep", fake_sleep):
        yield delays
