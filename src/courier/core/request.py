"""
Request engine: drive one logical request through its physical attempts.

A :class:`Request` owns the options of one logical request and runs a single
asyncio task that performs attempts, follows redirects, consults the retry
scheduler and finally settles. Results flow out through a channel: a
response future plus a queue of body chunks. The stream and promise
interfaces are thin adapters over that channel.
"""

from __future__ import annotations

import asyncio
import base64
import functools
import inspect
import logging
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from yarl import URL

from .. import errors
from ..errors import (
    CacheError,
    CancelError,
    HTTPError,
    MaxRedirectsError,
    ReadError,
    RequestError,
    RetryError,
    UnsupportedProtocolError,
    UploadError,
)
from ..http.cache import CacheStorageError, CachingTransport
from ..http.protocols import RawResponse, RequestHandle, TransportOptions
from ..models.events import AttemptEvent, EventType, Progress
from ..models.options import SUPPORTED_SCHEMES, Options
from . import retry as retry_scheduler
from .body import METHODS_WITHOUT_BODY, PreparedBody, prepare_body
from .decompress import accept_encoding, decompress, is_supported
from .emitter import EventEmitter
from .response import REDIRECT_CODES, Response, decode_text
from .timeouts import TimeoutController
from .timings import Timings, TimingTracker

if TYPE_CHECKING:
    from ..http.aiohttp_transport import AiohttpTransport

logger = logging.getLogger(__name__)

# Replaced in tests to skip real backoff delays
_sleep = asyncio.sleep

# Longest time spent reading an error body for diagnostics
DIAGNOSTIC_DRAIN_TIMEOUT = 5.0

_EOF = object()

BODY_OPTIONS = frozenset({"body", "json", "json_body", "form"})

CONNECTION_EVENTS = (
    AttemptEvent.SOCKET,
    AttemptEvent.LOOKUP,
    AttemptEvent.CONNECT,
    AttemptEvent.SECURE_CONNECT,
    AttemptEvent.UPLOAD,
)


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _retrieve(future: asyncio.Future) -> None:
    # Mark the exception as retrieved so unobserved failures do not warn
    if not future.cancelled():
        future.exception()


async def _next_chunk(iterator: AsyncIterator[bytes]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _EOF


def is_cross_origin(current: URL, target: URL) -> bool:
    """Different hostname or effective port."""
    return (current.host or "").lower() != (target.host or "").lower() or current.port != target.port


def decode_location(location: str) -> str:
    """Undo a UTF-8 location header that was decoded as latin-1."""
    try:
        return location.encode("latin-1").decode("utf-8")
    except UnicodeError:
        return location


@dataclass(frozen=True)
class Continue:
    """``after_response`` outcome: keep going with this response."""

    response: Response


@dataclass(frozen=True)
class Retry:
    """``after_response`` outcome: merge ``patch`` and dispatch again."""

    patch: Mapping[str, Any]


AfterResponse = Callable[[Response], Awaitable[Union[Continue, Retry]]]


class Attempt:
    """
    One physical exchange against one URL.

    Owns the timing tracker, the timeout controller and the transport handle
    of the exchange. :meth:`close` tears all of them down and is idempotent.
    """

    def __init__(self, options: Options, retry_count: int, *, timeout_error: Callable[[str, float], RequestError]) -> None:
        url = options.url
        assert url is not None
        self.url = url
        self.retry_count = retry_count
        self.events = EventEmitter()
        self.tracker = TimingTracker()
        self.tracker.attach(self.events)
        self.controller = TimeoutController(
            options.timeout,
            hostname=url.host,
            secure=url.scheme == "https",
            on_timeout=self._on_timeout,
        )
        self._timeout_error = timeout_error
        self.handle: Optional[RequestHandle] = None
        self.raw: Optional[RawResponse] = None
        self.upload_task: Optional[asyncio.Task] = None
        self.failure: asyncio.Future = asyncio.get_running_loop().create_future()
        self.failure.add_done_callback(_retrieve)
        self.reused = False
        self.closed = False
        self.events.on(AttemptEvent.SOCKET, self._on_socket)
        self.events.on(AttemptEvent.RESPONSE, self._on_response)

    @property
    def timings(self) -> Timings:
        return self.tracker.timings

    def start(self) -> None:
        self.controller.start(self.events)

    def bind(self, handle: RequestHandle) -> None:
        """Forward the handle's connection events and attach the idle budget."""
        self.handle = handle
        self.controller.bind(handle)
        for event in CONNECTION_EVENTS:
            handle.events.on(event, functools.partial(self.events.emit, event))

    def fail(self, error: BaseException) -> None:
        """Fail the attempt from outside the engine task (timeouts, upload errors)."""
        if not self.failure.done():
            self.failure.set_exception(error)
        if self.handle is not None:
            self.handle.abort()

    async def race(self, awaitable: Awaitable[Any]) -> Any:
        """Await ``awaitable`` unless the attempt fails first."""
        task = asyncio.ensure_future(awaitable)
        try:
            await asyncio.wait({task, self.failure}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task.done():
            return task.result()
        task.cancel()
        task.add_done_callback(_retrieve)
        raise self.failure.exception()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.controller.cancel()
        if self.upload_task is not None and not self.upload_task.done():
            self.upload_task.cancel()
        if self.raw is not None:
            self.raw.release()
        if self.handle is not None:
            self.handle.abort()
        if not self.tracker.finished:
            self.events.emit(AttemptEvent.ABORT)
        if not self.failure.done():
            self.failure.cancel()

    def _on_timeout(self, phase: str, budget: float) -> None:
        self.fail(self._timeout_error(phase, budget))

    def _on_socket(self, reused: bool = False, *_: Any) -> None:
        self.reused = reused

    def _on_response(self, *_: Any) -> None:
        if self.handle is not None and not self.reused:
            connection = self.tracker.connection_timings
            if connection is not None:
                self.handle.record_connection(connection)


class Request:
    """
    Drive one logical request: body preparation, transport call, redirects,
    retries and settlement.

    Args:
        options: Normalized options, mutated in place across attempts
        buffer_body: Download the whole body before settling (promise mode)
        after_response: Callback run on the buffered final response that
            returns :class:`Continue` or :class:`Retry`
        accept_writes: Allow the caller to stream the body with
            :meth:`write` / :meth:`end` when no body option is given

    Raises:
        TypeError: Synchronously, on conflicting or invalid body options

    Example:
        request = Request(options, buffer_body=True).start()
        response = await request.response()
    """

    def __init__(
        self,
        options: Options,
        *,
        buffer_body: bool = False,
        after_response: Optional[AfterResponse] = None,
        accept_writes: bool = False,
    ) -> None:
        if options.url is None:
            raise TypeError("Missing `url` option")
        self.options = options
        self.events = EventEmitter()
        self.request_url = str(options.url)
        self.redirect_urls: list[str] = []
        self.retry_count = 0

        self._buffer_body = buffer_body
        self._after_response = after_response
        self._body: PreparedBody = prepare_body(options)

        loop = asyncio.get_running_loop()
        self._response_future: asyncio.Future[Response] = loop.create_future()
        self._response_future.add_done_callback(_retrieve)
        self._settled: asyncio.Future[None] = loop.create_future()
        self._chunks: asyncio.Queue[Any] = asyncio.Queue()

        self._manual_body: Optional[asyncio.Queue[Any]] = None
        self._write_state = "locked"
        can_have_body = options.method not in METHODS_WITHOUT_BODY or (
            options.allow_get_body and options.method == "GET"
        )
        if accept_writes and self._body.is_empty and can_have_body:
            self._manual_body = asyncio.Queue()
            self._body = PreparedBody(payload=self._iter_manual_body(), replayable=False)
            self._write_state = "open"

        self._attempt: Optional[Attempt] = None
        self._task: Optional[asyncio.Task] = None
        self._owned_transport: Optional[AiohttpTransport] = None
        self._destroyed = False
        self._destroy_error: Optional[BaseException] = None
        self._delivered_bytes = False
        self.dispatched = False

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    def start(self) -> Request:
        """Schedule the engine task. Calling it again has no effect."""
        if self._task is None and not self._settled.done():
            self._task = asyncio.ensure_future(self._run())
            self._task.add_done_callback(self._on_task_done)
        return self

    async def response(self) -> Response:
        """Wait for the final response (headers in stream mode, full body otherwise)."""
        return await asyncio.shield(self._response_future)

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield the decompressed body. Only one consumer may iterate."""
        while True:
            item = await self._chunks.get()
            if item is _EOF:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def wait_settled(self) -> None:
        await asyncio.shield(self._settled)

    @property
    def settled(self) -> bool:
        return self._settled.done()

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def timings(self) -> Optional[Timings]:
        return self._attempt.timings if self._attempt is not None else None

    @property
    def attempt(self) -> Optional[Attempt]:
        return self._attempt

    @property
    def writable(self) -> bool:
        return self._write_state == "open"

    def write(self, chunk: Union[bytes, str]) -> None:
        """
        Queue a chunk of a manually streamed body.

        Chunks written before the transport handle exists are flushed in
        order once it does.

        Raises:
            TypeError: If the body was given as an option or the method
                cannot have a body
        """
        if self._write_state == "locked":
            raise TypeError("The payload has been already provided")
        if self._write_state == "ended":
            raise RuntimeError("write() called after end()")
        assert self._manual_body is not None
        self._manual_body.put_nowait(chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk))

    def end(self, chunk: Union[bytes, str, None] = None) -> None:
        """Finish a manually streamed body."""
        if self._write_state != "open":
            if chunk:
                self.write(chunk)
            return
        if chunk:
            self.write(chunk)
        assert self._manual_body is not None
        self._manual_body.put_nowait(_EOF)
        self._write_state = "ended"

    def destroy(self, error: Optional[BaseException] = None) -> None:
        """
        Cancel the request.

        Signaling is synchronous: the engine stops scheduling retries and
        events at once; teardown of the attempt completes asynchronously.
        Has no effect once the request has settled.
        """
        if self._destroyed or self._settled.done():
            return
        self._destroyed = True
        self._destroy_error = error
        if self._task is not None and not self._task.done():
            self._task.cancel()
        else:
            self._fail(self._cancel_error())

    def merge_options(self, patch: Any) -> None:
        """Fold a hook patch into the options."""
        if patch is None:
            return
        if not isinstance(patch, (Mapping, Options)):
            raise TypeError(f"Hooks must return None or a mapping of options, got {type(patch).__name__}")
        keys = patch.keys() if isinstance(patch, Mapping) else patch.model_fields_set
        self.options.merge(patch)
        if BODY_OPTIONS.intersection(keys):
            self.options.headers.pop("content-length", None)
            self._body = prepare_body(self.options)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            await self._lifecycle()
        except asyncio.CancelledError:
            self._fail(self._cancel_error())
        except RequestError as error:
            self._fail(error)
        except Exception as exc:
            self._fail(RequestError(str(exc) or type(exc).__name__, exc, options=self.options, request=self))
        finally:
            self._close_attempt()
            if self._owned_transport is not None:
                await self._owned_transport.close()
                self._owned_transport = None

    def _on_task_done(self, task: asyncio.Task) -> None:
        # A task canceled before its first step never enters _run
        if not self._settled.done():
            self._close_attempt()
            self._fail(self._cancel_error())

    def _cancel_error(self) -> BaseException:
        if self._destroy_error is not None:
            return self._destroy_error
        return CancelError(options=self.options, request=self)

    async def _lifecycle(self) -> None:
        while True:
            try:
                await self._dispatch()
                return
            except RequestError as exc:
                error = exc
            except Exception as exc:
                error = RequestError(str(exc) or type(exc).__name__, exc, options=self.options, request=self)
            self._tag(error)
            if self._destroyed:
                raise error
            if not await self._handle_failure(error):
                return

    def _tag(self, error: RequestError) -> None:
        if error.options is None:
            error.options = self.options
        if error.request is None:
            error.request = self

    def _mark_attempt_error(self, error: RequestError) -> None:
        attempt = self._attempt
        if attempt is not None and not attempt.tracker.finished:
            attempt.events.emit(AttemptEvent.ERROR, error)

    async def _handle_failure(self, error: RequestError) -> bool:
        """
        Retry, resolve or fail after an attempt raised.

        Returns:
            True if a new attempt should start
        """
        if isinstance(error, RetryError):
            delay = retry_scheduler.decide(
                self.retry_count + 1, self.options.retry, error, computed=retry_scheduler.FORCED_RETRY_DELAY
            ).delay
            retrying = delay > 0
        elif self._response_future.done():
            # The caller already holds this attempt's response
            delay = 0.0
            retrying = False
        else:
            delay = retry_scheduler.decide(self.retry_count + 1, self.options.retry, error).delay
            retrying = delay > 0

        if not retrying and isinstance(error, HTTPError) and not self.options.throw_http_errors:
            await self._deliver(error.response)
            return False

        await self._drain_for_diagnostics(error)
        self._mark_attempt_error(error)

        if retrying:
            try:
                await self._schedule_retry(error, delay)
                return True
            except RequestError as retry_error:
                self._tag(retry_error)
                error = retry_error

        error = await self._run_before_error(error)
        self._fail(error)
        return False

    async def _schedule_retry(self, error: RequestError, delay: float) -> None:
        self._close_attempt()
        if not self._body.replayable and self._body.consumed:
            raise RequestError(
                "Cannot retry a request whose body stream has already been consumed",
                error,
                options=self.options,
                request=self,
            )

        if not isinstance(error, RetryError):
            logger.warning(
                f"{self.options.method} {self.options.url} failed ({error.code}), retrying in {delay:.2f}s "
                f"(retry {self.retry_count + 1}/{self.options.retry.limit})"
            )
        if delay > 0:
            await _sleep(delay)

        for hook in self.options.hooks.before_retry:
            try:
                patch = await maybe_await(hook(error, self.retry_count + 1))
            except Exception as exc:
                raise RequestError(str(exc) or type(exc).__name__, exc, options=self.options, request=self) from exc
            self.merge_options(patch)

        self.retry_count += 1
        self.events.emit(EventType.RETRY, self.retry_count, error)

    async def _run_before_error(self, error: RequestError) -> RequestError:
        for hook in self.options.hooks.before_error:
            try:
                result = await maybe_await(hook(error))
            except Exception as exc:
                error = RequestError(str(exc) or type(exc).__name__, exc, options=self.options, request=self)
                self._tag(error)
                break
            if isinstance(result, RequestError):
                error = result
        return error

    async def _drain_for_diagnostics(self, error: RequestError) -> None:
        response = error.response
        attempt = self._attempt
        if not isinstance(error, HTTPError) or response is None:
            return
        if response.raw_body is not None or self._delivered_bytes:
            return
        if attempt is None or attempt.closed or attempt.raw is None:
            return
        try:
            body = await asyncio.wait_for(self._read_body(attempt, response), DIAGNOSTIC_DRAIN_TIMEOUT)
        except Exception as e:
            logger.debug(f"Could not read error response body from {response.url}: {e}")
            return
        response.raw_body = body
        response.body = decode_text(body, response.content_type, self.options.encoding)

    def _fail(self, error: BaseException) -> None:
        if self._settled.done():
            return
        if not self._response_future.done():
            self._response_future.set_exception(error)
        self._chunks.put_nowait(error)
        self._settled.set_result(None)
        self.events.emit(EventType.ERROR, error)

    async def _deliver(self, response: Response) -> None:
        """Settle successfully with ``response``, streaming its body if needed."""
        attempt = self._attempt
        if not self._response_future.done():
            self._response_future.set_result(response)

        if response.raw_body is not None:
            if response.raw_body:
                self._chunks.put_nowait(response.raw_body)
        elif attempt is not None and not attempt.closed:
            async for chunk in self._download(attempt, response):
                self._delivered_bytes = True
                self._chunks.put_nowait(chunk)

        self._chunks.put_nowait(_EOF)
        self._close_attempt()
        if not self._settled.done():
            self._settled.set_result(None)

    def _close_attempt(self) -> None:
        if self._attempt is not None:
            self._attempt.close()

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    async def _dispatch(self) -> None:
        while True:
            response = await self._perform_attempt()
            if (
                self.options.follow_redirect
                and response.status_code in REDIRECT_CODES
                and "location" in response.headers
            ):
                await self._redirect(response)
                continue
            await self._finish_response(response)
            return

    async def _perform_attempt(self) -> Response:
        options = self.options
        attempt = Attempt(options, self.retry_count, timeout_error=self._timeout_error)
        self._attempt = attempt
        self.dispatched = True
        attempt.start()

        raw = await attempt.race(self._prepare_request())
        if raw is None:
            result = await attempt.race(self._call_transport())
            if isinstance(result, RequestHandle):
                attempt.bind(result)
                self.events.emit(EventType.REQUEST, result)
                attempt.upload_task = asyncio.ensure_future(self._upload(attempt, result))
                raw = await attempt.race(self._await_response(result))
            else:
                raw = result

        attempt.raw = raw
        attempt.events.emit(AttemptEvent.RESPONSE)
        response = Response.from_raw(
            raw,
            url=str(options.url),
            request_url=self.request_url,
            redirect_urls=self.redirect_urls,
            retry_count=self.retry_count,
            timings=attempt.timings,
            options=options,
        )
        await self._store_cookies(response)
        return response

    def _timeout_error(self, phase: str, budget: float) -> RequestError:
        return errors.TimeoutError(phase, budget, options=self.options, request=self)

    async def _prepare_request(self) -> Optional[RawResponse]:
        """Finalize headers and run ``before_request`` hooks; a hook may return a response."""
        options = self.options
        headers = options.headers

        if options.decompress and "accept-encoding" not in headers:
            headers["accept-encoding"] = accept_encoding()

        if (options.username or options.password) and "authorization" not in headers:
            credentials = f"{options.username}:{options.password}".encode("utf-8")
            headers["authorization"] = "Basic " + base64.b64encode(credentials).decode("ascii")

        if options.cookie_jar is not None:
            try:
                cookie_string = await maybe_await(options.cookie_jar.get_cookie_string(str(options.url)))
            except Exception as e:
                raise RequestError(f"Failed to read cookies: {e}", e, options=options, request=self) from e
            if cookie_string:
                headers["cookie"] = cookie_string

        for hook in options.hooks.before_request:
            result = await maybe_await(hook(options))
            if isinstance(result, RawResponse):
                self._strip_removed_headers()
                return result
            self.merge_options(result)

        self._strip_removed_headers()
        return None

    def _strip_removed_headers(self) -> None:
        headers = self.options.headers
        for name in [name for name, value in headers.items() if value is None]:
            del headers[name]

    def _transport(self) -> Any:
        transport = self.options.transport
        if transport is None:
            if self._owned_transport is None:
                from ..http.aiohttp_transport import AiohttpTransport

                self._owned_transport = AiohttpTransport()
            transport = self._owned_transport
        if self.options.cache is not None:
            transport = CachingTransport(transport, self.options.cache)
        return transport

    async def _call_transport(self) -> Union[RequestHandle, RawResponse]:
        options = self.options
        transport_options = TransportOptions(
            method=options.method,
            headers=dict(options.headers),
            has_body=not self._body.is_empty,
            content_length=self._body.size,
            dns_cache=options.dns_cache,
            context=options.context,
        )
        try:
            return await maybe_await(self._transport()(options.url, transport_options))
        except RequestError:
            raise
        except CacheStorageError as e:
            raise CacheError(e, options=options, request=self) from e
        except Exception as e:
            raise RequestError(str(e) or type(e).__name__, e, options=options, request=self) from e

    async def _await_response(self, handle: RequestHandle) -> RawResponse:
        try:
            return await handle.response()
        except RequestError:
            raise
        except CacheStorageError as e:
            raise CacheError(e, options=self.options, request=self) from e
        except Exception as e:
            raise RequestError(str(e) or type(e).__name__, e, options=self.options, request=self) from e

    async def _upload(self, attempt: Attempt, handle: RequestHandle) -> None:
        total = self._body.size
        uploaded = 0
        self.events.emit(EventType.UPLOAD_PROGRESS, Progress.of(0, total))
        try:
            async for chunk in self._body.chunks():
                await handle.write(chunk)
                uploaded += len(chunk)
                self.events.emit(EventType.UPLOAD_PROGRESS, Progress.of(uploaded, total))
            await handle.end()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            attempt.fail(UploadError(e, options=self.options, request=self))
            return
        self.events.emit(EventType.UPLOAD_PROGRESS, Progress.done(uploaded))

    async def _iter_manual_body(self) -> AsyncIterator[bytes]:
        assert self._manual_body is not None
        while True:
            chunk = await self._manual_body.get()
            if chunk is _EOF:
                return
            yield chunk

    async def _store_cookies(self, response: Response) -> None:
        jar = self.options.cookie_jar
        if jar is None:
            return
        for raw_cookie in response.headers.getall("set-cookie", []):
            try:
                await maybe_await(jar.set_cookie(raw_cookie, response.url))
            except Exception as e:
                if self.options.ignore_invalid_cookies:
                    logger.debug(f"Ignoring invalid cookie from {response.url}: {e}")
                    continue
                raise RequestError(
                    f"Failed to set cookie: {e}", e, options=self.options, response=response, request=self
                ) from e

    async def _redirect(self, response: Response) -> None:
        options = self.options
        self._close_attempt()

        if len(self.redirect_urls) >= options.max_redirects:
            raise MaxRedirectsError(response, options.max_redirects, request=self)

        status = response.status_code
        rewrite = options.method not in METHODS_WITHOUT_BODY and (
            status == 303 or (status in (301, 302) and options.method_rewriting)
        )
        if rewrite:
            options.method = "GET"
            options.body = None
            options.json_body = None
            options.form = None
            options.headers.pop("content-length", None)
            self._body = PreparedBody()
        elif not self._body.replayable and self._body.consumed:
            raise RequestError(
                "Cannot follow a redirect that resends an already consumed body stream",
                options=options,
                response=response,
                request=self,
            )

        current = options.url
        assert current is not None
        location = decode_location(response.headers["location"])
        try:
            target = current.join(URL(location))
        except ValueError as e:
            raise RequestError(f"Invalid redirect location: {location}", e, options=options, response=response) from e
        if target.scheme not in SUPPORTED_SCHEMES:
            raise UnsupportedProtocolError(str(target), options=options, request=self)

        if is_cross_origin(current, target):
            for name in ("host", "cookie", "authorization"):
                options.headers.pop(name, None)
            options.username = ""
            options.password = ""

        self.redirect_urls.append(str(target))
        options.url = target
        logger.debug(f"Following {status} redirect from {current} to {target}")

        for hook in options.hooks.before_redirect:
            self.merge_options(await maybe_await(hook(options, response)))

        self.events.emit(EventType.REDIRECT, response, options)

    async def _finish_response(self, response: Response) -> None:
        self.events.emit(EventType.RESPONSE, response)
        attempt = self._attempt
        assert attempt is not None

        if self._buffer_body:
            response.raw_body = await self._read_body(attempt, response)
            if self._after_response is not None:
                outcome = await self._after_response(response)
                if isinstance(outcome, Retry):
                    self.merge_options(outcome.patch)
                    raise RetryError(options=self.options, request=self)
                response = outcome.response

        if not response.ok:
            raise HTTPError(response, request=self)

        await self._deliver(response)

    async def _read_body(self, attempt: Attempt, response: Response) -> bytes:
        chunks = [chunk async for chunk in self._download(attempt, response)]
        return b"".join(chunks)

    async def _download(self, attempt: Attempt, response: Response) -> AsyncIterator[bytes]:
        """Yield the (decompressed) body of the attempt's response, with progress events."""
        raw = attempt.raw
        assert raw is not None
        length = response.headers.get("content-length")
        total = int(length) if length and length.isdigit() else None
        transferred = 0
        self.events.emit(EventType.DOWNLOAD_PROGRESS, Progress.of(0, total))

        async def counted() -> AsyncIterator[bytes]:
            nonlocal transferred
            async for chunk in raw.iter_chunks():
                transferred += len(chunk)
                self.events.emit(EventType.DOWNLOAD_PROGRESS, Progress.of(transferred, total))
                yield chunk

        encoding = response.headers.get("content-encoding", "")
        source: AsyncIterator[bytes] = counted()
        if self.options.decompress and is_supported(encoding):
            source = decompress(source, encoding)

        iterator = source.__aiter__()
        while True:
            try:
                chunk = await attempt.race(_next_chunk(iterator))
            except RequestError:
                raise
            except CacheStorageError as e:
                raise CacheError(e, options=self.options, request=self) from e
            except Exception as e:
                raise ReadError(e, options=self.options, response=response, request=self) from e
            if chunk is _EOF:
                break
            yield chunk

        attempt.events.emit(AttemptEvent.END)
        self.events.emit(EventType.DOWNLOAD_PROGRESS, Progress.done(transferred))
