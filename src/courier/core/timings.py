"""Per-attempt timing records derived from attempt lifecycle events."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..models.events import AttemptEvent
from .emitter import EventEmitter


@dataclass
class Phases:
    """Durations in seconds between lifecycle timestamps."""

    wait: Optional[float] = None
    dns: Optional[float] = None
    tcp: Optional[float] = None
    tls: Optional[float] = None
    request: Optional[float] = None
    first_byte: Optional[float] = None
    download: Optional[float] = None
    total: Optional[float] = None


@dataclass
class Timings:
    """
    Monotonic timestamps (``time.monotonic()`` seconds) of one attempt.

    Once ``phases.total`` has been set by a terminal event (``end``,
    ``error`` or ``abort``) it is never overwritten.
    """

    start: float
    socket: Optional[float] = None
    lookup: Optional[float] = None
    connect: Optional[float] = None
    secure_connect: Optional[float] = None
    upload: Optional[float] = None
    response: Optional[float] = None
    end: Optional[float] = None
    error: Optional[float] = None
    abort: Optional[float] = None
    phases: Phases = field(default_factory=Phases)


@dataclass(frozen=True)
class ConnectionTimings:
    """Connection-phase durations of the attempt that opened a socket."""

    dns: float
    tcp: float
    tls: Optional[float] = None


def _span(start: Optional[float], end: Optional[float]) -> Optional[float]:
    if start is None or end is None:
        return None
    return end - start


class TimingTracker:
    """
    Record timestamps for one attempt and derive phase durations.

    When the transport reuses a kept-alive socket no lookup/connect happens;
    the tracker then backfills those timestamps from the connection timings
    of the attempt that originally opened the socket, so ``phases`` stay
    comparable across attempts.

    Example:
        tracker = TimingTracker()
        tracker.attach(attempt_events)
        ...
        print(tracker.timings.phases.total)
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.timings = Timings(start=clock())
        self._secure = False

    def attach(self, events: EventEmitter) -> None:
        """Subscribe to the attempt's lifecycle events."""
        events.on(AttemptEvent.SOCKET, self.on_socket)
        events.on(AttemptEvent.LOOKUP, self.on_lookup)
        events.on(AttemptEvent.CONNECT, self.on_connect)
        events.on(AttemptEvent.SECURE_CONNECT, self.on_secure_connect)
        events.on(AttemptEvent.UPLOAD, self.on_upload)
        events.on(AttemptEvent.RESPONSE, self.on_response)
        events.on(AttemptEvent.END, self.on_end)
        events.on(AttemptEvent.ERROR, self.on_error)
        events.on(AttemptEvent.ABORT, self.on_abort)

    @property
    def finished(self) -> bool:
        return self.timings.phases.total is not None

    def on_socket(self, reused: bool = False, initial: Optional[ConnectionTimings] = None) -> None:
        timings = self.timings
        timings.socket = self._clock()
        timings.phases.wait = timings.socket - timings.start

        if reused:
            # No lookup/connect happened on this attempt
            timings.phases.dns = 0.0
            timings.phases.tcp = 0.0
            timings.lookup = timings.socket
            timings.connect = timings.socket
            if initial is not None:
                timings.lookup = timings.socket + initial.dns
                timings.connect = timings.lookup + initial.tcp
                timings.phases.dns = initial.dns
                timings.phases.tcp = initial.tcp
                if initial.tls is not None:
                    timings.secure_connect = timings.connect + initial.tls
                    timings.phases.tls = initial.tls

    def on_lookup(self) -> None:
        timings = self.timings
        timings.lookup = self._clock()
        timings.phases.dns = _span(timings.socket, timings.lookup)

    def on_connect(self) -> None:
        timings = self.timings
        timings.connect = self._clock()
        if timings.lookup is None:
            # IP literal or unix socket, no lookup took place
            timings.lookup = timings.socket
            timings.phases.dns = 0.0
        timings.phases.tcp = _span(timings.lookup, timings.connect)

    def on_secure_connect(self) -> None:
        timings = self.timings
        timings.secure_connect = self._clock()
        timings.phases.tls = _span(timings.connect, timings.secure_connect)
        self._secure = True

    def on_upload(self) -> None:
        timings = self.timings
        timings.upload = self._clock()
        timings.phases.request = _span(timings.secure_connect or timings.connect, timings.upload)

    def on_response(self) -> None:
        timings = self.timings
        timings.response = self._clock()
        timings.phases.first_byte = _span(timings.upload, timings.response)

    def on_end(self) -> None:
        timings = self.timings
        timings.end = self._clock()
        timings.phases.download = _span(timings.response, timings.end)
        self._finish(timings.end)

    def on_error(self, error: Optional[BaseException] = None) -> None:
        self.timings.error = self._clock()
        self._finish(self.timings.error)

    def on_abort(self) -> None:
        self.timings.abort = self._clock()
        self._finish(self.timings.abort)

    def _finish(self, at: float) -> None:
        # First terminal event wins
        if self.timings.phases.total is None:
            self.timings.phases.total = at - self.timings.start

    @property
    def connection_timings(self) -> Optional[ConnectionTimings]:
        """Durations worth storing for later reuse of the same socket."""
        phases = self.timings.phases
        if phases.dns is None or phases.tcp is None:
            return None
        return ConnectionTimings(dns=phases.dns, tcp=phases.tcp, tls=phases.tls if self._secure else None)
