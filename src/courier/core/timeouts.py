"""Phase timeouts: race named budgets against one in-flight attempt."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..models.events import AttemptEvent

if TYPE_CHECKING:
    from ..http.protocols import RequestHandle
    from ..models.options import TimeoutOptions
    from .emitter import EventEmitter

logger = logging.getLogger(__name__)


def is_ip_address(hostname: Optional[str]) -> bool:
    if not hostname:
        return False
    try:
        ipaddress.ip_address(hostname.strip("[]"))
    except ValueError:
        return False
    return True


class TimeoutController:
    """
    Arm one-shot timers keyed to attempt lifecycle events.

    Each phase timer is armed by the event that starts the phase and cleared
    by the event that ends it:

    ========== ======================== =================
    phase      armed on                 cleared on
    ========== ======================== =================
    request    start                    end
    lookup     socket (name lookup)     lookup, connect
    connect    lookup (socket for IPs)  connect
    secure     connect (TLS only)       secure_connect
    send       connect / reused socket  upload
    response   upload                   response
    read       response                 end
    socket     handle idle timer        any activity
    ========== ======================== =================

    The first timer to expire cancels all others and calls ``on_timeout``
    once. After :meth:`cancel` no timer can fire.

    Example:
        controller = TimeoutController(
            options.timeout,
            hostname="example.com",
            secure=True,
            on_timeout=lambda phase, budget: attempt.fail(...),
        )
        controller.start(attempt.events)
    """

    def __init__(
        self,
        timeouts: TimeoutOptions,
        *,
        hostname: Optional[str],
        secure: bool,
        on_timeout: Callable[[str, float], None],
        unix_socket: bool = False,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._budgets = timeouts.budgets()
        self._secure = secure
        self._resolves_name = not unix_socket and not is_ip_address(hostname)
        self._on_timeout = on_timeout
        self._loop = loop
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._handle: Optional[RequestHandle] = None
        self._cancelled = False
        self.expired: Optional[str] = None

    @property
    def active_timers(self) -> list[str]:
        """Names of the phases whose timers are currently armed."""
        active = sorted(self._timers)
        if self._handle is not None and self._handle.idle_timeout_active:
            active.append("socket")
        return active

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self, events: EventEmitter) -> None:
        """Subscribe to ``events`` and arm the whole-request budget."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        events.on(AttemptEvent.SOCKET, self._on_socket)
        events.on(AttemptEvent.LOOKUP, self._on_lookup)
        events.on(AttemptEvent.CONNECT, self._on_connect)
        events.on(AttemptEvent.SECURE_CONNECT, self._on_secure_connect)
        events.on(AttemptEvent.UPLOAD, self._on_upload)
        events.on(AttemptEvent.RESPONSE, self._on_response)
        events.on(AttemptEvent.END, self._on_terminal)
        events.on(AttemptEvent.ERROR, self._on_terminal)
        events.on(AttemptEvent.ABORT, self._on_terminal)
        self._arm("request")

    def bind(self, handle: RequestHandle) -> None:
        """Attach the socket idle budget to the transport handle."""
        self._handle = handle
        budget = self._budgets.get("socket")
        if budget is not None and not self._cancelled:
            handle.set_idle_timeout(budget, lambda: self._expire("socket", budget))

    def cancel(self) -> None:
        """Cancel every timer. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        if self._handle is not None:
            self._handle.clear_idle_timeout()

    def _arm(self, phase: str) -> None:
        budget = self._budgets.get(phase)
        if budget is None or self._cancelled:
            return
        self._clear(phase)
        assert self._loop is not None
        self._timers[phase] = self._loop.call_later(budget, self._expire, phase, budget)

    def _clear(self, *phases: str) -> None:
        for phase in phases:
            timer = self._timers.pop(phase, None)
            if timer is not None:
                timer.cancel()

    def _expire(self, phase: str, budget: float) -> None:
        self._timers.pop(phase, None)
        if self._cancelled:
            return
        self.expired = phase
        logger.debug(f"Timeout for phase '{phase}' after {budget}s")
        self.cancel()
        self._on_timeout(phase, budget)

    def _on_socket(self, reused: bool = False, *_: Any) -> None:
        if reused:
            self._arm("send")
        elif self._resolves_name:
            self._arm("lookup")
        else:
            self._arm("connect")

    def _on_lookup(self, *_: Any) -> None:
        self._clear("lookup")
        self._arm("connect")

    def _on_connect(self, *_: Any) -> None:
        self._clear("lookup", "connect")
        if self._secure:
            self._arm("secure_connect")
        self._arm("send")

    def _on_secure_connect(self, *_: Any) -> None:
        self._clear("secure_connect")

    def _on_upload(self, *_: Any) -> None:
        self._clear("send")
        self._arm("response")

    def _on_response(self, *_: Any) -> None:
        self._clear("response")
        self._arm("read")

    def _on_terminal(self, *_: Any) -> None:
        self.cancel()
