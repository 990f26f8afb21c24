"""Tests for phase timeout timers."""

import asyncio

import pytest
from courier.core.emitter import EventEmitter
from courier.core.timeouts import TimeoutController, is_ip_address
from courier.http.protocols import RequestHandle
from courier.models.events import AttemptEvent
from courier.models.options import TimeoutOptions


class IdleHandle(RequestHandle):
    """Handle that only exercises the idle timer."""

    async def write(self, chunk):
        pass

    async def end(self):
        pass

    async def response(self):
        raise NotImplementedError

    def abort(self):
        pass


def make_controller(hostname="example.test", secure=False, **budgets):
    expired = []
    controller = TimeoutController(
        TimeoutOptions(**budgets),
        hostname=hostname,
        secure=secure,
        on_timeout=lambda phase, budget: expired.append((phase, budget)),
    )
    events = EventEmitter()
    controller.start(events)
    return controller, events, expired


class TestTimeoutController:
    """Tests for TimeoutController."""

    @pytest.mark.asyncio
    async def test_timer_lifecycle(self):
        """Test which timers are armed after each lifecycle event."""
        controller, events, _ = make_controller(
            secure=True,
            lookup=5,
            connect=5,
            secure_connect=5,
            send=5,
            response=5,
            read=5,
            request=5,
        )

        assert controller.active_timers == ["request"]
        events.emit(AttemptEvent.SOCKET, False, None)
        assert controller.active_timers == ["lookup", "request"]
        events.emit(AttemptEvent.LOOKUP)
        assert controller.active_timers == ["connect", "request"]
        events.emit(AttemptEvent.CONNECT)
        assert controller.active_timers == ["request", "secure_connect", "send"]
        events.emit(AttemptEvent.SECURE_CONNECT)
        assert controller.active_timers == ["request", "send"]
        events.emit(AttemptEvent.UPLOAD)
        assert controller.active_timers == ["request", "response"]
        events.emit(AttemptEvent.RESPONSE)
        assert controller.active_timers == ["read", "request"]
        events.emit(AttemptEvent.END)
        assert controller.active_timers == []
        assert controller.cancelled

    @pytest.mark.asyncio
    async def test_reused_socket_arms_send(self):
        """Test that a reused socket skips lookup and connect."""
        controller, events, _ = make_controller(lookup=5, connect=5, send=5)

        events.emit(AttemptEvent.SOCKET, True, None)

        assert controller.active_timers == ["send"]
        controller.cancel()

    @pytest.mark.asyncio
    async def test_ip_host_arms_connect(self):
        """Test that IP literals skip the lookup budget."""
        controller, events, expired = make_controller(hostname="127.0.0.1", lookup=5, connect=0.01)

        events.emit(AttemptEvent.SOCKET, False, None)
        assert controller.active_timers == ["connect"]
        await asyncio.sleep(0.05)

        assert expired == [("connect", 0.01)]
        assert controller.expired == "connect"

    @pytest.mark.asyncio
    async def test_lookup_expires(self):
        """Test that a slow lookup fires the lookup budget."""
        controller, events, expired = make_controller(lookup=0.01)

        events.emit(AttemptEvent.SOCKET, False, None)
        await asyncio.sleep(0.05)

        assert expired == [("lookup", 0.01)]
        assert controller.active_timers == []

    @pytest.mark.asyncio
    async def test_first_expiry_wins(self):
        """Test that only one timeout fires."""
        controller, events, expired = make_controller(lookup=0.01, request=0.02)

        events.emit(AttemptEvent.SOCKET, False, None)
        await asyncio.sleep(0.05)

        assert expired == [("lookup", 0.01)]

    @pytest.mark.asyncio
    async def test_cancel_prevents_firing(self):
        """Test that no timer fires after cancel."""
        controller, events, expired = make_controller(request=0.01)

        controller.cancel()
        controller.cancel()
        events.emit(AttemptEvent.SOCKET, False, None)
        await asyncio.sleep(0.05)

        assert expired == []
        assert controller.active_timers == []

    @pytest.mark.asyncio
    async def test_socket_idle_budget(self):
        """Test that the idle budget fires without socket activity."""
        controller, _, expired = make_controller(socket=0.1)
        handle = IdleHandle()

        controller.bind(handle)
        assert controller.active_timers == ["socket"]
        await asyncio.sleep(0.05)
        handle.touch()
        await asyncio.sleep(0.05)
        assert expired == []

        await asyncio.sleep(0.2)
        assert expired == [("socket", 0.1)]
        assert not handle.idle_timeout_active

    @pytest.mark.asyncio
    async def test_cancel_clears_idle_timer(self):
        controller, _, _ = make_controller(socket=5)
        handle = IdleHandle()

        controller.bind(handle)
        controller.cancel()

        assert not handle.idle_timeout_active
        assert controller.active_timers == []


class TestIsIpAddress:
    """Tests for is_ip_address."""

    def test_ipv4(self):
        assert is_ip_address("10.0.0.1")

    def test_ipv6_brackets(self):
        assert is_ip_address("[::1]")

    def test_hostname(self):
        assert not is_ip_address("example.com")
        assert not is_ip_address(None)
