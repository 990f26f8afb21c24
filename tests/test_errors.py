"""Tests for the error taxonomy."""

import asyncio
import errno
import socket
import ssl

import aiohttp
import pytest
from courier import CancelError, RequestError, TimeoutError
from courier.errors import GENERIC_CODE, classify_error


class TestClassifyError:
    """Tests for classify_error."""

    @pytest.mark.parametrize(
        "exc, code",
        [
            (asyncio.TimeoutError(), "ETIMEDOUT"),
            (ConnectionRefusedError(), "ECONNREFUSED"),
            (ConnectionResetError(), "ECONNRESET"),
            (BrokenPipeError(), "EPIPE"),
            (aiohttp.ServerDisconnectedError(), "ECONNRESET"),
            (socket.gaierror(socket.EAI_NONAME, "Name or service not known"), "ENOTFOUND"),
            (socket.gaierror(socket.EAI_AGAIN, "Temporary failure"), "EAI_AGAIN"),
            (OSError(errno.ENETUNREACH, "Network is unreachable"), "ENETUNREACH"),
            (ssl.SSLError("handshake failed"), "ERR_TLS"),
            (ValueError("odd"), GENERIC_CODE),
        ],
    )
    def test_codes(self, exc, code):
        assert classify_error(exc) == code

    def test_code_attribute_wins(self):
        exc = RuntimeError("custom")
        exc.code = "ECUSTOM"
        assert classify_error(exc) == "ECUSTOM"

    def test_follows_cause(self):
        try:
            try:
                raise ConnectionRefusedError()
            except ConnectionRefusedError as inner:
                raise RuntimeError("wrapped") from inner
        except RuntimeError as exc:
            assert classify_error(exc) == "ECONNREFUSED"


class TestRequestError:
    """Tests for RequestError and subclasses."""

    def test_code_from_cause(self):
        cause = ConnectionResetError()
        error = RequestError("socket hang up", cause)
        assert error.code == "ECONNRESET"
        assert error.__cause__ is cause

    def test_explicit_code(self):
        assert RequestError("boom", code="EX").code == "EX"

    def test_generic_default(self):
        assert RequestError("boom").code == GENERIC_CODE

    def test_timeout_message(self):
        error = TimeoutError("connect", 2.0)
        assert str(error) == "Timeout awaiting 'connect' for 2s"
        assert error.event == "connect"
        assert error.code == "ETIMEDOUT"

    def test_cancel_error(self):
        error = CancelError()
        assert error.is_canceled
        assert error.code == "ERR_CANCELED"

    def test_timings_without_request(self):
        assert RequestError("boom").timings is None
