"""Tests for the aiohttp transport against a local server."""

import asyncio
import gzip

import pytest
from aiohttp import test_utils, web
from courier import AiohttpTransport, Client, RequestError, TimeoutError


async def hello(request):
    return web.Response(text="hello", headers={"x-user-agent": request.headers.get("user-agent", "")})


async def echo(request):
    body = await request.read()
    return web.Response(
        body=body,
        headers={
            "x-method": request.method,
            "x-content-length": request.headers.get("content-length", ""),
            "x-transfer-encoding": request.headers.get("transfer-encoding", ""),
        },
    )


async def zipped(request):
    return web.Response(body=gzip.compress(b"zipped content"), headers={"content-encoding": "gzip"})


async def moved(request):
    raise web.HTTPFound("/hello")


async def slow(request):
    await asyncio.sleep(1)
    return web.Response(text="late")


def make_app():
    app = web.Application()
    app.router.add_get("/hello", hello)
    app.router.add_route("*", "/echo", echo)
    app.router.add_get("/gzip", zipped)
    app.router.add_get("/moved", moved)
    app.router.add_get("/slow", slow)
    return app


class TestAiohttpTransport:
    """Tests for AiohttpTransport through the engine."""

    @pytest.mark.asyncio
    async def test_get(self):
        """Test a GET with timings and the remote address."""
        async with test_utils.TestServer(make_app()) as server:
            async with Client() as client:
                response = await client.get(str(server.make_url("/hello")))

        assert response.status_code == 200
        assert response.body == "hello"
        assert response.ip == "127.0.0.1"
        assert response.headers["x-user-agent"].startswith("courier/")
        phases = response.timings.phases
        assert phases.tcp is not None
        assert phases.first_byte is not None
        assert phases.total is not None

    @pytest.mark.asyncio
    async def test_post_body(self):
        """Test that a sized body is sent with content-length."""
        async with test_utils.TestServer(make_app()) as server:
            async with Client() as client:
                response = await client.post(str(server.make_url("/echo")), json={"name": "widget"})

        assert response.body == '{"name": "widget"}'
        assert response.headers["x-method"] == "POST"
        assert response.headers["x-content-length"] == str(len(response.body))

    @pytest.mark.asyncio
    async def test_streamed_upload(self):
        """Test that manual writes are sent chunked."""
        async with test_utils.TestServer(make_app()) as server:
            async with Client() as client:
                async with client.stream(str(server.make_url("/echo")), method="PUT") as stream:
                    stream.write(b"part one, ")
                    stream.end(b"part two")
                    response = await stream.response()
                    body = await stream.read()

        assert body == b"part one, part two"
        assert response.headers["x-transfer-encoding"] == "chunked"

    @pytest.mark.asyncio
    async def test_gzip_decoded_by_engine(self):
        async with test_utils.TestServer(make_app()) as server:
            async with Client() as client:
                response = await client.get(str(server.make_url("/gzip")))

        assert response.body == "zipped content"

    @pytest.mark.asyncio
    async def test_redirect_followed(self):
        async with test_utils.TestServer(make_app()) as server:
            async with Client() as client:
                response = await client.get(str(server.make_url("/moved")))

        assert response.body == "hello"
        assert response.redirect_urls == [str(server.make_url("/hello"))]

    @pytest.mark.asyncio
    async def test_response_timeout(self):
        async with test_utils.TestServer(make_app()) as server:
            async with Client() as client:
                with pytest.raises(TimeoutError) as exc_info:
                    await client.get(str(server.make_url("/slow")), timeout={"response": 0.1}, retry=0)

        assert exc_info.value.event == "response"

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        """Test that a closed port surfaces ECONNREFUSED."""
        server = test_utils.TestServer(make_app())
        await server.start_server()
        url = str(server.make_url("/hello"))
        await server.close()

        async with Client() as client:
            with pytest.raises(RequestError) as exc_info:
                await client.get(url, retry=0)

        assert exc_info.value.code == "ECONNREFUSED"

    @pytest.mark.asyncio
    async def test_close_releases_sessions(self):
        transport = AiohttpTransport()
        async with test_utils.TestServer(make_app()) as server:
            await Client(transport=transport).get(str(server.make_url("/hello")))
            assert transport._sessions
            await transport.close()

        assert transport._sessions == {}
