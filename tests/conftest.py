from __future__ import annotations

import socket

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

BUILD_HASH = "cfede9db1d154de0468cb0538479f34c0755a0f4"


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class FakeTarget:
    """Stand-in for a browser's remote debugging endpoint."""

    def __init__(self) -> None:
        self.pages: list[dict] = []
        self.version: dict = {"WebKit-Version": f"537.36 (@{BUILD_HASH})"}
        self.list_status = 200
        self.hide_pages_for = 0
        self.version_body: str | None = None
        self.list_calls = 0
        self.version_calls = 0
        self.seen_hosts: list[str] = []
        self.server: TestServer | None = None

    @property
    def port(self) -> int:
        assert self.server is not None
        return self.server.port

    def add_page(self, page_id: str = "ABC", url: str = "https://example.com") -> None:
        self.pages.append({
            "id": page_id,
            "type": "page",
            "title": "Example Domain",
            "url": url,
            "devtoolsFrontendUrl": (
                f"/devtools/inspector.html?ws=localhost:{self.port}/devtools/page/{page_id}"
            ),
        })

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/json/list", self._handle_list)
        app.router.add_get("/json/version", self._handle_version)
        app.router.add_route("*", "/echo", self._handle_echo)
        app.router.add_get("/truncated", self._handle_truncated)
        app.router.add_get("/devtools/page/{page_id}", self._handle_ws)
        return app

    async def _handle_list(self, request: web.Request) -> web.Response:
        self.list_calls += 1
        if self.list_status != 200:
            return web.Response(status=self.list_status, text="nope")
        if self.list_calls <= self.hide_pages_for:
            return web.json_response([])
        return web.json_response(self.pages)

    async def _handle_version(self, request: web.Request) -> web.Response:
        self.version_calls += 1
        if self.version_body is not None:
            return web.Response(text=self.version_body)
        return web.json_response(self.version)

    async def _handle_echo(self, request: web.Request) -> web.Response:
        self.seen_hosts.append(request.host)
        body = await request.text()
        return web.Response(
            text=f"{request.method} {request.path_qs} {body}",
            headers={"X-Target-Host": request.host},
        )

    async def _handle_truncated(self, request: web.Request) -> web.StreamResponse:
        resp = web.StreamResponse(headers={"Content-Length": "1000"})
        await resp.prepare(request)
        await resp.write(b"x" * 10)
        request.transport.close()
        return resp

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        self.seen_hosts.append(request.host)
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await ws.send_str(f"echo:{msg.data}")
            elif msg.type == WSMsgType.BINARY:
                await ws.send_bytes(msg.data[::-1])
        return ws


@pytest_asyncio.fixture
async def target():
    fake = FakeTarget()
    fake.server = TestServer(fake.build_app(), host="127.0.0.1")
    await fake.server.start_server()
    yield fake
    await fake.server.close()


@pytest.fixture
def free_port() -> int:
    return find_free_port()
