"""Forwarding proxy — relay HTTP and WebSocket traffic to the target.

The target only accepts requests whose ``Host`` header names its own
``localhost`` binding, so every outbound request carries
``Host: localhost`` no matter what the client sent.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Callable, Iterator

import aiohttp
from aiohttp import WSCloseCode, WSMsgType, web
from multidict import CIMultiDict, CIMultiDictProxy

from devtools_server.core.errors import ProxyTransportError

logger = logging.getLogger(__name__)

TARGET_HOST = "localhost"

_HOP_BY_HOP = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})
_WS_HANDSHAKE = frozenset({
    "sec-websocket-key",
    "sec-websocket-version",
    "sec-websocket-extensions",
    "sec-websocket-protocol",
    "sec-websocket-accept",
})
_CHUNK_SIZE = 64 * 1024

ErrorCallback = Callable[[ProxyTransportError, web.Request], None]
UpgradeCallback = Callable[[web.Request], None]


def _log_error(exc: ProxyTransportError, request: web.Request) -> None:
    logger.warning("Proxy error on %s %s: %s", request.method, request.path_qs, exc)


def _log_upgrade(request: web.Request) -> None:
    logger.debug("Proxying WebSocket upgrade for %s", request.path_qs)


def _forwardable_close_code(code: int | None) -> int:
    # 1005, 1006 and 1015 are reserved for local use and must not be sent.
    if code is None or not 1000 <= code <= 4999 or code in (1005, 1006, 1015):
        return WSCloseCode.OK
    return code


def is_websocket_upgrade(request: web.Request) -> bool:
    return request.headers.get("Upgrade", "").lower() == "websocket"


def _filter_headers(headers: CIMultiDictProxy[str], drop: frozenset[str]) -> CIMultiDict[str]:
    out: CIMultiDict[str] = CIMultiDict()
    for name, value in headers.items():
        if name.lower() not in drop:
            out.add(name, value)
    return out


class ForwardingProxy:
    """Reverse proxy bound to a single fixed target on ``localhost``.

    ``on_error`` and ``on_upgrade`` are callback slots run inside the
    forwarded connection's own handler.
    """

    def __init__(
        self,
        target_port: int = 9222,
        on_error: ErrorCallback | None = None,
        on_upgrade: UpgradeCallback | None = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self._target = f"{TARGET_HOST}:{target_port}"
        self.on_error: ErrorCallback = on_error or _log_error
        self.on_upgrade: UpgradeCallback = on_upgrade or _log_upgrade
        self._timeout = aiohttp.ClientTimeout(total=None, sock_connect=connect_timeout)
        self._session: aiohttp.ClientSession | None = None
        self._websockets: set[tuple[web.WebSocketResponse, aiohttp.ClientWebSocketResponse]] = set()
        self._active = 0
        self._closed = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def target(self) -> str:
        return self._target

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def open_websockets(self) -> int:
        return len(self._websockets)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                auto_decompress=False,
                skip_auto_headers=("User-Agent", "Accept-Encoding"),
            )
        return self._session

    def _outbound_headers(self, request: web.Request, drop: frozenset[str]) -> CIMultiDict[str]:
        headers = _filter_headers(request.headers, drop | {"host", "content-length"})
        headers["Host"] = TARGET_HOST
        return headers

    def _report(self, request: web.Request, message: str, cause: BaseException) -> None:
        err = ProxyTransportError(f"{message}: {cause}")
        err.__cause__ = cause
        self.on_error(err, request)

    @contextmanager
    def _tracking(self) -> Iterator[None]:
        self._active += 1
        self._idle.clear()
        try:
            yield
        finally:
            self._active -= 1
            if self._active == 0:
                self._idle.set()

    @staticmethod
    def _bad_gateway() -> web.Response:
        resp = web.Response(status=502, text="Bad Gateway")
        resp.force_close()
        return resp

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def forward_http(self, request: web.Request) -> web.StreamResponse:
        """Stream ``request`` to the target and its response back."""
        if self._closed:
            return self._bad_gateway()
        url = f"http://{self._target}{request.raw_path}"
        headers = self._outbound_headers(request, _HOP_BY_HOP)
        response: web.StreamResponse | None = None

        with self._tracking():
            try:
                body = await request.read()
                async with self._get_session().request(
                    request.method,
                    url,
                    headers=headers,
                    data=body or None,
                    allow_redirects=False,
                ) as upstream:
                    response = web.StreamResponse(status=upstream.status, reason=upstream.reason)
                    for name, value in upstream.headers.items():
                        if name.lower() not in _HOP_BY_HOP:
                            response.headers.add(name, value)
                    await response.prepare(request)
                    async for chunk in upstream.content.iter_chunked(_CHUNK_SIZE):
                        await response.write(chunk)
                    await response.write_eof()
                    return response
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                self._report(request, f"Forwarding to {url} failed", e)
                if response is not None and response.prepared:
                    # Headers already sent; the only signal left is a reset.
                    if request.transport is not None:
                        request.transport.close()
                    return response
                return self._bad_gateway()

    # ------------------------------------------------------------------
    # WebSocket
    # ------------------------------------------------------------------

    async def forward_upgrade(self, request: web.Request) -> web.StreamResponse:
        """Open a WebSocket to the target and relay frames both ways."""
        if self._closed:
            return self._bad_gateway()
        self.on_upgrade(request)
        url = f"ws://{self._target}{request.raw_path}"
        protocols = [
            p.strip()
            for p in request.headers.get("Sec-WebSocket-Protocol", "").split(",")
            if p.strip()
        ]

        with self._tracking():
            try:
                upstream = await self._get_session().ws_connect(
                    url,
                    headers=self._outbound_headers(request, _HOP_BY_HOP | _WS_HANDSHAKE),
                    protocols=protocols,
                    max_msg_size=0,
                )
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                self._report(request, f"WebSocket connect to {url} failed", e)
                return self._bad_gateway()

            if self._closed:
                # Shutdown began while connecting.
                await upstream.close(code=WSCloseCode.GOING_AWAY)
                return self._bad_gateway()

            client = web.WebSocketResponse(
                protocols=(upstream.protocol,) if upstream.protocol else (),
                max_msg_size=0,
            )
            pair = (client, upstream)
            try:
                await client.prepare(request)
                self._websockets.add(pair)
                if not self._closed:
                    await self._relay(request, client, upstream)
            except (aiohttp.ClientError, ConnectionResetError) as e:
                self._report(request, "WebSocket relay failed", e)
            finally:
                self._websockets.discard(pair)
                code = WSCloseCode.GOING_AWAY if self._closed else WSCloseCode.OK
                await upstream.close(code=code)
                if client.prepared:
                    await client.close(code=code)
            return client

    async def _relay(
        self,
        request: web.Request,
        client: web.WebSocketResponse,
        upstream: aiohttp.ClientWebSocketResponse,
    ) -> None:
        tasks = [
            asyncio.create_task(self._pump(client, upstream)),
            asyncio.create_task(self._pump(upstream, client)),
        ]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc is not None:
                self._report(request, "WebSocket relay failed", exc)

    @staticmethod
    async def _pump(source, sink) -> None:
        async for msg in source:
            if msg.type == WSMsgType.TEXT:
                await sink.send_str(msg.data)
            elif msg.type == WSMsgType.BINARY:
                await sink.send_bytes(msg.data)
            elif msg.type == WSMsgType.ERROR:
                raise ProxyTransportError(f"WebSocket error: {source.exception()}")
        if not sink.closed:
            await sink.close(code=_forwardable_close_code(source.close_code))

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self, grace_period: float = 5.0) -> None:
        """Drain in-flight forwards, close WebSocket pairs and the pool."""
        self._closed = True
        pairs = list(self._websockets)
        if pairs:
            logger.info("Closing %d proxied WebSocket(s)", len(pairs))
        await asyncio.gather(*(
            ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutting down")
            for pair in pairs
            for ws in pair
        ))

        if self._active:
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=grace_period)
            except asyncio.TimeoutError:
                logger.warning(
                    "%d proxied request(s) still running after %.1fs, closing anyway",
                    self._active, grace_period,
                )

        if self._session is not None:
            await self._session.close()
            self._session = None
