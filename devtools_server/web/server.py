"""Front server — landing page on ``/``, everything else to the target.

::

                         container at some-host.com
                   |------------------------------------|
 |--------|        |   |----------|        |----------| |
 | client | <====> |   | devtools |        |  Chrome  | |
 |--------|        |   |  server  | <====> | DevTools | |
                   |   |----------|        |----------| |
                   |------------------------------------|

The browser only accepts debugging connections from localhost, so this
server bridges them: it serves a page embedding the hosted DevTools
frontend (attached to the first open tab, ignoring ``about:blank``) and
forwards all other requests and WebSockets to the browser.
"""
from __future__ import annotations

import asyncio
import logging

from aiohttp import web

from devtools_server.config import ServerConfig
from devtools_server.core.errors import BindError, DevToolsServerError
from devtools_server.discovery.client import DiscoveryClient
from devtools_server.discovery.debugger_url import build_debugger_url
from devtools_server.proxy.forwarding import ForwardingProxy, is_websocket_upgrade
from devtools_server.web.home_page import render_home_page

logger = logging.getLogger(__name__)


@web.middleware
async def _log_errors(request: web.Request, handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("devtools-server: unhandled error on %s %s", request.method, request.path)
        raise


class DevToolsServer:
    """Single public listener that multiplexes the landing page and proxy."""

    def __init__(self, config: ServerConfig) -> None:
        self._config = config
        self._discovery = DiscoveryClient(
            target_port=config.target_port,
            retries=config.discovery_retries,
            retry_delay=config.discovery_retry_delay,
            timeout=config.discovery_timeout,
        )
        self._proxy: ForwardingProxy | None = None
        self._runner: web.AppRunner | None = None

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def proxy(self) -> ForwardingProxy | None:
        return self._proxy

    async def create_debugger_url(self) -> str:
        build_hash, frontend_path = await self._discovery.discover()
        return build_debugger_url(build_hash, frontend_path, self._config)

    def _build_app(self) -> web.Application:
        app = web.Application(middlewares=[_log_errors])
        app.router.add_route("*", "/{tail:.*}", self._handle)
        return app

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        if is_websocket_upgrade(request):
            return await self._proxy.forward_upgrade(request)
        if request.raw_path == "/" and request.method in ("GET", "HEAD"):
            return await self._handle_home(request)
        return await self._proxy.forward_http(request)

    async def _handle_home(self, request: web.Request) -> web.Response:
        try:
            debugger_url = await self.create_debugger_url()
        except DevToolsServerError as e:
            logger.warning("Cannot build debugger URL: %s", e)
            return web.Response(status=500, text=f"Error: {e}")
        return web.Response(text=render_home_page(debugger_url), content_type="text/html")

    async def start(self) -> None:
        """Bind ``listen_port``; returns once the socket is listening.

        Raises ``BindError`` if the port cannot be bound.
        """
        logger.info("devtools-server starting.")
        self._proxy = ForwardingProxy(target_port=self._config.target_port)
        self._runner = web.AppRunner(
            self._build_app(),
            shutdown_timeout=self._config.shutdown_grace_period,
        )
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.listen_host, self._config.listen_port)
        try:
            await site.start()
        except OSError as e:
            await asyncio.gather(self._runner.cleanup(), self._proxy.close(0))
            self._runner = None
            self._proxy = None
            raise BindError(f"Cannot listen on port {self._config.listen_port}: {e}") from e
        logger.info("devtools-server listening on port: %d", self._config.listen_port)

    async def stop(self) -> None:
        """Stop accepting, drain both listeners concurrently, then close.

        In-flight requests get ``shutdown_grace_period`` seconds before
        remaining connections are closed.
        """
        grace = self._config.shutdown_grace_period
        await asyncio.gather(self._runner.cleanup(), self._proxy.close(grace))
        self._runner = None
        self._proxy = None
        logger.info("devtools-server stopped")
