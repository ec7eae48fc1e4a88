from __future__ import annotations

import asyncio
import logging
import signal

from devtools_server.config import ServerConfig
from devtools_server.web.server import DevToolsServer

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("devtools_server")


async def main() -> None:
    config = ServerConfig.from_env()
    logger.info(
        "Bridging localhost:%d to %s (%s)",
        config.target_port, config.external_host, config.ws_scheme,
    )
    server = DevToolsServer(config)

    stop_event = asyncio.Event()

    def handle_signal() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await server.start()
    await stop_event.wait()
    await server.stop()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
