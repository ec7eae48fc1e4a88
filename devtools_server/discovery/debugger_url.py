"""Build the externally usable DevTools frontend URL."""
from __future__ import annotations

from devtools_server.config import ServerConfig

FRONTEND_ORIGIN = "https://chrome-devtools-frontend.appspot.com"


def build_debugger_url(build_hash: str, frontend_path: str, config: ServerConfig) -> str:
    """Point the frontend's WebSocket address back through this server.

    ``inspector.html?ws=localhost:9222/devtools/page/ABC`` becomes
    ``inspector.html?wss=some-host.com/devtools/page/ABC`` and is wrapped
    in the hosted frontend's ``serve_file`` URL for ``build_hash``.
    """
    rewritten = frontend_path.replace(
        f"ws=localhost:{config.target_port}",
        f"{config.ws_scheme}={config.external_host}",
    )
    return f"{FRONTEND_ORIGIN}/serve_file/@{build_hash}/{rewritten}&remoteFrontend=true"
