from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ServerConfig:
    """Settings for one devtools-server instance.

    ``external_host`` is the host (optionally with port) under which the
    client reaches this server.  ``use_encrypted_client_protocol`` selects
    ``wss`` (True) or ``ws`` (False) for the frontend's WebSocket address.
    """

    external_host: str
    listen_port: int
    target_port: int = 9222
    use_encrypted_client_protocol: bool = True
    listen_host: str = "0.0.0.0"
    discovery_retries: int = 0
    discovery_retry_delay: float = 1.0
    discovery_timeout: float = 10.0
    shutdown_grace_period: float = 5.0

    @property
    def ws_scheme(self) -> str:
        return "wss" if self.use_encrypted_client_protocol else "ws"

    @classmethod
    def from_env(cls) -> ServerConfig:
        load_dotenv()
        external_host = os.environ.get("DEVTOOLS_EXTERNAL_HOST", "")
        listen_port = os.environ.get("DEVTOOLS_LISTEN_PORT", "")
        if not external_host:
            raise ValueError("DEVTOOLS_EXTERNAL_HOST is required")
        if not listen_port:
            raise ValueError("DEVTOOLS_LISTEN_PORT is required")
        insecure = os.environ.get("DEVTOOLS_INSECURE_CONNECTION", "").lower()
        return cls(
            external_host=external_host,
            listen_port=int(listen_port),
            target_port=int(os.environ.get("DEVTOOLS_TARGET_PORT", "9222")),
            use_encrypted_client_protocol=insecure not in _TRUTHY,
            listen_host=os.environ.get("DEVTOOLS_LISTEN_HOST", "0.0.0.0"),
            discovery_retries=int(os.environ.get("DEVTOOLS_DISCOVERY_RETRIES", "0")),
            shutdown_grace_period=float(
                os.environ.get("DEVTOOLS_SHUTDOWN_GRACE_PERIOD", "5")
            ),
        )
