"""Error taxonomy for discovery, forwarding and server lifecycle."""
from __future__ import annotations


class DevToolsServerError(Exception):
    """Base class for all errors raised by devtools-server."""


class DiscoveryError(DevToolsServerError):
    """Locating a debuggable page on the target failed."""


class TransportError(DiscoveryError):
    """An introspection endpoint was unreachable or returned a bad response."""


class ParseError(DiscoveryError):
    """The target's version info carries no recognizable build hash."""


class PageNotReadyError(DiscoveryError):
    """No eligible page is open on the target yet.  Retryable."""


class BindError(DevToolsServerError):
    """The front server could not bind its listening port."""


class ProxyTransportError(DevToolsServerError):
    """Forwarding a single connection to the target failed."""
