"""Discovery client — locate the page to debug on the target browser.

The target exposes two introspection resources on its debugging port:
``/json/list`` (open targets, in creation order) and ``/json/version``
(build metadata).  Both are fetched concurrently; the build hash selects
a matching hosted frontend bundle and the first real page provides the
frontend path.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass

import aiohttp

from devtools_server.core.errors import PageNotReadyError, ParseError, TransportError
from devtools_server.core.retry import retry

logger = logging.getLogger(__name__)

_VERSION_HASH_RE = re.compile(r"\s\(@(\b[0-9a-f]{5,40}\b)")
_DEVTOOLS_PREFIX_RE = re.compile(r"^/devtools/")

VERSION_FIELD = "WebKit-Version"
BLANK_URL = "about:blank"


@dataclass
class PageDescriptor:
    """One entry of ``/json/list``."""

    type: str
    url: str
    devtools_frontend_path: str = ""
    id: str = ""
    title: str = ""

    @classmethod
    def from_json(cls, data: dict) -> PageDescriptor:
        fields = {}
        for key in ("type", "url", "devtoolsFrontendUrl", "id", "title"):
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise TransportError("Target returned a malformed page list.")
            fields[key] = value or ""
        return cls(
            type=fields["type"],
            url=fields["url"],
            devtools_frontend_path=fields["devtoolsFrontendUrl"],
            id=fields["id"],
            title=fields["title"],
        )


def parse_version_hash(version: dict) -> str:
    """Extract the build hash from ``/json/version`` data.

    ``"537.36 (@cfede9db1d154de0468cb0538479f34c0755a0f4)"`` yields
    ``"cfede9db1d154de0468cb0538479f34c0755a0f4"``.
    """
    value = version.get(VERSION_FIELD) if isinstance(version, dict) else None
    if not isinstance(value, str):
        raise ParseError(f"Target version info has no {VERSION_FIELD} field.")
    match = _VERSION_HASH_RE.search(value)
    if not match:
        raise ParseError(f"Could not parse build hash from version: {value!r}")
    return match.group(1)


def find_page_path(pages: list[PageDescriptor]) -> str:
    """Return the frontend path of the first real page, minus ``/devtools/``."""
    page = next(
        (p for p in pages if p.type == "page" and p.url != BLANK_URL),
        None,
    )
    if page is None or not page.devtools_frontend_path:
        raise PageNotReadyError("Page not ready yet.")
    logger.debug("Selected page %s (%s)", page.id, page.url)
    return _DEVTOOLS_PREFIX_RE.sub("", page.devtools_frontend_path, count=1)


class DiscoveryClient:
    """Queries the target's introspection endpoints on ``localhost``."""

    def __init__(
        self,
        target_port: int = 9222,
        retries: int = 0,
        retry_delay: float = 1.0,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = f"http://localhost:{target_port}/json"
        self._retries = retries
        self._retry_delay = retry_delay
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def discover(self) -> tuple[str, str]:
        """Return ``(build_hash, frontend_path)``.

        Only ``PageNotReadyError`` is retried; transport and parse errors
        propagate on the first attempt.
        """
        return await retry(
            self._fetch_hash_and_path,
            retries=self._retries,
            retry_on=(PageNotReadyError,),
            delay=self._retry_delay,
        )

    async def _fetch_hash_and_path(self) -> tuple[str, str]:
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            pages_data, version = await asyncio.gather(
                self._fetch_json(session, "list"),
                self._fetch_json(session, "version"),
            )
        if not isinstance(pages_data, list) or not all(isinstance(p, dict) for p in pages_data):
            raise TransportError("Target returned a malformed page list.")
        build_hash = parse_version_hash(version)
        pages = [PageDescriptor.from_json(p) for p in pages_data]
        return build_hash, find_page_path(pages)

    async def _fetch_json(self, session: aiohttp.ClientSession, resource: str):
        url = f"{self._base_url}/{resource}"
        try:
            async with session.get(url) as resp:
                if resp.status != 200:
                    raise TransportError(f"GET {url} returned status {resp.status}")
                return await resp.json(content_type=None)
        except TransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(f"GET {url} failed: {e}") from e
        except ValueError as e:
            raise TransportError(f"GET {url} returned invalid JSON: {e}") from e
