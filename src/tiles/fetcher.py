from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from infrastructure.http.client import fetch_bytes

if TYPE_CHECKING:
    import aiohttp


class FetchFn(Protocol):
    async def __call__(self, url: str) -> bytes: ...


def tile_url(pattern: str, z: int, x: int, y: int) -> str:
    """Substitute ``{z}``, ``{x}``, ``{y}`` in a URL template."""
    return pattern.replace('{z}', str(z)).replace('{x}', str(x)).replace('{y}', str(y))


class HttpTileFetcher:
    """Fetch-by-URL primitive over a shared aiohttp session.

    Usage:
        fetcher = HttpTileFetcher(session, timeout_s=10.0)
        data = await fetcher('https://example.com/12/2200/1343.png')
    """

    def __init__(self, session: aiohttp.ClientSession, *, timeout_s: float | None = None):
        self._session = session
        self._timeout_s = timeout_s

    async def __call__(self, url: str) -> bytes:
        return await fetch_bytes(self._session, url, timeout_s=self._timeout_s)
