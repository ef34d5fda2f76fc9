from __future__ import annotations

import asyncio
import logging
import ssl

import aiohttp
import certifi

from shared.constants import HTTP_OK, HTTP_USER_AGENT
from shared.errors import FetchError, TileTimeoutError

logger = logging.getLogger(__name__)


def make_http_session() -> aiohttp.ClientSession:
    # Создать SSL-контекст с сертификатами из certifi
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)
    return aiohttp.ClientSession(
        connector=connector,
        headers={'User-Agent': HTTP_USER_AGENT},
    )


async def fetch_bytes(
    session: aiohttp.ClientSession,
    url: str,
    *,
    timeout_s: float | None = None,
) -> bytes:
    """Download one tile payload.

    Raises:
        FetchError: non-200 status or a transport failure.
        TileTimeoutError: ``timeout_s`` elapsed.
    """
    timeout = aiohttp.ClientTimeout(total=timeout_s)
    try:
        async with session.get(url, timeout=timeout) as resp:
            if resp.status != HTTP_OK:
                msg = f'HTTP {resp.status} for {url}'
                raise FetchError(msg, url=url, status=resp.status)
            data = await resp.read()
    except aiohttp.ClientError as e:
        msg = f'Request failed for {url}: {e}'
        raise FetchError(msg, url=url) from e
    except asyncio.TimeoutError as e:
        msg = f'Request timed out after {timeout_s}s for {url}'
        raise TileTimeoutError(msg) from e
    logger.debug('Fetched %s (%d bytes)', url, len(data))
    return data
