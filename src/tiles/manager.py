"""DEM tile managers: fetch, decode and cache tiles, inline or in a worker.

This module provides:
- LocalDemManager: fetches and decodes in the calling event loop
- RemoteDemManager: forwards the same calls to a background process
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import multiprocessing as mp
from typing import TYPE_CHECKING, Any

from dem.decoder import DemTile, decode
from infrastructure.http.client import make_http_session
from shared.constants import (
    IMAGE_ENCODINGS,
    TIMING_DECODE,
    TIMING_FETCH,
    WORKER_JOIN_TIMEOUT_S,
    WORKER_PROCESS_NAME,
)
from shared.diagnostics import log_memory_usage
from shared.timing import Timing
from tiles.cache import AsyncLRUCache
from tiles.coords import TileKey
from tiles.fetcher import HttpTileFetcher, tile_url
from workers.actor import Actor
from workers.channels import PipeChannel
from workers.dispatch import MainThreadDispatch
from workers.process_entry import worker_process_main
from workers.transfer import discard_payload, unpack_tile

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import aiohttp

    from contours.isolines import ContourSet
    from domain.models import ContourOptions, DemSourceSettings
    from shared.timing import Timer
    from tiles.fetcher import FetchFn

    DecodeImageFn = Callable[[bytes, str], Awaitable[DemTile]]

logger = logging.getLogger(__name__)


class LocalDemManager:
    """Fetch and decode DEM tiles in the current event loop.

    Keeps two bounded caches of ``settings.cache_size`` entries: raw payloads
    keyed by URL and decoded tiles keyed by ``TileKey``. Concurrent requests
    for one key share a single fetch and decode.

    Usage:
        manager = LocalDemManager(settings)
        tile = await manager.fetch_and_parse_tile(12, 2200, 1343)
        await manager.close()
    """

    remote = False

    def __init__(
        self,
        settings: DemSourceSettings,
        *,
        fetch: FetchFn | None = None,
        session: aiohttp.ClientSession | None = None,
        decode_image: DecodeImageFn | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            settings: Source URL pattern, encoding, cache size and timeout.
            fetch: Fetch-by-URL coroutine; defaults to HTTP over ``session``.
            session: aiohttp session for the default fetcher; created lazily
                (and closed by ``close``) when not given.
            decode_image: Coroutine decoding image payloads elsewhere.
        """
        self.settings = settings
        self._fetch = fetch
        self._session = session
        self._owns_session = False
        self._decode_image = decode_image
        self._raw = AsyncLRUCache[str, bytes](settings.cache_size, name='raw')
        self._tiles = AsyncLRUCache[TileKey, DemTile](settings.cache_size, name='tiles')
        logger.info(
            'LocalDemManager: %s (%s), cache_size=%d, timeout=%dms',
            settings.url,
            settings.encoding.value,
            settings.cache_size,
            settings.timeout_ms,
        )

    async def loaded(self) -> None:
        """Ready immediately."""

    def _fetcher(self) -> FetchFn:
        if self._fetch is None:
            if self._session is None:
                self._session = make_http_session()
                self._owns_session = True
            self._fetch = HttpTileFetcher(self._session, timeout_s=self.settings.timeout_s)
        return self._fetch

    async def fetch_tile(self, z: int, x: int, y: int, timer: Timer | None = None) -> bytes:
        """Raw payload of one tile, fetched once per URL."""
        url = tile_url(self.settings.url, z, x, y)
        if timer is not None:
            timer.use_tile(url)

        async def load() -> bytes:
            fetch = self._fetcher()
            if timer is None:
                return await fetch(url)
            timer.fetch_tile(url)
            done = timer.marker(TIMING_FETCH)
            try:
                return await fetch(url)
            finally:
                done()

        return await self._raw.get(url, load, self.settings.timeout_s)

    async def fetch_and_parse_tile(
        self, z: int, x: int, y: int, timer: Timer | None = None
    ) -> DemTile:
        """Decoded tile, fetched and decoded once per ``TileKey``."""
        key = TileKey(z, x, y, self.settings.url, self.settings.encoding)

        async def load() -> DemTile:
            data = await self.fetch_tile(z, x, y, timer)
            done = timer.marker(TIMING_DECODE) if timer is not None else None
            try:
                return await self._decode(data)
            finally:
                if done is not None:
                    done()

        if timer is not None:
            timer.use_tile(tile_url(self.settings.url, z, x, y))
        return await self._tiles.get(key, load, self.settings.timeout_s)

    async def _decode(self, data: bytes) -> DemTile:
        encoding = self.settings.encoding
        if self._decode_image is not None and encoding in IMAGE_ENCODINGS:
            return await self._decode_image(data, encoding.value)
        return decode(data, encoding)

    async def clear(self) -> int:
        """Drop both caches, cancelling in-flight work."""
        dropped = self._tiles.clear() + self._raw.clear()
        log_memory_usage('after cache clear')
        return dropped

    async def close(self) -> None:
        await self.clear()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
            self._fetch = None


class RemoteDemManager:
    """Same contract as LocalDemManager, served by a background process.

    The process is spawned on first use unless an actor is injected. The
    worker owns the caches; only payloads and timings cross the channel.
    """

    remote = True
    _ids = itertools.count(1)

    def __init__(self, settings: DemSourceSettings, *, actor: Actor | None = None) -> None:
        self.settings = settings
        self.manager_id = next(RemoteDemManager._ids)
        self._actor = actor
        self._process: Any = None
        self._init: asyncio.Future[Any] | None = None

    def _start_worker(self) -> Actor:
        if self._actor is None:
            ctx = mp.get_context('spawn')
            parent_conn, child_conn = ctx.Pipe(duplex=True)
            self._process = ctx.Process(
                target=worker_process_main,
                args=(child_conn,),
                name=WORKER_PROCESS_NAME,
                daemon=True,
            )
            self._process.start()
            child_conn.close()
            logger.info('Worker process started: pid=%s', self._process.pid)
            self._actor = Actor(
                'main',
                PipeChannel(parent_conn),
                MainThreadDispatch().handlers(),
                on_orphan=discard_payload,
            )
        self._actor.start()
        return self._actor

    async def loaded(self) -> None:
        """Wait until the worker has initialized this manager."""
        if self._init is None:
            actor = self._start_worker()
            self._init = asyncio.ensure_future(
                actor.send('init', self.manager_id, self.settings.model_dump(mode='json'))
            )
        await asyncio.shield(self._init)

    async def _call(self, method: str, *args: Any, timer: Timer | None = None) -> Any:
        await self.loaded()
        reply = await self._actor.send(method, self.manager_id, *args)  # type: ignore[union-attr]
        if timer is not None and isinstance(reply, dict) and 'timing' in reply:
            timer.add_all(Timing.from_dict(reply['timing']))
        return reply

    async def fetch_tile(self, z: int, x: int, y: int, timer: Timer | None = None) -> bytes:
        reply = await self._call('fetch_tile', z, x, y, timer=timer)
        return reply['data']

    async def fetch_and_parse_tile(
        self, z: int, x: int, y: int, timer: Timer | None = None
    ) -> DemTile:
        reply = await self._call('fetch_and_parse_tile', z, x, y, timer=timer)
        return unpack_tile(reply['tile'])

    async def fetch_isolines(
        self,
        z: int,
        x: int,
        y: int,
        options: ContourOptions,
        timer: Timer | None = None,
    ) -> ContourSet:
        """Run the whole contour pipeline in the worker."""
        reply = await self._call(
            'fetch_isolines', z, x, y, options.model_dump(mode='json'), timer=timer
        )
        return reply['isolines']

    async def clear(self) -> int:
        return await self._call('clear')

    async def close(self) -> None:
        """Dispose the worker-side manager and stop the worker process."""
        actor = self._actor
        if actor is not None and not actor.closed and self._init is not None:
            await self._call('dispose')
        if self._process is not None and actor is not None:
            await actor.close()
            await asyncio.to_thread(self._process.join, WORKER_JOIN_TIMEOUT_S)
            if self._process.is_alive():
                logger.warning('Worker process did not stop gracefully, terminating')
                self._process.terminate()
                await asyncio.to_thread(self._process.join, WORKER_JOIN_TIMEOUT_S)
            logger.info('Worker process stopped: exitcode=%s', self._process.exitcode)
            self._process = None
