"""Handler tables of both ends of the actor protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from dem.decoder import decode
from domain.models import ContourOptions, DemSourceSettings
from shared.timing import Timer
from tiles.fetcher import tile_url
from workers.transfer import pack_tile, unpack_tile

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from dem.decoder import DemTile
    from elevation.source import DemTileSource
    from workers.actor import Actor
    from workers.transfer import TilePayload

    DecodeImageFn = Callable[[bytes, str], Awaitable[DemTile]]
    SourceFactory = Callable[[DemSourceSettings, DecodeImageFn | None], DemTileSource]

logger = logging.getLogger(__name__)


class MainThreadDispatch:
    """Methods the worker may call on the primary process."""

    def handlers(self) -> dict[str, Callable[..., Awaitable[Any]]]:
        return {'decode_image': self.decode_image}

    async def decode_image(self, data: bytes, encoding: str) -> TilePayload:
        """Decode an image payload with Pillow on the primary side."""
        return pack_tile(decode(data, encoding))


class WorkerDispatch:
    """
    Methods the primary process may call on the worker.

    Every remote manager registers itself with ``init``; later calls carry its
    id and are served by that manager's own tile source and caches.
    """

    def __init__(self, source_factory: SourceFactory) -> None:
        self._factory = source_factory
        self._sources: dict[int, DemTileSource] = {}
        self._actor: Actor | None = None

    def bind(self, actor: Actor) -> None:
        """Attach the actor used for calls back to the primary process."""
        self._actor = actor

    def handlers(self) -> dict[str, Callable[..., Awaitable[Any]]]:
        return {
            'init': self.init,
            'fetch_tile': self.fetch_tile,
            'fetch_and_parse_tile': self.fetch_and_parse_tile,
            'fetch_isolines': self.fetch_isolines,
            'clear': self.clear,
            'dispose': self.dispose,
        }

    def _source(self, manager_id: int) -> DemTileSource:
        source = self._sources.get(manager_id)
        if source is None:
            msg = f'Manager {manager_id} is not initialized'
            raise ValueError(msg)
        return source

    async def _decode_on_main(self, data: bytes, encoding: str) -> DemTile:
        if self._actor is None:
            msg = 'Worker dispatch is not bound to an actor'
            raise ConnectionError(msg)
        payload = await self._actor.send('decode_image', data, encoding)
        return unpack_tile(payload)

    async def init(self, manager_id: int, settings: dict[str, Any]) -> None:
        parsed = DemSourceSettings.model_validate(settings)
        decode_image = self._decode_on_main if parsed.decode_images_on_main else None
        self._sources[manager_id] = self._factory(parsed, decode_image)
        logger.info(
            'Manager %d initialized: %s (%s)', manager_id, parsed.url, parsed.encoding.value
        )

    async def fetch_tile(self, manager_id: int, z: int, x: int, y: int) -> dict[str, Any]:
        source = self._source(manager_id)
        timer = Timer()
        data = await source.manager.fetch_tile(z, x, y, timer)
        timing = timer.finish(tile_url(source.manager.settings.url, z, x, y))
        return {'data': data, 'timing': timing.to_dict()}

    async def fetch_and_parse_tile(
        self, manager_id: int, z: int, x: int, y: int
    ) -> dict[str, Any]:
        source = self._source(manager_id)
        timer = Timer()
        tile = await source.manager.fetch_and_parse_tile(z, x, y, timer)
        timing = timer.finish(tile_url(source.manager.settings.url, z, x, y))
        return {'tile': pack_tile(tile), 'timing': timing.to_dict()}

    async def fetch_isolines(
        self,
        manager_id: int,
        z: int,
        x: int,
        y: int,
        options: dict[str, Any],
    ) -> dict[str, Any]:
        source = self._source(manager_id)
        timer = Timer()
        isolines = await source.get_isolines(
            z, x, y, ContourOptions.model_validate(options), timer=timer
        )
        timing = timer.finish(tile_url(source.manager.settings.url, z, x, y))
        return {'isolines': isolines, 'timing': timing.to_dict()}

    async def clear(self, manager_id: int) -> int:
        return await self._source(manager_id).clear()

    async def dispose(self, manager_id: int) -> None:
        source = self._sources.pop(manager_id, None)
        if source is not None:
            await source.close()

    async def close(self) -> None:
        for manager_id in list(self._sources):
            await self.dispose(manager_id)
