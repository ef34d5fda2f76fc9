"""
DEM tile source: virtual tiles for renderers.

``DemTileSource`` sits on top of a tile manager (local or remote) and turns
decoded tiles into elevation grids: single tiles with overzoom, seam-free
3x3 composites and contour sets. Every top-level call reports one timing
record to the registered ``on_timing`` callbacks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from contours.isolines import generate_isolines
from domain.models import ContourOptions, HeightTileOptions
from elevation.grid import ElevationGrid
from shared.constants import (
    FINAL_BUFFER_PX,
    MATERIALIZE_BUFFER_PX,
    OUTCOME_CANCELLED,
    OUTCOME_ERROR,
    OUTCOME_TIMEOUT,
    TIMING_ISOLINE,
)
from shared.timing import Timer, Timing
from tiles.coords import neighbor_coords, overzoom_parent
from tiles.fetcher import tile_url
from tiles.manager import LocalDemManager, RemoteDemManager

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from contours.isolines import ContourSet
    from dem.decoder import DemTile
    from domain.models import DemSourceSettings
    from tiles.fetcher import FetchFn

logger = logging.getLogger(__name__)

T = TypeVar('T')


class DemManager(Protocol):
    settings: DemSourceSettings
    remote: bool

    async def loaded(self) -> None: ...

    async def fetch_tile(self, z: int, x: int, y: int, timer: Timer | None = None) -> bytes: ...

    async def fetch_and_parse_tile(
        self, z: int, x: int, y: int, timer: Timer | None = None
    ) -> DemTile: ...

    async def clear(self) -> int: ...

    async def close(self) -> None: ...


class DemTileSource:
    """
    Shared source of DEM-derived tiles.

    Usage:
        source = DemTileSource.from_settings(settings)
        source.on_timing(lambda t: print(t.duration))
        grid = await source.get_height_tile_with_neighbors(12, 2200, 1343)
        lines = await source.get_isolines(12, 2200, 1343, ContourOptions(interval=20))
        await source.close()
    """

    def __init__(self, manager: DemManager) -> None:
        self.manager = manager
        self._timing_callbacks: list[Callable[[Timing], Any]] = []

    @classmethod
    def from_settings(
        cls,
        settings: DemSourceSettings,
        *,
        fetch: FetchFn | None = None,
    ) -> DemTileSource:
        """Pick the local or the worker-backed manager from ``settings.worker``."""
        if settings.worker:
            return cls(RemoteDemManager(settings))
        return cls(LocalDemManager(settings, fetch=fetch))

    @property
    def settings(self) -> DemSourceSettings:
        return self.manager.settings

    async def loaded(self) -> None:
        await self.manager.loaded()

    def on_timing(self, callback: Callable[[Timing], Any]) -> Callable[[], None]:
        """Register a timing callback; returns a function that unregisters it."""
        self._timing_callbacks.append(callback)

        def remove() -> None:
            if callback in self._timing_callbacks:
                self._timing_callbacks.remove(callback)

        return remove

    def _emit(self, timing: Timing) -> None:
        for callback in list(self._timing_callbacks):
            try:
                callback(timing)
            except Exception:
                logger.exception('Timing callback failed')

    async def _timed(
        self,
        z: int,
        x: int,
        y: int,
        timer: Timer | None,
        run: Callable[[Timer], Awaitable[T]],
    ) -> T:
        # Вложенный вызов: таймер принадлежит вызывающему
        if timer is not None:
            return await run(timer)
        timer = Timer()
        url = tile_url(self.settings.url, z, x, y)
        try:
            result = await run(timer)
        except asyncio.CancelledError:
            self._emit(timer.error(url, OUTCOME_CANCELLED))
            raise
        except TimeoutError:
            self._emit(timer.error(url, OUTCOME_TIMEOUT))
            raise
        except Exception:
            self._emit(timer.error(url, OUTCOME_ERROR))
            raise
        self._emit(timer.finish(url))
        return result

    async def get_dem_tile(self, z: int, x: int, y: int, timer: Timer | None = None) -> DemTile:
        """Fetch and decode one tile, no resampling."""
        return await self._timed(
            z, x, y, timer, lambda t: self.manager.fetch_and_parse_tile(z, x, y, t)
        )

    async def get_height_tile(
        self,
        z: int,
        x: int,
        y: int,
        options: HeightTileOptions | None = None,
        timer: Timer | None = None,
    ) -> ElevationGrid:
        """
        Elevation grid of one tile, overzoom-aware.

        With overzoom (or beyond ``maxzoom``) the parent tile is fetched and
        the requested quadrant is cropped out of it.
        """
        opts = options or HeightTileOptions()
        target = overzoom_parent(z, x, y, opts.overzoom, self.settings.maxzoom)
        tile = await self.manager.fetch_and_parse_tile(target.zoom, target.x, target.y, timer)
        return ElevationGrid.from_raw(tile).split(target.depth, target.sub_x, target.sub_y)

    async def get_height_tile_with_neighbors(
        self,
        z: int,
        x: int,
        y: int,
        options: HeightTileOptions | None = None,
        timer: Timer | None = None,
    ) -> ElevationGrid | None:
        """
        Seam-free virtual tile built from the 3x3 neighborhood.

        Returns:
            Grid of ``(w+1) x (h+1)`` corner samples (``w`` after subsampling),
            or None when the center tile is absent.

        Raises:
            DemError: the center tile failed. Failed neighbors are logged and
                treated as missing.
        """
        opts = options or HeightTileOptions()
        return await self._timed(z, x, y, timer, lambda t: self._virtual_tile(z, x, y, opts, t))

    async def _virtual_tile(
        self,
        z: int,
        x: int,
        y: int,
        opts: HeightTileOptions,
        timer: Timer,
    ) -> ElevationGrid | None:
        coords = neighbor_coords(z, x, y)

        async def one(coord: tuple[int, int, int] | None) -> ElevationGrid | None:
            if coord is None:
                return None
            return await self.get_height_tile(*coord, opts, timer)

        results = await asyncio.gather(*(one(c) for c in coords), return_exceptions=True)
        neighbors: list[ElevationGrid | None] = []
        for idx, result in enumerate(results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                if idx == 4:
                    raise result
                logger.warning('Neighbor %s of %d/%d/%d failed: %s', coords[idx], z, x, y, result)
                neighbors.append(None)
            else:
                neighbors.append(result)

        grid = ElevationGrid.combine_neighbors(neighbors)
        if grid is None:
            return None
        if grid.width >= opts.subsample_below:
            grid = grid.materialize(MATERIALIZE_BUFFER_PX)
        else:
            while grid.width < opts.subsample_below:
                grid = grid.subsample_pixel_centers(2).materialize(MATERIALIZE_BUFFER_PX)
        return (
            grid.average_pixel_centers_to_grid()
            .scale_elevation(opts.multiplier)
            .materialize(FINAL_BUFFER_PX)
        )

    async def get_isolines(
        self,
        z: int,
        x: int,
        y: int,
        options: ContourOptions | None = None,
        timer: Timer | None = None,
    ) -> ContourSet:
        """Contour set of the virtual tile, in its grid-pixel coordinates."""
        opts = options or ContourOptions()
        if self.manager.remote:
            fetch_isolines = self.manager.fetch_isolines  # type: ignore[attr-defined]
            return await self._timed(z, x, y, timer, lambda t: fetch_isolines(z, x, y, opts, t))
        return await self._timed(z, x, y, timer, lambda t: self._isolines(z, x, y, opts, t))

    async def _isolines(
        self,
        z: int,
        x: int,
        y: int,
        opts: ContourOptions,
        timer: Timer,
    ) -> ContourSet:
        grid = await self._virtual_tile(z, x, y, opts, timer)
        if grid is None:
            return {}
        done = timer.marker(TIMING_ISOLINE)
        try:
            return generate_isolines(opts.interval, grid, buffer_px=opts.buffer_px)
        finally:
            done()

    async def clear(self) -> int:
        return await self.manager.clear()

    async def close(self) -> None:
        await self.manager.close()
