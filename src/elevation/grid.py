"""
Elevation grid with deferred transforms.

An ``ElevationGrid`` is a logical ``width x height`` lattice of elevation
samples. It is backed by a node: either a dense buffer or a transform over
other grids (crop, combine, resample, average, scale). Transforms are lazy;
``materialize`` evaluates the chain once into an owned dense buffer.

Sampling is vectorized: every node maps integer coordinate arrays to sample
arrays, and ``get`` is a one-point call of the same path. Coordinates outside
a dense buffer clamp to its nearest sample, so ``get`` never fails and always
returns a finite value.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from shared.constants import MATERIALIZE_BUFFER_PX

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dem.decoder import DemTile

logger = logging.getLogger(__name__)

# Значения ниже этого порога считаются "нет данных"
MIN_VALID_ELEVATION_M = -12000.0
NEIGHBOR_COUNT = 9
CENTER_INDEX = 4
# Дальше любой сетки; сдвиги и буферы узлов не переполняют int64
COORD_LIMIT = 2**31


def _clamp_coord(value: int) -> int:
    return min(max(int(value), -COORD_LIMIT), COORD_LIMIT)


class _Node:
    """Base of the transform union: maps coordinate arrays to samples."""

    def sample(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class _Dense(_Node):
    """Owned buffer; ``buffer`` extra samples on every side of the grid."""

    def __init__(self, data: np.ndarray, buffer: int = 0) -> None:
        self.data = data
        self.buffer = buffer

    def sample(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        h, w = self.data.shape
        ix = np.clip(xs + self.buffer, 0, w - 1)
        iy = np.clip(ys + self.buffer, 0, h - 1)
        return self.data[iy, ix]


class _Crop(_Node):
    def __init__(self, source: ElevationGrid, dx: int, dy: int) -> None:
        self.source = source
        self.dx = dx
        self.dy = dy

    def sample(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        return self.source.sample(xs + self.dx, ys + self.dy)


class _Combine(_Node):
    """3x3 neighborhood laid edge to edge around the center tile."""

    def __init__(
        self,
        tiles: tuple[ElevationGrid | None, ...],
        width: int,
        height: int,
    ) -> None:
        self.tiles = tiles
        self.width = width
        self.height = height
        self.providers = [self._provider(idx) for idx in range(NEIGHBOR_COUNT)]

    def _provider(self, idx: int) -> int:
        # Missing tile: take the nearest present tile of the same column, then
        # of the same row, then the center, and clamp onto its edge.
        row, col = divmod(idx, 3)
        for r, c in ((row, col), (1, col), (row, 1), (1, 1)):
            if self.tiles[r * 3 + c] is not None:
                return r * 3 + c
        return CENTER_INDEX

    def sample(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        w, h = self.width, self.height
        xs = np.clip(xs, -w, 2 * w - 1)
        ys = np.clip(ys, -h, 2 * h - 1)
        col = (xs >= 0).astype(np.int64) + (xs >= w)
        row = (ys >= 0).astype(np.int64) + (ys >= h)
        cell = row * 3 + col
        out = np.empty(xs.shape, dtype=np.float64)
        for idx in np.unique(cell):
            mask = cell == idx
            provider = self.providers[int(idx)]
            pr, pc = divmod(provider, 3)
            lx = xs[mask] - (pc - 1) * w
            ly = ys[mask] - (pr - 1) * h
            if provider != idx:
                lx = np.clip(lx, 0, w - 1)
                ly = np.clip(ly, 0, h - 1)
            tile = self.tiles[provider]
            out[mask] = tile.sample(lx, ly)  # type: ignore[union-attr]
        return out


class _Subsample(_Node):
    """Bilinear interpolation between pixel centers."""

    def __init__(self, source: ElevationGrid, factor: int) -> None:
        self.source = source
        self.factor = factor
        self.shift = 0.5 - 1.0 / (2.0 * factor)

    def sample(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        dx = xs / self.factor - self.shift
        dy = ys / self.factor - self.shift
        ox = np.floor(dx)
        oy = np.floor(dy)
        fx = dx - ox
        fy = dy - oy
        ox = ox.astype(np.int64)
        oy = oy.astype(np.int64)
        a = self.source.sample(ox, oy)
        b = self.source.sample(ox + 1, oy)
        c = self.source.sample(ox, oy + 1)
        d = self.source.sample(ox + 1, oy + 1)
        top = a + (b - a) * fx
        bottom = c + (d - c) * fx
        return top + (bottom - top) * fy


class _Average(_Node):
    """Mean of the ``2r x 2r`` pixel centers around each grid corner."""

    def __init__(self, source: ElevationGrid, radius: int) -> None:
        self.source = source
        self.radius = radius

    def sample(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        r = self.radius
        total = np.zeros(xs.shape, dtype=np.float64)
        for oy in range(-r, r):
            for ox in range(-r, r):
                total += self.source.sample(xs + ox, ys + oy)
        return total / float((2 * r) ** 2)


class _Scale(_Node):
    def __init__(self, source: ElevationGrid, multiplier: float) -> None:
        self.source = source
        self.multiplier = multiplier

    def sample(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        return self.source.sample(xs, ys) * self.multiplier


class ElevationGrid:
    """
    Immutable elevation lattice.

    Every transform returns a new grid and leaves the receiver untouched.

    Usage:
        grid = ElevationGrid.from_raw(dem_tile)
        quadrant = grid.split(1, 0, 1)
        smooth = quadrant.subsample_pixel_centers(2).materialize(2)
    """

    __slots__ = ('_node', 'height', 'width')

    def __init__(self, width: int, height: int, node: _Node) -> None:
        self.width = int(width)
        self.height = int(height)
        self._node = node

    def __repr__(self) -> str:
        return f'ElevationGrid({self.width}x{self.height}, {type(self._node).__name__})'

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_array(cls, array: np.ndarray) -> ElevationGrid:
        """Wrap a ``(height, width)`` array; invalid samples are filled."""
        arr = np.asarray(array)
        if arr.ndim != 2 or arr.size == 0:
            msg = f'Expected a non-empty 2D array, got shape {arr.shape}'
            raise ValueError(msg)
        if not np.issubdtype(arr.dtype, np.floating):
            arr = arr.astype(np.float64)
        invalid = ~np.isfinite(arr) | (arr < MIN_VALID_ELEVATION_M)
        if invalid.any():
            valid = arr[~invalid]
            fill = float(valid.min()) if valid.size else 0.0
            logger.debug('Filling %d invalid samples with %.2f', int(invalid.sum()), fill)
            arr = np.where(invalid, fill, arr)
        h, w = arr.shape
        return cls(w, h, _Dense(arr))

    @classmethod
    def from_raw(cls, tile: DemTile) -> ElevationGrid:
        """Wrap a decoded tile 1:1."""
        return cls.from_array(tile.to_array())

    @classmethod
    def combine_neighbors(
        cls,
        neighbors: Sequence[ElevationGrid | None],
    ) -> ElevationGrid | None:
        """
        Build a virtual tile from a 3x3 neighborhood.

        Args:
            neighbors: Nine grids in row-major order, center at index 4;
                ``None`` marks a tile beyond the world edge.

        Returns:
            Grid of the center's size whose sampling domain extends one tile
            in every direction, or None when the center itself is missing.
        """
        if len(neighbors) != NEIGHBOR_COUNT:
            msg = f'Expected {NEIGHBOR_COUNT} neighbors, got {len(neighbors)}'
            raise ValueError(msg)
        center = neighbors[CENTER_INDEX]
        if center is None:
            return None
        node = _Combine(tuple(neighbors), center.width, center.height)
        return cls(center.width, center.height, node)

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        """Vectorized point sampling of integer coordinate arrays."""
        return self._node.sample(
            np.clip(np.asarray(xs, dtype=np.int64), -COORD_LIMIT, COORD_LIMIT),
            np.clip(np.asarray(ys, dtype=np.int64), -COORD_LIMIT, COORD_LIMIT),
        )

    def get(self, x: int, y: int) -> float:
        """Sample one point; out-of-range coordinates clamp."""
        xs = np.array([_clamp_coord(x)], dtype=np.int64)
        ys = np.array([_clamp_coord(y)], dtype=np.int64)
        return float(self.sample(xs, ys)[0])

    def region(self, x0: int, y0: int, x1: int, y1: int) -> np.ndarray:
        """Samples of ``[x0, x1) x [y0, y1)`` as a ``(rows, cols)`` array."""
        xs, ys = np.meshgrid(
            np.arange(x0, x1, dtype=np.int64),
            np.arange(y0, y1, dtype=np.int64),
        )
        return self.sample(xs, ys)

    def to_array(self, buffer: int = 0) -> np.ndarray:
        """Samples of the grid plus ``buffer`` pixels on every side."""
        return self.region(-buffer, -buffer, self.width + buffer, self.height + buffer)

    # ------------------------------------------------------------------
    # Transforms
    # ------------------------------------------------------------------

    def split(self, depth: int, sub_x: int, sub_y: int) -> ElevationGrid:
        """
        Crop to one ``1/2**depth`` sub-quadrant (overzoom).

        Args:
            depth: How many times the tile is halved.
            sub_x: Column of the sub-quadrant, in sub-quadrant units.
            sub_y: Row of the sub-quadrant, in sub-quadrant units.
        """
        if depth < 0:
            msg = f'depth must be >= 0, got {depth}'
            raise ValueError(msg)
        if depth == 0:
            return self
        by = 1 << depth
        width = self.width // by
        height = self.height // by
        if width < 1 or height < 1:
            msg = f'Cannot split a {self.width}x{self.height} grid {depth} times'
            raise ValueError(msg)
        node = _Crop(self, sub_x * width, sub_y * height)
        return ElevationGrid(width, height, node)

    def subsample_pixel_centers(self, factor: int) -> ElevationGrid:
        """Multiply sample density by ``factor`` with bilinear interpolation."""
        if factor <= 1:
            return self
        return ElevationGrid(
            self.width * factor,
            self.height * factor,
            _Subsample(self, factor),
        )

    def average_pixel_centers_to_grid(self, radius: int = 1) -> ElevationGrid:
        """Turn pixel-center samples into ``(w+1) x (h+1)`` grid-corner samples."""
        return ElevationGrid(self.width + 1, self.height + 1, _Average(self, radius))

    def scale_elevation(self, multiplier: float) -> ElevationGrid:
        if multiplier == 1:
            return self
        return ElevationGrid(self.width, self.height, _Scale(self, multiplier))

    def materialize(self, buffer: int = MATERIALIZE_BUFFER_PX) -> ElevationGrid:
        """
        Evaluate the transform chain into one dense buffer.

        Args:
            buffer: Extra samples read on every side, so later reads just
                outside the grid stay exact instead of clamping.
        """
        data = self.to_array(buffer)
        return ElevationGrid(self.width, self.height, _Dense(data, buffer))
