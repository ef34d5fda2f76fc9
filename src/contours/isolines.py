"""
Isoline extraction with marching squares.

Cells are scanned level by level in row-major order. Each crossing cell adds
one or two oriented segments whose endpoints are identified by the lattice
edge they lie on; segments sharing an edge are stitched into polylines as
they appear, so the output order is fully determined by the grid content.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from typing import TYPE_CHECKING

import numpy as np

from shared.constants import DEFAULT_CONTOUR_BUFFER_PX

if TYPE_CHECKING:
    from elevation.grid import ElevationGrid

logger = logging.getLogger(__name__)

ContourSet = dict[float, list[list[float]]]

# Середины рёбер ячейки: (x, y) в половинах шага
LEFT = (0, 1)
RIGHT = (2, 1)
TOP = (1, 0)
BOTTOM = (1, 2)

# Индекс: tl*8 | tr*4 | br*2 | bl*1, где 1 означает "не ниже уровня".
# Сегменты ориентированы так, что верхняя сторона всегда с одной стороны.
CASES: tuple[tuple[tuple[tuple[int, int], tuple[int, int]], ...], ...] = (
    (),
    ((BOTTOM, LEFT),),
    ((RIGHT, BOTTOM),),
    ((RIGHT, LEFT),),
    ((TOP, RIGHT),),
    ((BOTTOM, LEFT), (TOP, RIGHT)),
    ((TOP, BOTTOM),),
    ((TOP, LEFT),),
    ((LEFT, TOP),),
    ((BOTTOM, TOP),),
    ((LEFT, TOP), (RIGHT, BOTTOM)),
    ((RIGHT, TOP),),
    ((LEFT, RIGHT),),
    ((BOTTOM, RIGHT),),
    ((LEFT, BOTTOM),),
    (),
)

# Седловые ячейки, когда среднее четырёх углов не ниже уровня:
# верхние углы соединены через центр, нижние отсечены.
SADDLE_CENTER_ABOVE = {
    5: ((TOP, LEFT), (BOTTOM, RIGHT)),
    10: ((RIGHT, TOP), (LEFT, BOTTOM)),
}

EdgeKey = tuple[int, int, int]


class _Fragment:
    """Open polyline under construction."""

    __slots__ = ('end', 'points', 'start')

    def __init__(self, start: EdgeKey, end: EdgeKey) -> None:
        self.start = start
        self.end = end
        self.points: deque[tuple[float, float]] = deque()

    def flat(self) -> list[float]:
        return [c for point in self.points for c in point]


def _edge_key(i: int, j: int, point: tuple[int, int]) -> EdgeKey:
    # (orientation, x, y): 0 = horizontal edge, 1 = vertical edge
    if point == LEFT:
        return (1, i, j)
    if point == RIGHT:
        return (1, i + 1, j)
    if point == TOP:
        return (0, i, j)
    return (0, i, j + 1)


def _interpolate(
    values: np.ndarray,
    i: int,
    j: int,
    point: tuple[int, int],
    level: float,
    x0: int,
    y0: int,
) -> tuple[float, float]:
    if point == LEFT:
        v0, v1 = values[j, i], values[j + 1, i]
        return float(x0 + i), float(y0 + j + (level - v0) / (v1 - v0))
    if point == RIGHT:
        v0, v1 = values[j, i + 1], values[j + 1, i + 1]
        return float(x0 + i + 1), float(y0 + j + (level - v0) / (v1 - v0))
    if point == TOP:
        v0, v1 = values[j, i], values[j, i + 1]
        return float(x0 + i + (level - v0) / (v1 - v0)), float(y0 + j)
    v0, v1 = values[j + 1, i], values[j + 1, i + 1]
    return float(x0 + i + (level - v0) / (v1 - v0)), float(y0 + j + 1)


def _trace_level(values: np.ndarray, level: float, x0: int, y0: int) -> list[list[float]]:
    above = values >= level
    cases = (
        above[:-1, :-1].astype(np.int8) * 8
        | above[:-1, 1:].astype(np.int8) * 4
        | above[1:, 1:].astype(np.int8) * 2
        | above[1:, :-1].astype(np.int8)
    )
    rows, cols = np.nonzero((cases != 0) & (cases != 15))

    lines: list[list[float]] = []
    by_start: dict[EdgeKey, _Fragment] = {}
    by_end: dict[EdgeKey, _Fragment] = {}

    for j, i in zip(rows.tolist(), cols.tolist()):
        case = int(cases[j, i])
        segments = CASES[case]
        if case in SADDLE_CENTER_ABOVE:
            center = (
                values[j, i] + values[j, i + 1] + values[j + 1, i] + values[j + 1, i + 1]
            ) / 4.0
            if center >= level:
                segments = SADDLE_CENTER_ABOVE[case]

        for start, end in segments:
            start_key = _edge_key(i, j, start)
            end_key = _edge_key(i, j, end)
            f = by_end.pop(start_key, None)
            if f is not None:
                g = by_start.pop(end_key, None)
                if g is f:
                    # кольцо замкнулось
                    f.points.append(_interpolate(values, i, j, end, level, x0, y0))
                    lines.append(f.flat())
                elif g is not None:
                    f.points.extend(g.points)
                    f.end = g.end
                    by_end[f.end] = f
                else:
                    f.points.append(_interpolate(values, i, j, end, level, x0, y0))
                    f.end = end_key
                    by_end[end_key] = f
                continue
            f = by_start.pop(end_key, None)
            if f is not None:
                f.points.appendleft(_interpolate(values, i, j, start, level, x0, y0))
                f.start = start_key
                by_start[start_key] = f
                continue
            f = _Fragment(start_key, end_key)
            f.points.append(_interpolate(values, i, j, start, level, x0, y0))
            f.points.append(_interpolate(values, i, j, end, level, x0, y0))
            by_start[start_key] = f
            by_end[end_key] = f

    lines.extend(f.flat() for f in by_start.values())
    return lines


def generate_isolines(
    interval: float,
    grid: ElevationGrid,
    extent_px: int | None = None,
    buffer_px: int = DEFAULT_CONTOUR_BUFFER_PX,
) -> ContourSet:
    """
    Extract contour polylines from an elevation grid.

    Args:
        interval: Contour interval; levels are its multiples.
        grid: Source grid (sampled through its clamping ``region``).
        extent_px: Visible extent in grid pixels, defaults to the grid size.
        buffer_px: Extra pixels scanned beyond the extent on every side, so
            lines crossing the tile edge are continuous.

    Returns:
        Mapping level -> polylines, each a flat ``[x0, y0, x1, y1, ...]`` list
        in grid-pixel coordinates. Levels are ascending; flat input gives {}.
    """
    if interval <= 0:
        msg = f'interval must be positive, got {interval}'
        raise ValueError(msg)
    width = grid.width if extent_px is None else extent_px
    height = grid.height if extent_px is None else extent_px
    x0 = y0 = -buffer_px
    values = grid.region(x0, y0, width + buffer_px, height + buffer_px)
    if values.shape[0] < 2 or values.shape[1] < 2:
        return {}

    lo = float(values.min())
    hi = float(values.max())
    result: ContourSet = {}
    for k in range(math.floor(lo / interval) + 1, math.ceil(hi / interval)):
        level = k * interval
        if not lo < level < hi:
            continue
        lines = _trace_level(values, level, x0, y0)
        if lines:
            result[level] = lines
    logger.debug(
        'Isolines: %d levels, %d lines (range %.1f..%.1f, interval %s)',
        len(result),
        sum(len(v) for v in result.values()),
        lo,
        hi,
        interval,
    )
    return result


def split_major_minor(
    isolines: ContourSet,
    major_interval: float,
) -> tuple[ContourSet, ContourSet]:
    """Partition a contour set into (major, minor) levels."""
    major: ContourSet = {}
    minor: ContourSet = {}
    for level, lines in isolines.items():
        rem = math.fmod(abs(level), major_interval)
        is_major = math.isclose(rem, 0.0, abs_tol=1e-9) or math.isclose(
            rem, major_interval, abs_tol=1e-9
        )
        (major if is_major else minor)[level] = lines
    return major, minor
