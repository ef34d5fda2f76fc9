"""Web-Mercator tile coordinate helpers."""

from __future__ import annotations

from dataclasses import dataclass

from shared.constants import Encoding


@dataclass(frozen=True)
class TileKey:
    """Identity of one decoded tile in the in-memory cache."""

    z: int
    x: int
    y: int
    url: str
    encoding: Encoding


@dataclass(frozen=True)
class OverzoomTarget:
    """Which source tile to load and which part of it to keep."""

    zoom: int
    x: int
    y: int
    depth: int
    sub_x: int
    sub_y: int


def neighbor_coords(z: int, x: int, y: int) -> list[tuple[int, int, int] | None]:
    """
    Coordinates of the 3x3 neighborhood around a tile.

    Returns nine entries in row-major order, the tile itself at index 4.
    Columns wrap around the antimeridian; rows beyond the poles are None.
    """
    n = 1 << z
    out: list[tuple[int, int, int] | None] = []
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            ny = y + dy
            if ny < 0 or ny >= n:
                out.append(None)
            else:
                out.append((z, (x + dx) % n, ny))
    return out


def overzoom_parent(z: int, x: int, y: int, overzoom: int, maxzoom: int) -> OverzoomTarget:
    """
    Resolve the source tile of a virtual tile.

    The source zoom is ``min(z - overzoom, maxzoom)`` (never below 0); the
    virtual tile is the ``(sub_x, sub_y)`` quadrant of it at ``depth`` halvings.
    """
    zoom = max(0, min(z - overzoom, maxzoom))
    depth = z - zoom
    if depth <= 0:
        return OverzoomTarget(z, x, y, 0, 0, 0)
    size = 1 << depth
    return OverzoomTarget(zoom, x >> depth, y >> depth, depth, x % size, y % size)
