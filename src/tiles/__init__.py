"""Tile acquisition and caching.

This module provides:
- AsyncLRUCache: in-memory LRU cache of shared in-flight results
- TileKey, neighbor_coords, overzoom_parent: tile coordinate helpers
- HttpTileFetcher, tile_url: URL templates and the fetch primitive

The managers live in ``tiles.manager``.
"""

from tiles.cache import AsyncLRUCache, CacheStats
from tiles.coords import OverzoomTarget, TileKey, neighbor_coords, overzoom_parent
from tiles.fetcher import HttpTileFetcher, tile_url

__all__ = [
    'AsyncLRUCache',
    'CacheStats',
    'HttpTileFetcher',
    'OverzoomTarget',
    'TileKey',
    'neighbor_coords',
    'overzoom_parent',
    'tile_url',
]
