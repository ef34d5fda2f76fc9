"""Elevation grids, virtual tiles and hillshade."""

from elevation.grid import ElevationGrid

__all__ = ['ElevationGrid']
