"""Hillshade (Horn's method) over an elevation grid."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

import cv2
import numpy as np

from shared.constants import (
    EARTH_CIRCUMFERENCE_M,
    HILLSHADE_ALTITUDE_DEG,
    HILLSHADE_AZIMUTH_DEG,
    HILLSHADE_EXAGGERATION,
)

if TYPE_CHECKING:
    from elevation.grid import ElevationGrid

logger = logging.getLogger(__name__)


def cell_size_m(zoom: int, width: int) -> float:
    """Ground size of one grid cell at the equator, in metres."""
    return EARTH_CIRCUMFERENCE_M / (1 << zoom) / width


def compute_hillshade(
    grid: ElevationGrid,
    zoom: int,
    azimuth_deg: float = HILLSHADE_AZIMUTH_DEG,
    altitude_deg: float = HILLSHADE_ALTITUDE_DEG,
    exaggeration: float = HILLSHADE_EXAGGERATION,
) -> np.ndarray:
    """
    Shade the grid for a light source at (azimuth, altitude).

    Args:
        grid: Elevation grid; one extra sample on every side is read from the
            grid itself, so composites shade seamlessly across tile edges.
        zoom: Tile zoom, sets the horizontal cell size.
        azimuth_deg: Light direction, clockwise from north.
        altitude_deg: Light elevation above the horizon.
        exaggeration: Vertical exaggeration factor.

    Returns:
        ``uint8`` array of shape ``(height, width)``; 255 is fully lit.
    """
    dem = grid.to_array(1).astype(np.float32)
    cell = cell_size_m(zoom, grid.width)

    # Sobel 3x3 = Horn's weights; /8 per cell
    dzdx = cv2.Sobel(dem, cv2.CV_32F, 1, 0, ksize=3, borderType=cv2.BORDER_REPLICATE)
    dzdy = cv2.Sobel(dem, cv2.CV_32F, 0, 1, ksize=3, borderType=cv2.BORDER_REPLICATE)
    dzdx = dzdx[1:-1, 1:-1] * (exaggeration / (8.0 * cell))
    dzdy = dzdy[1:-1, 1:-1] * (exaggeration / (8.0 * cell))

    slope = np.arctan(np.hypot(dzdx, dzdy))
    # строки растут на юг (ESRI)
    aspect = np.arctan2(dzdy, -dzdx)
    zenith = math.radians(90.0 - altitude_deg)
    azimuth = math.radians((360.0 - azimuth_deg + 90.0) % 360.0)

    shade = math.cos(zenith) * np.cos(slope) + math.sin(zenith) * np.sin(slope) * np.cos(
        azimuth - aspect
    )
    out = np.clip(shade * 255.0, 0.0, 255.0).astype(np.uint8)
    logger.debug('Hillshade %dx%d at z%d (cell %.1f m)', grid.width, grid.height, zoom, cell)
    return out
