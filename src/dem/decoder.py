"""
DEM tile decoding.

Turns raw tile bytes into a ``DemTile``: a row-major float32 buffer of
elevation samples. Four encodings are supported:

- ``terrarium``: RGB image, ``R*256 + G + B/256 - 32768``
- ``mapbox``: RGB image, ``-10000 + (R*65536 + G*256 + B) * 0.1``
- ``raw16``: ``<HH`` width/height header, then little-endian int16 samples
- ``raw32``: ``<HH`` width/height header, then little-endian float32 samples
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from io import BytesIO
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, UnidentifiedImageError

from shared.constants import (
    IMAGE_ENCODINGS,
    MAPBOX_OFFSET_M,
    MAPBOX_STEP_M,
    RAW_HEADER_FORMAT,
    RAW_HEADER_SIZE,
    TERRARIUM_OFFSET_M,
    Encoding,
)
from shared.errors import DecodeError

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

logger = logging.getLogger(__name__)

_RAW_DTYPES = {
    Encoding.RAW16: np.dtype('<i2'),
    Encoding.RAW32: np.dtype('<f4'),
}


@dataclass(frozen=True)
class DemTile:
    """Decoded elevation samples of one tile."""

    width: int
    height: int
    data: np.ndarray  # float32, shape (width * height,)

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            msg = f'Tile size must be positive, got {self.width}x{self.height}'
            raise DecodeError(msg)
        if self.data.size != self.width * self.height:
            msg = (
                f'Tile data has {self.data.size} samples, '
                f'expected {self.width}x{self.height}'
            )
            raise DecodeError(msg)
        self.data.flags.writeable = False

    def to_array(self) -> np.ndarray:
        """Samples as a read-only ``(height, width)`` view."""
        return self.data.reshape(self.height, self.width)


def parse_encoding(encoding: Encoding | str) -> Encoding:
    try:
        return Encoding(encoding)
    except ValueError:
        msg = f'Unsupported encoding: {encoding!r}'
        raise DecodeError(msg) from None


def decode(data: bytes | bytearray | memoryview, encoding: Encoding | str) -> DemTile:
    """
    Decode raw tile bytes.

    Args:
        data: Tile payload as fetched.
        encoding: One of ``Encoding`` (or its string value).

    Returns:
        Decoded DemTile.

    Raises:
        DecodeError: unsupported encoding, wrong byte length or corrupt image.
    """
    enc = parse_encoding(encoding)
    if enc in _RAW_DTYPES:
        return _decode_raw(bytes(data), _RAW_DTYPES[enc])
    return _decode_image(bytes(data), enc)


def _decode_raw(data: bytes, dtype: np.dtype) -> DemTile:
    if len(data) < RAW_HEADER_SIZE:
        msg = f'Raw tile is {len(data)} bytes, shorter than its header'
        raise DecodeError(msg)
    width, height = struct.unpack_from(RAW_HEADER_FORMAT, data, 0)
    count = width * height
    expected = RAW_HEADER_SIZE + count * dtype.itemsize
    if len(data) < expected:
        msg = (
            f'Raw tile {width}x{height} needs {expected} bytes, got {len(data)}'
        )
        raise DecodeError(msg)
    samples = np.frombuffer(data, dtype=dtype, count=count, offset=RAW_HEADER_SIZE)
    return DemTile(width, height, samples.astype(np.float32))


def _decode_image(data: bytes, encoding: Encoding) -> DemTile:
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            rgba = np.asarray(img.convert('RGBA'), dtype=np.uint8)
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        msg = f'Could not decode {encoding.value} image ({len(data)} bytes): {e}'
        raise DecodeError(msg) from e
    height, width = rgba.shape[:2]
    return decode_parsed_image(width, height, encoding, rgba)


def decode_parsed_image(
    width: int,
    height: int,
    encoding: Encoding | str,
    pixels: ArrayLike | bytes,
) -> DemTile:
    """
    Apply the per-pixel elevation formula to already extracted pixels.

    Args:
        width: Image width.
        height: Image height.
        encoding: ``terrarium`` or ``mapbox``.
        pixels: RGBA or RGB bytes (or an array of them), row-major.

    Returns:
        Decoded DemTile.
    """
    enc = parse_encoding(encoding)
    if enc not in IMAGE_ENCODINGS:
        msg = f'{enc.value} is not an image encoding'
        raise DecodeError(msg)
    if isinstance(pixels, (bytes, bytearray, memoryview)):
        flat = np.frombuffer(pixels, dtype=np.uint8)
    else:
        flat = np.asarray(pixels, dtype=np.uint8).reshape(-1)
    count = width * height
    if count <= 0 or flat.size not in (count * 3, count * 4):
        msg = f'{flat.size} pixel bytes do not fit a {width}x{height} RGB(A) image'
        raise DecodeError(msg)
    px = flat.reshape(count, flat.size // count).astype(np.float64)
    r = px[:, 0]
    g = px[:, 1]
    b = px[:, 2]
    if enc == Encoding.MAPBOX:
        elevation = MAPBOX_OFFSET_M + (r * 65536.0 + g * 256.0 + b) * MAPBOX_STEP_M
    else:
        elevation = r * 256.0 + g + b / 256.0 - TERRARIUM_OFFSET_M
    return DemTile(width, height, elevation.astype(np.float32))
