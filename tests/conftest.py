"""Pytest configuration and fixtures for DEM contour tests."""

import asyncio
import struct
import sys
from io import BytesIO
from pathlib import Path

import numpy as np
import pytest
import pytest_asyncio

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))


def raw16_payload(values: np.ndarray) -> bytes:
    """Build a raw16 tile: <HH width/height header + int16 samples."""
    arr = np.asarray(values, dtype='<i2')
    height, width = arr.shape
    return struct.pack('<HH', width, height) + arr.tobytes()


def terrarium_png(elevation: np.ndarray) -> bytes:
    """Encode an elevation array as a terrarium PNG."""
    from PIL import Image

    v = np.asarray(elevation, dtype=np.float64) + 32768.0
    r = np.floor(v / 256.0)
    g = np.floor(v - r * 256.0)
    b = np.floor((v - r * 256.0 - g) * 256.0)
    rgb = np.stack([r, g, b], axis=-1).astype(np.uint8)
    buf = BytesIO()
    Image.fromarray(rgb).save(buf, format='PNG')
    return buf.getvalue()


@pytest.fixture
def make_raw16():
    """Factory fixture for raw16 payloads."""
    return raw16_payload


@pytest.fixture
def make_terrarium_png():
    """Factory fixture for terrarium PNG payloads."""
    return terrarium_png


DEM_URL = 'https://dem.test/{z}/{x}/{y}.bin'


class FakeFetch:
    """Fetch stand-in serving tiles computed from (z, x, y).

    ``values`` returns a scalar or a ``size x size`` array per tile. Tiles in
    ``failing`` raise the given exception; ``gate`` blocks every fetch until set.
    """

    def __init__(self, values, *, size=4, failing=None, gate=None, png=False):
        self.values = values
        self.size = size
        self.failing = dict(failing or {})
        self.gate = gate
        self.png = png
        self.calls: list[tuple[int, int, int]] = []
        self.cancelled = 0

    async def __call__(self, url: str) -> bytes:
        z, x, y = (int(p) for p in url.rsplit('.', 1)[0].rsplit('/', 3)[1:])
        self.calls.append((z, x, y))
        if self.gate is not None:
            try:
                await self.gate.wait()
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        exc = self.failing.get((z, x, y))
        if exc is not None:
            raise exc
        arr = np.broadcast_to(
            np.asarray(self.values(z, x, y), dtype=np.float64), (self.size, self.size)
        )
        return terrarium_png(arr) if self.png else raw16_payload(arr)


@pytest.fixture
def dem_settings():
    """raw16 source settings pointing at the fake host."""
    from domain.models import DemSourceSettings

    return DemSourceSettings(url=DEM_URL, encoding='raw16', maxzoom=12, timeout_ms=5000)


@pytest.fixture
def make_fetch():
    """Factory fixture for FakeFetch."""
    return FakeFetch


def ramp_tile(z: int, x: int, y: int) -> np.ndarray:
    """4x4 tile sloping along x, continuous across tile borders."""
    return np.tile(np.arange(4) * 10.0 + x * 40 + y, (4, 1))


@pytest_asyncio.fixture
async def tile_server():
    """Local aiohttp server of raw16 ramp tiles; zoom 9 answers 404.

    Yields the URL template of the served tiles.
    """
    from aiohttp import web

    async def handle(request: web.Request) -> web.Response:
        z = int(request.match_info['z'])
        x = int(request.match_info['x'])
        y = int(request.match_info['tail'].split('.', 1)[0])
        if z == 9:
            raise web.HTTPNotFound()
        return web.Response(body=raw16_payload(ramp_tile(z, x, y)))

    app = web.Application()
    app.router.add_get('/{z}/{x}/{tail}', handle)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, '127.0.0.1', 0)
    await site.start()
    port = runner.addresses[0][1]
    try:
        yield f'http://127.0.0.1:{port}/{{z}}/{{x}}/{{y}}.bin'
    finally:
        await runner.cleanup()
