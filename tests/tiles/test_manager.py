"""Tests for LocalDemManager."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import numpy as np
import pytest

from dem.decoder import DemTile
from shared.constants import TIMING_DECODE, TIMING_FETCH
from shared.errors import DecodeError, FetchError
from shared.timing import Timer
from tiles.manager import LocalDemManager


class TestLocalDemManager:
    """Tests for LocalDemManager class."""

    @pytest.mark.asyncio
    async def test_fetch_tile_returns_raw_bytes(self, dem_settings, make_fetch):
        """fetch_tile should return the payload for the expanded URL."""
        fetch = make_fetch(lambda z, x, y: 7)
        manager = LocalDemManager(dem_settings, fetch=fetch)
        data = await manager.fetch_tile(3, 2, 1)
        assert isinstance(data, bytes)
        assert fetch.calls == [(3, 2, 1)]

    @pytest.mark.asyncio
    async def test_fetch_and_parse_tile(self, dem_settings, make_fetch):
        """Should decode the payload with the configured encoding."""
        manager = LocalDemManager(dem_settings, fetch=make_fetch(lambda z, x, y: 42))
        tile = await manager.fetch_and_parse_tile(3, 2, 1)
        assert isinstance(tile, DemTile)
        assert (tile.width, tile.height) == (4, 4)
        assert np.all(tile.data == 42.0)

    @pytest.mark.asyncio
    async def test_concurrent_requests_fetch_once(self, dem_settings, make_fetch):
        """Concurrent requests for one tile should share a single fetch."""
        gate = asyncio.Event()
        fetch = make_fetch(lambda z, x, y: 1, gate=gate)
        manager = LocalDemManager(dem_settings, fetch=fetch)
        tasks = [asyncio.create_task(manager.fetch_and_parse_tile(5, 1, 1)) for _ in range(4)]
        await asyncio.sleep(0.01)
        gate.set()
        tiles = await asyncio.gather(*tasks)
        assert fetch.calls == [(5, 1, 1)]
        assert all(t is tiles[0] for t in tiles)

    @pytest.mark.asyncio
    async def test_raw_cache_shared_between_calls(self, dem_settings, make_fetch):
        """Raw and decoded requests for one tile should fetch once."""
        fetch = make_fetch(lambda z, x, y: 1)
        manager = LocalDemManager(dem_settings, fetch=fetch)
        await manager.fetch_tile(2, 0, 0)
        await manager.fetch_and_parse_tile(2, 0, 0)
        assert fetch.calls == [(2, 0, 0)]

    @pytest.mark.asyncio
    async def test_fetch_failure_propagates_and_retries(self, dem_settings, make_fetch):
        """A failed fetch should propagate and not stay cached."""
        fetch = make_fetch(lambda z, x, y: 1, failing={(1, 0, 0): FetchError('HTTP 500')})
        manager = LocalDemManager(dem_settings, fetch=fetch)
        with pytest.raises(FetchError):
            await manager.fetch_and_parse_tile(1, 0, 0)
        fetch.failing.clear()
        tile = await manager.fetch_and_parse_tile(1, 0, 0)
        assert tile.width == 4
        assert fetch.calls == [(1, 0, 0), (1, 0, 0)]

    @pytest.mark.asyncio
    async def test_decode_failure(self, dem_settings):
        """Malformed payloads should raise DecodeError."""
        manager = LocalDemManager(dem_settings, fetch=AsyncMock(return_value=b'\x00'))
        with pytest.raises(DecodeError):
            await manager.fetch_and_parse_tile(1, 0, 0)

    @pytest.mark.asyncio
    async def test_timer_marks(self, dem_settings, make_fetch):
        """A supplied timer should get fetch and decode marks and the tile URL."""
        manager = LocalDemManager(dem_settings, fetch=make_fetch(lambda z, x, y: 1))
        timer = Timer()
        await manager.fetch_and_parse_tile(4, 3, 2, timer)
        assert TIMING_FETCH in timer.marks
        assert TIMING_DECODE in timer.marks
        assert timer.urls == ['https://dem.test/4/3/2.bin']
        assert timer.fetched == ['https://dem.test/4/3/2.bin']

    @pytest.mark.asyncio
    async def test_image_decode_delegated(self, make_fetch):
        """Image payloads should go through decode_image when given."""
        from domain.models import DemSourceSettings

        settings = DemSourceSettings(url='https://dem.test/{z}/{x}/{y}.png')
        decoded = DemTile(1, 1, np.zeros(1, dtype=np.float32))
        decode_image = AsyncMock(return_value=decoded)
        manager = LocalDemManager(
            settings, fetch=make_fetch(lambda z, x, y: 0, png=True), decode_image=decode_image
        )
        assert await manager.fetch_and_parse_tile(1, 0, 0) is decoded
        decode_image.assert_awaited_once()
        assert decode_image.await_args.args[1] == 'terrarium'

    @pytest.mark.asyncio
    async def test_raw_decode_not_delegated(self, dem_settings, make_fetch):
        """raw encodings should decode inline even with decode_image set."""
        decode_image = AsyncMock()
        manager = LocalDemManager(
            dem_settings, fetch=make_fetch(lambda z, x, y: 3), decode_image=decode_image
        )
        tile = await manager.fetch_and_parse_tile(1, 0, 0)
        assert tile.data[0] == 3.0
        decode_image.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_clear_forces_refetch(self, dem_settings, make_fetch):
        """clear should drop cached tiles."""
        fetch = make_fetch(lambda z, x, y: 1)
        manager = LocalDemManager(dem_settings, fetch=fetch)
        await manager.fetch_and_parse_tile(1, 1, 1)
        assert await manager.clear() == 2
        await manager.fetch_and_parse_tile(1, 1, 1)
        assert len(fetch.calls) == 2

    @pytest.mark.asyncio
    async def test_default_fetcher_owns_session(self, dem_settings):
        """Without fetch the manager should create and close its own session."""
        session = AsyncMock()
        with patch('tiles.manager.make_http_session', return_value=session) as factory, \
             patch('tiles.fetcher.fetch_bytes', new=AsyncMock(return_value=b'x')) as fb:
            manager = LocalDemManager(dem_settings)
            assert await manager.fetch_tile(1, 0, 0) == b'x'
            await manager.close()
        factory.assert_called_once()
        fb.assert_awaited_once_with(session, 'https://dem.test/1/0/0.bin', timeout_s=5.0)
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self, dem_settings):
        """A session passed in by the caller should stay open."""
        session = AsyncMock()
        with patch('tiles.fetcher.fetch_bytes', new=AsyncMock(return_value=b'x')):
            manager = LocalDemManager(dem_settings, session=session)
            await manager.fetch_tile(1, 0, 0)
            await manager.close()
        session.close.assert_not_awaited()
