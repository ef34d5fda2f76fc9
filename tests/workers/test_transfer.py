"""Tests for workers.transfer module."""

from multiprocessing.shared_memory import SharedMemory

import numpy as np
import pytest

from dem.decoder import DemTile
from workers.transfer import discard_payload, pack_tile, unpack_tile


def sample_tile() -> DemTile:
    return DemTile(3, 2, np.array([0.0, -1.5, 8848.0, 12.25, -430.0, 1.0], dtype=np.float32))


class TestPackTile:
    """Tests for pack_tile/unpack_tile functions."""

    def test_small_tile_inline(self):
        """Small buffers should travel inline as bytes."""
        payload = pack_tile(sample_tile())
        assert 'data' in payload
        assert 'shm' not in payload
        assert payload['size'] == 6 * 4

        tile = unpack_tile(payload)
        assert (tile.width, tile.height) == (3, 2)
        np.testing.assert_array_equal(tile.data, sample_tile().data)

    def test_large_tile_via_shared_memory(self):
        """Buffers above the threshold should go through SharedMemory."""
        payload = pack_tile(sample_tile(), shm_min_bytes=0)
        assert 'shm' in payload
        assert 'data' not in payload
        name = payload['shm']

        tile = unpack_tile(payload)
        np.testing.assert_array_equal(tile.data, sample_tile().data)
        # блок освобождён читателем
        with pytest.raises(FileNotFoundError):
            SharedMemory(name=name, create=False)

    def test_unpacked_tile_is_independent(self):
        """The unpacked tile should be read-only and not alias the payload."""
        payload = pack_tile(sample_tile())
        tile = unpack_tile(payload)
        assert tile.data.dtype == np.float32
        assert not tile.data.flags.writeable


class TestDiscardPayload:
    """Tests for discard_payload function."""

    @pytest.mark.parametrize('wrap', [False, True])
    def test_releases_shared_memory(self, wrap):
        """A bare payload or a reply holding one should free its block."""
        payload = pack_tile(sample_tile(), shm_min_bytes=0)
        discard_payload({'tile': payload, 'timing': {}} if wrap else payload)
        with pytest.raises(FileNotFoundError):
            SharedMemory(name=payload['shm'], create=False)

    def test_already_released(self):
        """Discarding twice should be harmless."""
        payload = pack_tile(sample_tile(), shm_min_bytes=0)
        discard_payload(payload)
        discard_payload(payload)

    @pytest.mark.parametrize('result', [None, 3, {'isolines': {}}, {'data': b'x'}])
    def test_ignores_other_results(self, result):
        """Results without shared memory should be left alone."""
        discard_payload(result)
