"""
Transferable payloads for decoded tiles.

Small sample buffers travel inline as bytes. Big ones are written into a
``SharedMemory`` block and only the block name crosses the channel (~100
bytes); the reader copies the samples out and unlinks the block.
"""

from __future__ import annotations

import logging
import time
from multiprocessing.shared_memory import SharedMemory
from typing import Any

import numpy as np

from dem.decoder import DemTile
from shared.constants import TRANSFER_SHM_MIN_BYTES

logger = logging.getLogger(__name__)

TilePayload = dict[str, Any]


def _write_to_shm(data: bytes) -> str:
    """Записать bytes в новый SharedMemory блок, вернуть имя."""
    shm = SharedMemory(create=True, size=len(data))
    shm.buf[: len(data)] = data
    name = shm.name
    shm.close()  # unlink делает читатель
    return name


def _read_from_shm(name: str, size: int) -> bytes:
    """Прочитать bytes из SharedMemory и освободить блок."""
    shm = SharedMemory(name=name, create=False)
    data = bytes(shm.buf[:size])
    shm.close()
    shm.unlink()
    return data


def pack_tile(tile: DemTile, *, shm_min_bytes: int = TRANSFER_SHM_MIN_BYTES) -> TilePayload:
    """Turn a DemTile into a picklable payload."""
    data = np.ascontiguousarray(tile.data, dtype='<f4').tobytes()
    payload: TilePayload = {'width': tile.width, 'height': tile.height, 'size': len(data)}
    if len(data) >= shm_min_bytes:
        t0 = time.monotonic()
        payload['shm'] = _write_to_shm(data)
        logger.debug(
            'pack_tile: %dx%d → shm[%s] %.1f MB in %.3f sec',
            tile.width,
            tile.height,
            payload['shm'],
            len(data) / 1e6,
            time.monotonic() - t0,
        )
    else:
        payload['data'] = data
    return payload


def unpack_tile(payload: TilePayload) -> DemTile:
    """Rebuild a DemTile from ``pack_tile`` output (consumes shared memory)."""
    if 'shm' in payload:
        data = _read_from_shm(payload['shm'], payload['size'])
    else:
        data = payload['data']
    samples = np.frombuffer(data, dtype='<f4').astype(np.float32)
    return DemTile(payload['width'], payload['height'], samples)


def discard_payload(result: Any) -> None:
    """Free the shared memory of a reply that will never be unpacked.

    Accepts a bare tile payload or a reply dict carrying one under ``tile``.
    """
    if not isinstance(result, dict):
        return
    payload = result.get('tile', result)
    if not isinstance(payload, dict) or 'shm' not in payload:
        return
    try:
        shm = SharedMemory(name=payload['shm'], create=False)
    except FileNotFoundError:
        return
    shm.close()
    shm.unlink()
    logger.debug('discard_payload: released shm[%s]', payload['shm'])
