"""In-memory LRU cache of shared in-flight results.

This module provides AsyncLRUCache: every key maps to one asyncio task whose
result is shared by all callers asking for that key while it runs and after
it completes. Nothing is persisted.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Generic, TypeVar

from shared.errors import TileTimeoutError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

K = TypeVar('K')
V = TypeVar('V')


@dataclass
class CacheStats:
    """Counters of one cache instance."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    aborted: int = 0


@dataclass
class _Entry(Generic[V]):
    task: asyncio.Task[V]
    # Сколько вызывающих сейчас ждут результат
    waiting: int = 0


class AsyncLRUCache(Generic[K, V]):
    """Bounded cache of deduplicated async results.

    Features:
    - One underlying task per key, shared by concurrent callers
    - Per-caller timeout and cancellation; the task is aborted only when its
      last waiting caller gives up
    - Failed or cancelled results are dropped, so the next call retries
    - LRU eviction on insert, promotion on every hit and on completion

    Usage:
        cache = AsyncLRUCache(max_size=100, name='tiles')
        tile = await cache.get(key, lambda: load(key), timeout=10.0)
    """

    def __init__(self, max_size: int, *, name: str = 'cache') -> None:
        """Initialize the cache.

        Args:
            max_size: Maximum number of resident entries (>= 1).
            name: Label used in log messages.
        """
        if max_size < 1:
            msg = f'max_size must be >= 1, got {max_size}'
            raise ValueError(msg)
        self.max_size = max_size
        self.name = name
        self.stats = CacheStats()
        self._items: OrderedDict[K, _Entry[V]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def keys(self) -> list[K]:
        """Resident keys, least recently used first."""
        return list(self._items)

    async def get(
        self,
        key: K,
        supplier: Callable[[], Awaitable[V]],
        timeout: float | None = None,
    ) -> V:
        """Return the shared result for ``key``, starting ``supplier`` on a miss.

        Args:
            key: Cache key.
            supplier: Zero-argument coroutine factory producing the value.
            timeout: Seconds this caller is willing to wait, None for no limit.

        Raises:
            TileTimeoutError: this caller's timeout elapsed first.
            asyncio.CancelledError: this caller was cancelled.
            Exception: whatever the supplier raised.
        """
        entry = self._items.get(key)
        if entry is None:
            self.stats.misses += 1
            task = asyncio.ensure_future(supplier())
            entry = _Entry(task)
            self._items[key] = entry
            task.add_done_callback(partial(self._on_done, key, entry))
            logger.debug('%s miss: %s', self.name, key)
            self._prune()
        else:
            self.stats.hits += 1
            self._items.move_to_end(key)
            logger.debug('%s hit: %s', self.name, key)

        entry.waiting += 1
        shared = asyncio.shield(entry.task)
        try:
            if timeout is None:
                result = await shared
            else:
                result = await asyncio.wait_for(shared, timeout)
        except asyncio.CancelledError:
            self._detach(key, entry)
            raise
        except asyncio.TimeoutError:
            if entry.task.done():
                entry.waiting -= 1
                raise
            self._detach(key, entry)
            msg = f'{self.name}: {key} timed out after {timeout}s'
            raise TileTimeoutError(msg) from None
        except Exception:
            entry.waiting -= 1
            raise
        entry.waiting -= 1
        return result

    def _detach(self, key: K, entry: _Entry[V]) -> None:
        entry.waiting -= 1
        if entry.waiting > 0 or entry.task.done():
            return
        # последний ожидающий ушёл: прерываем загрузку
        self.stats.aborted += 1
        logger.debug('%s abort: %s', self.name, key)
        entry.task.cancel()
        self._discard(key, entry)

    def _discard(self, key: K, entry: _Entry[V]) -> None:
        if self._items.get(key) is entry:
            del self._items[key]

    def _on_done(self, key: K, entry: _Entry[V], task: asyncio.Task[V]) -> None:
        if task.cancelled() or task.exception() is not None:
            self._discard(key, entry)
            return
        if self._items.get(key) is entry:
            self._items.move_to_end(key)

    def _prune(self) -> None:
        while len(self._items) > self.max_size:
            key, _ = self._items.popitem(last=False)
            self.stats.evictions += 1
            logger.debug('%s evict: %s', self.name, key)

    def clear(self) -> int:
        """Drop every entry and cancel work still in flight.

        Returns:
            Number of entries dropped.
        """
        count = len(self._items)
        entries = list(self._items.values())
        self._items.clear()
        for entry in entries:
            if not entry.task.done():
                entry.task.cancel()
        if count:
            logger.info('%s cleared: %d entries dropped', self.name, count)
        return count
