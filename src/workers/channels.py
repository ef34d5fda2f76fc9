"""
Message channels between the primary process and the background worker.

A channel carries plain picklable dicts in both directions. ``recv`` returns
None once the channel is closed (by either side), which ends the reader loop
of the actor sitting on top of it.
"""

from __future__ import annotations

import asyncio
import logging
import pickle
from typing import TYPE_CHECKING, Any, Protocol

from shared.constants import CHANNEL_POLL_INTERVAL_S

if TYPE_CHECKING:
    from multiprocessing.connection import Connection

logger = logging.getLogger(__name__)

Message = dict[str, Any]

_CLOSED = object()


class Channel(Protocol):
    async def send(self, message: Message) -> None: ...

    async def recv(self) -> Message | None: ...

    def close(self) -> None: ...


class QueueChannel:
    """
    In-process channel over a pair of asyncio queues.

    Messages are pickled on the way through, so nothing is shared between
    the two ends, same as across a process boundary.
    """

    def __init__(self, inbox: asyncio.Queue, outbox: asyncio.Queue) -> None:
        self._inbox = inbox
        self._outbox = outbox
        self._closed = False

    @classmethod
    def pair(cls) -> tuple[QueueChannel, QueueChannel]:
        a: asyncio.Queue = asyncio.Queue()
        b: asyncio.Queue = asyncio.Queue()
        return cls(a, b), cls(b, a)

    async def send(self, message: Message) -> None:
        if self._closed:
            msg = 'Channel is closed'
            raise ConnectionError(msg)
        await self._outbox.put(pickle.dumps(message))

    async def recv(self) -> Message | None:
        if self._closed:
            return None
        item = await self._inbox.get()
        if item is _CLOSED:
            self._closed = True
            return None
        return pickle.loads(item)  # noqa: S301

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # разбудить и свой читатель, и читатель на другой стороне
        self._inbox.put_nowait(_CLOSED)
        self._outbox.put_nowait(_CLOSED)


class PipeChannel:
    """Channel over one end of a duplex ``multiprocessing.Pipe``."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn
        self._send_lock = asyncio.Lock()
        self._closed = False

    async def send(self, message: Message) -> None:
        if self._closed:
            msg = 'Channel is closed'
            raise ConnectionError(msg)
        async with self._send_lock:
            try:
                await asyncio.to_thread(self._conn.send, message)
            except (OSError, ValueError) as e:
                msg = f'Pipe send failed: {e}'
                raise ConnectionError(msg) from e

    async def recv(self) -> Message | None:
        while not self._closed:
            try:
                ready = await asyncio.to_thread(self._conn.poll, CHANNEL_POLL_INTERVAL_S)
                if ready:
                    return await asyncio.to_thread(self._conn.recv)
            except (EOFError, OSError):
                logger.debug('Pipe closed by peer')
                self._closed = True
        return None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._conn.close()
