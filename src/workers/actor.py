"""
Bidirectional request/response actor over a message channel.

Both ends of a channel run an ``Actor``. Each one can call methods of the
other (``send``) and serves calls of the other from its own handler table.
Messages:

- ``{'type': 'request', 'id', 'method', 'args'}``
- ``{'type': 'response', 'id', 'result'}``
- ``{'type': 'error', 'id', 'error': {'kind', 'message'}}``
- ``{'type': 'cancel', 'id'}``

Ids are only unique per direction: responses are matched against this side's
pending table, cancels against this side's running table.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from typing import TYPE_CHECKING, Any

from shared.constants import MSG_CANCEL, MSG_ERROR, MSG_REQUEST, MSG_RESPONSE
from shared.errors import error_from_payload, error_to_payload

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from workers.channels import Channel, Message

logger = logging.getLogger(__name__)


class Actor:
    """
    One end of the actor protocol.

    Usage:
        actor = Actor('main', channel, {'decode_image': decode_image})
        actor.start()
        result = await actor.send('fetch_and_parse_tile', 1, 12, 2200, 1343)
        await actor.close()
    """

    def __init__(
        self,
        name: str,
        channel: Channel,
        handlers: Mapping[str, Callable[..., Awaitable[Any]]],
        *,
        on_orphan: Callable[[Any], None] | None = None,
    ) -> None:
        """
        Args:
            name: Label used in log messages.
            channel: This side of the channel.
            handlers: Methods the peer may call.
            on_orphan: Receives results of calls nobody waits for any more,
                to release what they hold (shared memory blocks).
        """
        self.name = name
        self._channel = channel
        self._handlers = dict(handlers)
        self._on_orphan = on_orphan
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._running: dict[int, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._reader: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start the reader loop in the background (idempotent)."""
        if self._reader is None:
            self._reader = asyncio.ensure_future(self.run())

    async def run(self) -> None:
        """Serve the channel until it closes."""
        # run() вызван напрямую: start() не должен запускать второй цикл чтения
        if self._reader is None:
            self._reader = asyncio.current_task()
        try:
            while True:
                message = await self._channel.recv()
                if message is None:
                    break
                self._dispatch(message)
        finally:
            self._shutdown()
        logger.debug('%s actor: channel closed', self.name)

    async def send(self, method: str, *args: Any) -> Any:
        """
        Call ``method`` on the other side and wait for its result.

        Cancelling the awaiting task sends a cancel message for this call;
        the peer aborts the work if it is still running.

        Raises:
            ConnectionError: the channel is closed.
            Exception: the error raised by the remote handler.
        """
        if self._closed:
            msg = f'{self.name} actor is closed'
            raise ConnectionError(msg)
        self.start()
        msg_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        try:
            await self._channel.send(
                {'type': MSG_REQUEST, 'id': msg_id, 'method': method, 'args': list(args)}
            )
            return await future
        except asyncio.CancelledError:
            if future.done() and not future.cancelled() and future.exception() is None:
                # ответ уже получен, но ждать его некому
                self._release(future.result())
            elif not self._closed:
                self._spawn(self._post({'type': MSG_CANCEL, 'id': msg_id}))
            raise
        finally:
            self._pending.pop(msg_id, None)

    def _dispatch(self, message: Message) -> None:
        kind = message.get('type')
        msg_id = message.get('id')
        if kind == MSG_REQUEST:
            task = asyncio.ensure_future(self._serve(message))
            self._running[msg_id] = task
        elif kind == MSG_CANCEL:
            task = self._running.pop(msg_id, None)
            if task is not None:
                logger.debug('%s actor: cancel #%s', self.name, msg_id)
                task.cancel()
        elif kind in (MSG_RESPONSE, MSG_ERROR):
            future = self._pending.get(msg_id)
            if future is None or future.done():
                # ответ пришёл после отмены вызова
                if kind == MSG_RESPONSE:
                    self._release(message.get('result'))
                return
            if kind == MSG_RESPONSE:
                future.set_result(message.get('result'))
            else:
                future.set_exception(error_from_payload(message.get('error', {})))
        else:
            logger.warning('%s actor: unknown message type %r', self.name, kind)

    def _release(self, result: Any) -> None:
        if self._on_orphan is None:
            return
        try:
            self._on_orphan(result)
        except Exception:
            logger.exception('%s actor: releasing an orphaned result failed', self.name)

    async def _serve(self, message: Message) -> None:
        msg_id = message['id']
        method = message.get('method', '')
        try:
            handler = self._handlers.get(method)
            if handler is None:
                msg = f'Unknown method: {method}'
                raise ValueError(msg)
            result = await handler(*message.get('args', ()))
        except asyncio.CancelledError:
            logger.debug('%s actor: %s #%s cancelled', self.name, method, msg_id)
            raise
        except Exception as e:
            logger.debug('%s actor: %s #%s failed: %s', self.name, method, msg_id, e)
            await self._post({'type': MSG_ERROR, 'id': msg_id, 'error': error_to_payload(e)})
        else:
            await self._post({'type': MSG_RESPONSE, 'id': msg_id, 'result': result})
        finally:
            self._running.pop(msg_id, None)

    async def _post(self, message: Message) -> None:
        if self._closed:
            return
        try:
            await self._channel.send(message)
        except ConnectionError as e:
            logger.warning('%s actor: could not send %s: %s', self.name, message.get('type'), e)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _shutdown(self) -> None:
        self._closed = True
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError(f'{self.name} actor channel closed'))
        for task in self._running.values():
            task.cancel()
        self._running.clear()

    async def close(self) -> None:
        """Close the channel and stop the reader loop."""
        self._closed = True
        self._channel.close()
        reader = self._reader
        if reader is not None and not reader.done():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._shutdown()
