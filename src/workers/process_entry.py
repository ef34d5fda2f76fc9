"""
Точка входа фонового процесса декодирования и контуринга.

Запускается через ``multiprocessing`` (контекст ``spawn``). Процесс держит
собственные ``LocalDemManager`` и кэши; с основным процессом общается только
сообщениями актора по ``Pipe``.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from shared.constants import LOG_FORMAT

if TYPE_CHECKING:
    from multiprocessing.connection import Connection

    from tiles.fetcher import FetchFn
    from workers.channels import Channel

logger = logging.getLogger(__name__)


async def serve(channel: Channel, *, fetch: FetchFn | None = None) -> None:
    """
    Serve worker requests on ``channel`` until the primary side closes it.

    Args:
        channel: Worker end of the channel.
        fetch: Optional fetch primitive for every manager (default: HTTP).
    """
    # Импорт здесь: модули менеджеров сами импортируют этот модуль
    _actor = importlib.import_module('workers.actor')
    _dispatch = importlib.import_module('workers.dispatch')
    _manager = importlib.import_module('tiles.manager')
    _source = importlib.import_module('elevation.source')
    _diag = importlib.import_module('shared.diagnostics')
    _transfer = importlib.import_module('workers.transfer')

    def make_source(settings, decode_image):  # noqa: ANN001, ANN202
        manager = _manager.LocalDemManager(settings, fetch=fetch, decode_image=decode_image)
        return _source.DemTileSource(manager)

    dispatch = _dispatch.WorkerDispatch(make_source)
    actor = _actor.Actor(
        'worker', channel, dispatch.handlers(), on_orphan=_transfer.discard_payload
    )
    dispatch.bind(actor)
    _diag.log_memory_usage('worker started')
    try:
        await actor.run()
    finally:
        await dispatch.close()
        logger.info('Worker stopped')


def worker_process_main(conn: Connection) -> None:
    """Запускается в дочернем процессе через ``Process(target=...)``."""
    # Настроить sys.path: дочерний процесс не наследует PYTHONPATH автоматически
    src_dir = str(Path(__file__).resolve().parent.parent)
    if src_dir not in sys.path:
        sys.path.insert(0, src_dir)

    # stdout наследуется от основного процесса и занят JSON-результатом
    logging.basicConfig(
        level=logging.INFO,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    channels = importlib.import_module('workers.channels')
    try:
        asyncio.run(serve(channels.PipeChannel(conn)))
    except Exception:
        logger.exception('Worker process failed')
        raise
