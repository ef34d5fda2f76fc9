"""Process resource diagnostics."""

from __future__ import annotations

import logging
import threading

import psutil

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


def get_memory_info() -> dict[str, float | str]:
    """Resident size of this process and memory still available on the host."""
    try:
        rss = psutil.Process().memory_info().rss
        available = psutil.virtual_memory().available
    except psutil.Error as e:
        return {'error': f'Failed to get memory info: {e}'}
    return {
        'process_rss_mb': round(rss / _MB, 2),
        'system_available_mb': round(available / _MB, 2),
    }


def log_memory_usage(context: str = '') -> None:
    """Quick memory usage logging."""
    memory_info = get_memory_info()
    context_label = f' ({context})' if context else ''
    logger.info(
        'Memory usage%s: RSS=%sMB, Available=%sMB',
        context_label,
        memory_info.get('process_rss_mb', 'N/A'),
        memory_info.get('system_available_mb', 'N/A'),
    )
    logger.debug('Active threads: %d', threading.active_count())
