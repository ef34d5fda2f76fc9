"""Shared utilities and helpers."""
from shared.diagnostics import log_memory_usage
from shared.errors import DecodeError, DemError, FetchError, RemoteError, TileTimeoutError

__all__ = [
    'DecodeError',
    'DemError',
    'FetchError',
    'RemoteError',
    'TileTimeoutError',
    'log_memory_usage',
]
