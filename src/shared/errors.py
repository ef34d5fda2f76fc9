"""
Error taxonomy for tile acquisition and decoding.

Cancellation is not part of this hierarchy: a caller that stops waiting sees
the regular ``asyncio.CancelledError``, which keeps "I stopped caring"
distinguishable from "it broke".
"""

from __future__ import annotations

from typing import Any


class DemError(Exception):
    """Base class for DEM tile failures."""


class DecodeError(DemError):
    """Malformed tile payload or unsupported encoding."""


class FetchError(DemError):
    """Network failure or non-success HTTP status."""

    def __init__(self, message: str, *, url: str | None = None, status: int | None = None):
        super().__init__(message)
        self.url = url
        self.status = status


class TileTimeoutError(DemError, TimeoutError):
    """A request exceeded its configured deadline."""


class RemoteError(DemError):
    """Error of an unknown kind raised on the other side of an actor channel."""


_REGISTRY: dict[str, type[Exception]] = {
    cls.__name__: cls
    for cls in (DemError, DecodeError, FetchError, TileTimeoutError, RemoteError, ValueError)
}

# Атрибуты FetchError, передаваемые через канал
_FIELDS = ('url', 'status')


def error_to_payload(exc: BaseException) -> dict[str, Any]:
    """Serialize an exception into a message-safe dict."""
    payload: dict[str, Any] = {'kind': type(exc).__name__, 'message': str(exc)}
    if isinstance(exc, FetchError):
        for field in _FIELDS:
            value = getattr(exc, field)
            if value is not None:
                payload[field] = value
    return payload


def error_from_payload(payload: dict[str, Any]) -> Exception:
    """Rebuild an exception from ``error_to_payload`` output."""
    kind = payload.get('kind', '')
    message = payload.get('message', '')
    cls = _REGISTRY.get(kind)
    if cls is None:
        return RemoteError(f'{kind}: {message}')
    if cls is FetchError:
        return FetchError(message, url=payload.get('url'), status=payload.get('status'))
    return cls(message)
