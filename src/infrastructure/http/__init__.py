"""HTTP client infrastructure."""
from infrastructure.http.client import fetch_bytes, make_http_session

__all__ = [
    'fetch_bytes',
    'make_http_session',
]
