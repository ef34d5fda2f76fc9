"""Tests for shared.errors module."""

import pytest

from shared.errors import (
    DecodeError,
    DemError,
    FetchError,
    RemoteError,
    TileTimeoutError,
    error_from_payload,
    error_to_payload,
)


class TestHierarchy:
    """Tests for the error classes."""

    def test_all_are_dem_errors(self):
        """Every tile failure should be catchable as DemError."""
        for cls in (DecodeError, FetchError, TileTimeoutError, RemoteError):
            assert issubclass(cls, DemError)

    def test_timeout_is_builtin_timeout(self):
        """TileTimeoutError should also be a TimeoutError."""
        assert issubclass(TileTimeoutError, TimeoutError)

    def test_fetch_error_fields(self):
        """FetchError should carry url and status."""
        err = FetchError('HTTP 404', url='https://x', status=404)
        assert (err.url, err.status, str(err)) == ('https://x', 404, 'HTTP 404')


class TestPayload:
    """Tests for error_to_payload/error_from_payload."""

    @pytest.mark.parametrize('cls', [DecodeError, FetchError, TileTimeoutError, ValueError])
    def test_known_kinds_rebuilt(self, cls):
        """Known kinds should come back as the same class and message."""
        restored = error_from_payload(error_to_payload(cls('boom')))
        assert type(restored) is cls
        assert str(restored) == 'boom'

    def test_fetch_error_keeps_url_and_status(self):
        """FetchError should come back with its url and status."""
        payload = error_to_payload(FetchError('HTTP 404', url='https://x/1/0/0', status=404))
        assert payload == {
            'kind': 'FetchError',
            'message': 'HTTP 404',
            'url': 'https://x/1/0/0',
            'status': 404,
        }
        restored = error_from_payload(payload)
        assert isinstance(restored, FetchError)
        assert (restored.url, restored.status) == ('https://x/1/0/0', 404)

    def test_fetch_error_without_status(self):
        """Transport failures carry only the url."""
        restored = error_from_payload(error_to_payload(FetchError('reset', url='https://x')))
        assert (restored.url, restored.status) == ('https://x', None)

    def test_unknown_kind(self):
        """Unknown kinds should become RemoteError naming the kind."""
        restored = error_from_payload(error_to_payload(KeyError('k')))
        assert isinstance(restored, RemoteError)
        assert str(restored).startswith('KeyError')

    def test_empty_payload(self):
        """A malformed payload should still give a RemoteError."""
        assert isinstance(error_from_payload({}), RemoteError)
