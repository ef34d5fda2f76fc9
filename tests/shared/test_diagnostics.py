"""Tests for shared.diagnostics helpers."""

import logging
from types import SimpleNamespace

import psutil

import shared.diagnostics as diagnostics


def test_get_memory_info_direct():
    info = diagnostics.get_memory_info()
    assert set(info) == {'process_rss_mb', 'system_available_mb'}


def test_log_memory_usage_direct(caplog):
    with caplog.at_level(logging.DEBUG, logger='shared.diagnostics'):
        diagnostics.log_memory_usage('test context')
    assert 'Memory usage (test context)' in caplog.text
    assert 'Active threads' in caplog.text


def test_get_memory_info_with_psutil(monkeypatch):
    """get_memory_info should convert psutil byte counts to MB."""

    class DummyProcess:
        def memory_info(self):
            return SimpleNamespace(rss=1024 * 1024, vms=2 * 1024 * 1024)

    monkeypatch.setattr(diagnostics.psutil, 'Process', lambda: DummyProcess())
    monkeypatch.setattr(
        diagnostics.psutil,
        'virtual_memory',
        lambda: SimpleNamespace(available=4 * 1024 * 1024, percent=60),
    )

    info = diagnostics.get_memory_info()

    assert info == {'process_rss_mb': 1.0, 'system_available_mb': 4.0}


def test_get_memory_info_psutil_error(monkeypatch, caplog):
    """psutil failures should be reported in the dict, not raised."""

    def broken():
        raise psutil.AccessDenied(pid=1)

    monkeypatch.setattr(diagnostics.psutil, 'Process', broken)
    info = diagnostics.get_memory_info()
    assert 'error' in info

    with caplog.at_level(logging.INFO, logger='shared.diagnostics'):
        diagnostics.log_memory_usage()
    assert 'RSS=N/AMB' in caplog.text
