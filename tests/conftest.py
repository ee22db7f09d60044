"""
Shared pytest fixtures for tempstash tests.

This module provides:
- A file-backed SQLite URL per test (``tmp_path``), so pooled connections
  share one database
- Settings tuned for fast tests (no backoff, small dispatcher)
- A recording logger to assert on structured log events
- A connected ``Stash`` that is closed after the test

Usage:
    def test_something(stash, log):
        stash.put_sync(StashedItem(namespace="ns", data="x"))
        assert not log.events("stash_insert_retry")
"""

from __future__ import annotations

import threading
from collections.abc import Generator
from typing import Any

import pytest
import structlog

from tempstash.core.settings import StashSettings, clear_settings_cache
from tempstash.execution.retry import ConstantBackoff
from tempstash.stash import Stash


class RecordingLogger:
    """Structlog-shaped logger that keeps every call in memory."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def _record(self, level: str, event: str, **kw: Any) -> None:
        with self._lock:
            self.records.append((level, event, kw))

    def debug(self, event: str, **kw: Any) -> None:
        self._record("debug", event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._record("info", event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._record("warning", event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._record("error", event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        self._record("exception", event, **kw)

    def critical(self, event: str, **kw: Any) -> None:
        self._record("critical", event, **kw)

    def events(self, name: str) -> list[tuple[str, dict[str, Any]]]:
        """(level, fields) for every call with event *name*."""
        with self._lock:
            return [(level, kw) for level, event, kw in self.records if event == name]


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep host TEMPSTASH_* variables and structlog config out of tests."""
    for var in ("TEMPSTASH_URL", "TEMPSTASH_LOG_LEVEL", "TEMPSTASH_LOG_FORMAT"):
        monkeypatch.delenv(var, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()
    structlog.reset_defaults()


# =============================================================================
# Backend fixtures
# =============================================================================


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'stash.db'}"


@pytest.fixture
def settings(db_url: str) -> StashSettings:
    return StashSettings(
        url=db_url,
        retry_base_delay=0.0,
        workers=2,
        queue_size=64,
    )


@pytest.fixture
def log() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def stash(db_url: str, settings: StashSettings, log: RecordingLogger) -> Generator[Stash, None, None]:
    s = Stash.connect(db_url, logger=log, retry=ConstantBackoff(max_attempts=3, delay=0.0), settings=settings)
    yield s
    s.close()
