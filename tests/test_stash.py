"""Tests for the ``Stash`` facade against a file-backed SQLite database."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import pytest

from tempstash import (
    BackendConnectionError,
    Context,
    DeadlineExceeded,
    InsertError,
    QueryError,
    QueryFilter,
    RetryExhaustedError,
    SerializationError,
    Stash,
    StashClosedError,
    StashedItem,
    StashError,
)
from tempstash.core.settings import StashSettings
from tempstash.core.timestamps import utc_now
from tempstash.execution.retry import ConstantBackoff
from tempstash.storage import backend


@dataclass
class Sample:
    A: int


def _put_spaced(stash: Stash, namespace: str, names: list[str], *, key: str = "") -> None:
    """Insert with a gap so created_at values differ at millisecond precision."""
    for name in names:
        stash.put_sync(StashedItem(namespace=namespace, name=name, key=key, data=name))
        time.sleep(0.01)


# =============================================================================
# Construction
# =============================================================================


class TestConnect:
    def test_connect_logs_masked_url(self, stash, log, db_url):
        ((level, fields),) = log.events("stash_connected")
        assert level == "info"
        assert fields["url"] == db_url
        assert fields["max_connections"] == 5

    def test_url_from_settings(self, settings, log):
        with Stash.connect(logger=log, settings=settings) as s:
            assert not s.closed

    def test_missing_url(self, log):
        with pytest.raises(StashError, match="no database URL"):
            Stash.connect(logger=log, settings=StashSettings(url=""))

    def test_unreachable_backend(self, tmp_path, log):
        url = f"sqlite:///{tmp_path / 'nope' / 'nested' / 'stash.db'}"
        with pytest.raises(BackendConnectionError):
            Stash.connect(url, logger=log)
        assert not log.events("stash_connected")

    def test_reconnect_keeps_data(self, db_url, settings, log):
        with Stash.connect(db_url, logger=log, settings=settings) as s:
            s.put_sync(StashedItem(namespace="ns", data="persisted"))
        with Stash.connect(db_url, logger=log, settings=settings) as s:
            (record,) = s.query(QueryFilter(namespace="ns"))
        assert record.data == "persisted"

    def test_repr(self, stash, db_url):
        assert repr(stash) == f"Stash(url={db_url!r})"
        stash.close()
        assert repr(stash) == "Stash(closed)"


# =============================================================================
# Writes
# =============================================================================


class TestPutSync:
    def test_round_trip(self, stash):
        before = utc_now()
        record_id = stash.put_sync(StashedItem(namespace="debug", name="run", key="k1", data={"ok": True}))
        assert uuid.UUID(record_id)

        (record,) = stash.query(QueryFilter(namespace="debug"))
        assert record.id == record_id
        assert (record.namespace, record.name, record.key) == ("debug", "run", "k1")
        assert record.data == '{"ok":true}'
        assert abs(record.created_at - before) < timedelta(seconds=5)

    def test_string_and_bytes_stored_verbatim(self, stash):
        stash.put_sync(StashedItem(namespace="ns", key="s", data="hello"))
        stash.put_sync(StashedItem(namespace="ns", key="b", data=b"raw"))
        stash.put_sync(StashedItem(namespace="ns", key="d", data=Sample(A=1)))
        data = {r.key: r.data for r in stash.query(QueryFilter(namespace="ns"))}
        assert data == {"s": "hello", "b": "raw", "d": '{"A":1}'}

    def test_defaults(self, stash):
        stash.put_sync(StashedItem(namespace="ns"))
        (record,) = stash.query()
        assert (record.name, record.key, record.data) == ("", "", "")

    def test_serialization_error_inserts_nothing(self, stash):
        with pytest.raises(SerializationError) as exc_info:
            stash.put_sync(StashedItem(namespace="ns", key="bad", data=object()))
        assert exc_info.value.context.operation == "put_sync"
        assert exc_info.value.context.namespace == "ns"
        assert stash.query() == []

    def test_distinct_ids_under_concurrency(self, stash):
        ids: list[str] = []
        lock = threading.Lock()

        def writer(n: int) -> None:
            for i in range(10):
                record_id = stash.put_sync(StashedItem(namespace="load", key=f"{n}-{i}", data=i))
                with lock:
                    ids.append(record_id)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ids) == 80
        assert len(set(ids)) == 80
        assert len(stash.query(QueryFilter(namespace="load", limit=1000))) == 80


class TestRetry:
    def test_exhausted_after_three_attempts(self, stash, log, monkeypatch):
        calls = []

        def failing_insert(engine, ctx, namespace, name, key, data):
            calls.append(1)
            raise InsertError(f"attempt {len(calls)} failed")

        monkeypatch.setattr("tempstash.stash.insert_row", failing_insert)

        with pytest.raises(RetryExhaustedError) as exc_info:
            stash.put_sync(StashedItem(namespace="ns", key="k", data="x"))

        err = exc_info.value
        assert len(calls) == 3
        assert err.attempts == 3
        assert str(err.__cause__) == "attempt 3 failed"
        assert err.last_error is err.__cause__
        assert err.context.namespace == "ns"
        assert [f["attempt"] for _, f in log.events("stash_insert_retry")] == [1, 2]

    def test_recovers_from_transient_failures(self, stash, monkeypatch):
        calls = []
        real_insert = backend.insert_row

        def flaky_insert(engine, ctx, namespace, name, key, data):
            calls.append(1)
            if len(calls) < 3:
                raise InsertError("database is locked")
            return real_insert(engine, ctx, namespace, name, key, data)

        monkeypatch.setattr("tempstash.stash.insert_row", flaky_insert)

        record_id = stash.put_sync(StashedItem(namespace="ns", data="eventually"))
        assert len(calls) == 3
        assert stash.query()[0].id == record_id

    def test_cancel_during_backoff(self, db_url, settings, log, monkeypatch):
        ctx = Context()
        calls = []

        def failing_insert(engine, c, namespace, name, key, data):
            calls.append(1)
            ctx.cancel()
            raise InsertError("down")

        monkeypatch.setattr("tempstash.stash.insert_row", failing_insert)

        with Stash.connect(db_url, logger=log, settings=settings, retry=ConstantBackoff(delay=30.0)) as s:
            start = time.monotonic()
            with pytest.raises(RetryExhaustedError, match="cancelled during backoff") as exc_info:
                s.put_sync(StashedItem(namespace="ns", data="x"), ctx)
            assert time.monotonic() - start < 5.0

        assert len(calls) == 1
        assert exc_info.value.attempts == 1
        assert str(exc_info.value.__cause__) == "down"

    def test_deadline_is_not_retried(self, stash, log, monkeypatch):
        calls = []

        def slow_insert(engine, ctx, namespace, name, key, data):
            calls.append(1)
            raise DeadlineExceeded("insert: deadline exceeded")

        monkeypatch.setattr("tempstash.stash.insert_row", slow_insert)

        with pytest.raises(RetryExhaustedError, match="not retryable after 1 attempt") as exc_info:
            stash.put_sync(StashedItem(namespace="ns", data="x"))

        assert len(calls) == 1
        assert isinstance(exc_info.value.__cause__, DeadlineExceeded)
        assert log.events("stash_insert_retry") == []

    def test_query_is_not_retried(self, stash, monkeypatch):
        calls = []

        def failing_select(engine, ctx, plan):
            calls.append(1)
            raise QueryError("query: no such table")

        monkeypatch.setattr("tempstash.stash.select_rows", failing_select)

        with pytest.raises(QueryError):
            stash.query()
        assert len(calls) == 1


class TestPut:
    def test_put_is_eventually_visible(self, stash):
        for i in range(25):
            stash.put(StashedItem(namespace="async", key=str(i), data={"i": i}))
        assert stash.flush(timeout=10) is True
        assert len(stash.query(QueryFilter(namespace="async"))) == 25

    def test_unencodable_value_inserts_nothing(self, stash, log):
        stash.put(StashedItem(namespace="ns", key="bad", data=object()))
        stash.flush(timeout=10)

        assert stash.query() == []
        ((level, fields),) = log.events("stash_marshal_failed")
        assert level == "error"
        assert fields["key"] == "bad"
        assert fields["error_type"] == "SerializationError"

    def test_insert_failure_is_logged_not_raised(self, stash, log, monkeypatch):
        def failing_insert(engine, ctx, namespace, name, key, data):
            raise InsertError("disk full")

        monkeypatch.setattr("tempstash.stash.insert_row", failing_insert)

        stash.put(StashedItem(namespace="ns", key="k", data="x"))
        stash.flush(timeout=10)

        ((level, fields),) = log.events("dispatch_task_failed")
        assert level == "error"
        assert fields["error_type"] == "RetryExhaustedError"
        assert fields["attempts"] == 3

    def test_put_returns_immediately(self, stash, monkeypatch):
        release = threading.Event()
        real_insert = backend.insert_row

        def slow_insert(*args):
            release.wait(5)
            return real_insert(*args)

        monkeypatch.setattr("tempstash.stash.insert_row", slow_insert)

        start = time.monotonic()
        stash.put(StashedItem(namespace="ns", data="x"))
        assert time.monotonic() - start < 1.0
        release.set()
        stash.flush(timeout=10)
        assert len(stash.query()) == 1


# =============================================================================
# Reads
# =============================================================================


class TestQuery:
    def test_newest_first(self, stash):
        _put_spaced(stash, "ns", ["first", "second", "third"])
        assert [r.name for r in stash.query(QueryFilter(namespace="ns"))] == ["third", "second", "first"]

    def test_default_limit_is_100(self, stash):
        for i in range(105):
            stash.put_sync(StashedItem(namespace="many", data=i))
        assert len(stash.query()) == 100
        assert len(stash.query(QueryFilter(limit=0))) == 100
        assert len(stash.query(QueryFilter(limit=5))) == 5
        assert len(stash.query(QueryFilter(limit=500))) == 105

    def test_filters(self, stash):
        stash.put_sync(StashedItem(namespace="a", key="k1", data="a1"))
        stash.put_sync(StashedItem(namespace="a", key="k2", data="a2"))
        stash.put_sync(StashedItem(namespace="b", key="k1", data="b1"))

        def data(f):
            return sorted(r.data for r in stash.query(f))

        assert data(QueryFilter(namespace="a")) == ["a1", "a2"]
        assert data(QueryFilter(key="k1")) == ["a1", "b1"]
        assert data(QueryFilter(namespace="a", key="k1")) == ["a1"]
        assert data(QueryFilter(namespace="", key="")) == ["a1", "a2", "b1"]
        assert data(None) == ["a1", "a2", "b1"]
        assert data(QueryFilter(namespace="missing")) == []

    def test_since_excludes_older(self, stash):
        stash.put_sync(StashedItem(namespace="ns", name="old"))
        time.sleep(0.05)
        since = utc_now()
        time.sleep(0.01)
        stash.put_sync(StashedItem(namespace="ns", name="new"))

        records = stash.query(QueryFilter(namespace="ns", since=since))
        assert [r.name for r in records] == ["new"]
        assert all(r.created_at >= since for r in records)

    def test_since_before_year_1000(self, stash):
        stash.put_sync(StashedItem(namespace="ns", name="now"))
        records = stash.query(QueryFilter(since=datetime(500, 1, 1, tzinfo=UTC)))
        assert [r.name for r in records] == ["now"]

    def test_since_in_future(self, stash):
        stash.put_sync(StashedItem(namespace="ns"))
        assert stash.query(QueryFilter(since=utc_now() + timedelta(seconds=60))) == []

    def test_large_limit_warns(self, stash, log):
        stash.query(QueryFilter(limit=20_000))
        ((level, fields),) = log.events("stash_query_large_limit")
        assert level == "warning"
        assert fields["limit"] == 20_000


# =============================================================================
# Deletes
# =============================================================================


class TestDrop:
    def test_drop_namespace(self, stash, log):
        for ns in ("a", "a", "b"):
            stash.put_sync(StashedItem(namespace=ns))
        assert stash.drop("a") == 2
        assert [r.namespace for r in stash.query()] == ["b"]

        ((_, fields),) = log.events("stash_dropped")
        assert fields == {"namespace": "a", "scope": "namespace", "deleted": 2}

    @pytest.mark.parametrize("target", ["", None])
    def test_drop_everything(self, stash, target):
        for ns in ("a", "b", "c"):
            stash.put_sync(StashedItem(namespace=ns))
        assert stash.drop(target) == 3
        assert stash.query() == []

    def test_drop_missing_namespace(self, stash):
        assert stash.drop("nothing-here") == 0


# =============================================================================
# Lifecycle
# =============================================================================


class TestClose:
    def test_close_is_idempotent(self, stash, log):
        stash.close()
        stash.close()
        assert stash.closed
        assert len(log.events("stash_closed")) == 1

    def test_operations_after_close(self, stash):
        stash.close()
        with pytest.raises(StashClosedError):
            stash.put_sync(StashedItem(namespace="ns"))
        with pytest.raises(StashClosedError):
            stash.query()
        with pytest.raises(StashClosedError):
            stash.drop("ns")
        with pytest.raises(StashClosedError):
            _ = stash.engine

    def test_put_after_close_is_logged(self, stash, log):
        stash.close()
        stash.put(StashedItem(namespace="ns", key="late"))
        ((level, fields),) = log.events("stash_put_rejected")
        assert level == "error"
        assert fields["key"] == "late"

    def test_close_drains_pending_puts(self, db_url, settings, log):
        s = Stash.connect(db_url, logger=log, settings=settings)
        for i in range(30):
            s.put(StashedItem(namespace="drain", data=i))
        s.close()

        with Stash.connect(db_url, logger=log, settings=settings) as again:
            assert len(again.query(QueryFilter(namespace="drain"))) == 30

    def test_context_manager(self, db_url, settings, log):
        with Stash.connect(db_url, logger=log, settings=settings) as s:
            pass
        assert s.closed
