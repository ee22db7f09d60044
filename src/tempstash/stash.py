"""
The :class:`Stash` facade.

Owns the engine (a pooled backend handle), an explicit logger, a retry
strategy and the async dispatcher, and composes them into the public
operations.

Control flow:
    ::

        put_sync ──► marshal ──► RetryContext ──► insert_row
        put      ──► AsyncDispatcher ──► (marshal ──► RetryContext ──► insert_row)
                                          failures logged, never surfaced
        query    ──► compile_query ──► select_rows      (one attempt)
        drop     ──► delete_rows                        (one attempt)

Examples:
    >>> from tempstash import Stash, StashedItem, QueryFilter
    >>> with Stash.connect("sqlite:///scratch.db") as stash:
    ...     record_id = stash.put_sync(StashedItem(namespace="debug", key="run-1", data={"ok": True}))
    ...     stash.put(StashedItem(namespace="debug", key="run-2", data="fire and forget"))
    ...     stash.flush()
    ...     records = stash.query(QueryFilter(namespace="debug"))
"""

from __future__ import annotations

import threading
from typing import Any

from sqlalchemy.engine import Engine

from tempstash.core.errors import (
    RetryExhaustedError,
    SerializationError,
    StashClosedError,
    StashError,
    is_retryable,
)
from tempstash.core.logging import get_logger
from tempstash.core.settings import StashSettings
from tempstash.execution.context import Context
from tempstash.execution.dispatcher import AsyncDispatcher
from tempstash.execution.retry import ExponentialBackoff, RetryContext, RetryStrategy
from tempstash.models import QueryFilter, Record, StashedItem
from tempstash.query import LARGE_LIMIT_WARNING, compile_query
from tempstash.serialization import marshal
from tempstash.storage.backend import (
    create_stash_engine,
    delete_rows,
    ensure_schema,
    insert_row,
    mask_url,
    select_rows,
)


class Stash:
    """Client facade for namespaced scratch storage.

    Build one with :meth:`connect`; the constructor takes an already
    prepared engine and is mainly useful in tests.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        logger: Any | None = None,
        retry: RetryStrategy | None = None,
        settings: StashSettings | None = None,
    ):
        self._settings = settings or StashSettings()
        self._engine: Engine | None = engine
        self._log = logger or get_logger("tempstash")
        self._retry = retry or ExponentialBackoff(
            max_attempts=self._settings.retry_attempts,
            base_delay=self._settings.retry_base_delay,
        )
        self._dispatcher = AsyncDispatcher(
            workers=self._settings.workers,
            queue_size=self._settings.queue_size,
            logger=self._log,
        )
        self._close_lock = threading.Lock()

    @classmethod
    def connect(
        cls,
        url: str | None = None,
        *,
        logger: Any | None = None,
        retry: RetryStrategy | None = None,
        settings: StashSettings | None = None,
    ) -> Stash:
        """Connect, ensure the schema exists and return a ready stash.

        Args:
            url: SQLAlchemy database URL; falls back to ``settings.url``
                (``TEMPSTASH_URL``)
            logger: Logger override (structlog-style ``info(event, **kw)``)
            retry: Write retry strategy, default 3 attempts with jittered backoff
            settings: Pool, timeout and dispatcher configuration

        Raises:
            BackendConnectionError: backend unreachable or liveness ping failed
            SchemaError: the table or indices could not be created
        """
        settings = settings or StashSettings()
        url = url or settings.url
        if not url:
            raise StashError("no database URL given (pass url= or set TEMPSTASH_URL)")

        engine = create_stash_engine(url, settings)
        try:
            ensure_schema(engine, timeout=settings.schema_timeout)
        except StashError:
            engine.dispose()
            raise

        stash = cls(engine, logger=logger, retry=retry, settings=settings)
        stash._log.info("stash_connected", url=mask_url(url), max_connections=settings.max_connections)
        return stash

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def put(self, item: StashedItem, ctx: Context | None = None) -> None:
        """Fire-and-forget write.

        Returns immediately. Serialization and insert happen on a dispatcher
        worker; any failure is logged and the write is dropped, including a
        ``put`` on a closed stash.
        """
        engine = self._engine
        if engine is None:
            self._log.error("stash_put_rejected", reason="stash closed", namespace=item.namespace, key=item.key)
            return
        ctx = ctx or Context.background()

        def task() -> None:
            try:
                data = marshal(item.data)
            except SerializationError as exc:
                self._log.error(
                    "stash_marshal_failed",
                    namespace=item.namespace,
                    key=item.key,
                    name=item.name,
                    **exc.to_dict(),
                )
                return
            self._insert_with_retry(engine, ctx, item, data)

        self._dispatcher.submit(task, description="put", namespace=item.namespace, key=item.key)

    def put_sync(self, item: StashedItem, ctx: Context | None = None) -> str:
        """Write and wait for the outcome.

        Returns:
            The generated record id

        Raises:
            SerializationError: ``item.data`` cannot be encoded; nothing is inserted
            RetryExhaustedError: every insert attempt failed, or the backoff
                wait was cancelled; ``__cause__`` is the last failure
        """
        engine = self._require_engine("put_sync")
        ctx = ctx or Context.background()
        try:
            data = marshal(item.data)
        except SerializationError as exc:
            raise exc.with_context(operation="put_sync", namespace=item.namespace, key=item.key)
        return self._insert_with_retry(engine, ctx, item, data)

    def _insert_with_retry(self, engine: Engine, ctx: Context, item: StashedItem, data: str) -> str:
        def on_retry(attempt: int, error: BaseException, delay: float) -> None:
            self._log.warning(
                "stash_insert_retry",
                namespace=item.namespace,
                key=item.key,
                attempt=attempt,
                delay=round(delay, 3),
                elapsed=round(rc.elapsed_seconds, 3),
                error=str(error),
            )

        rc = RetryContext(self._retry, on_retry=on_retry)
        try:
            return rc.run(
                lambda c: insert_row(engine, c, item.namespace, item.name, item.key, data),
                ctx,
            )
        except Exception as exc:
            if rc.interrupted:
                reason = "cancelled during backoff"
            elif not is_retryable(exc):
                reason = "not retryable"
            else:
                reason = "all attempts failed"
            raise RetryExhaustedError(
                f"insert into {item.namespace!r}: {reason} after {rc.attempts} attempt(s): {exc}",
                attempts=rc.attempts,
                cause=exc,
            ).with_context(operation="insert", namespace=item.namespace, key=item.key) from exc

    # ------------------------------------------------------------------ #
    # Reads / deletes
    # ------------------------------------------------------------------ #

    def query(self, f: QueryFilter | None = None, ctx: Context | None = None) -> list[Record]:
        """Return records newest first. Single attempt, no retry.

        Raises:
            QueryError: the backend query failed
        """
        engine = self._require_engine("query")
        plan = compile_query(f)
        if plan.limit > LARGE_LIMIT_WARNING:
            self._log.warning("stash_query_large_limit", limit=plan.limit)
        return select_rows(engine, ctx or Context.background(), plan)

    def drop(self, namespace: str | None = None, ctx: Context | None = None) -> int:
        """Delete one namespace, or every record when *namespace* is empty.

        Returns:
            Number of records deleted

        Raises:
            DeleteError: the backend delete failed
        """
        engine = self._require_engine("drop")
        target = namespace or None
        deleted = delete_rows(engine, ctx or Context.background(), target)
        self._log.info("stash_dropped", namespace=target, scope="namespace" if target else "all", deleted=deleted)
        return deleted

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every accepted ``put`` has finished (or failed)."""
        return self._dispatcher.join(timeout)

    @property
    def closed(self) -> bool:
        return self._engine is None

    @property
    def engine(self) -> Engine:
        return self._require_engine("engine")

    def close(self, timeout: float | None = None) -> None:
        """Drain pending async writes and release the backend handle.

        A second call is a no-op.
        """
        with self._close_lock:
            engine, self._engine = self._engine, None
        if engine is None:
            return
        self._dispatcher.close(timeout)
        engine.dispose()
        self._log.info("stash_closed", **self._dispatcher.stats.to_dict())

    def _require_engine(self, operation: str) -> Engine:
        engine = self._engine
        if engine is None:
            raise StashClosedError(f"{operation}: stash is closed").with_context(operation=operation)
        return engine

    def __enter__(self) -> Stash:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        if self._engine is None:
            return "Stash(closed)"
        return f"Stash(url={mask_url(self._engine.url)!r})"


__all__ = ["Stash"]
