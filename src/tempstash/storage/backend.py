"""Backend collaborator: engine factory, schema setup and the three statements.

Every function takes the shared :class:`~sqlalchemy.engine.Engine` (a
thread-safe connection pool) and a :class:`~tempstash.execution.context.Context`.
The context is checked before each statement so a cancelled or expired
operation never reaches the database, and a statement issued under a
deadline is abandoned with :class:`~tempstash.core.errors.DeadlineExceeded`
once that deadline passes.

Pool defaults (see :class:`~tempstash.core.settings.StashSettings`):
    - ``pool_size=2`` idle connections, ``max_overflow=3`` (5 open at most)
    - ``pool_recycle=300`` seconds connection lifetime ceiling
    - ``pool_pre_ping`` on checkout
    - a ``SELECT 1`` liveness ping at connect time, bounded by
      ``connect_timeout``

Supported URLs are whatever SQLAlchemy supports. ``created_at`` defaults
are rendered for SQLite (including libSQL/Turso) and PostgreSQL.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, TypeVar

from sqlalchemy import create_engine, delete, event, insert, select, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.engine.url import URL
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from tempstash.core.errors import (
    BackendConnectionError,
    DeleteError,
    InsertError,
    QueryError,
    SchemaError,
)
from tempstash.core.settings import StashSettings
from tempstash.core.timestamps import from_storage
from tempstash.execution.context import Context
from tempstash.models import Record
from tempstash.query import QueryPlan
from tempstash.storage.tables import StashBase, stash_table

T = TypeVar("T")

# How often a statement running under a deadline re-checks its context.
_POLL_INTERVAL = 0.05


def mask_url(url: str | URL) -> str:
    """Render a database URL with its password hidden."""
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return "<invalid url>"


def _is_memory_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def create_stash_engine(url: str, settings: StashSettings | None = None) -> Engine:
    """Create the pooled engine and verify the backend is reachable.

    Raises:
        BackendConnectionError: bad URL, missing driver, or failed liveness ping
    """
    settings = settings or StashSettings()
    masked = mask_url(url)

    try:
        sa_url = make_url(url)
        engine = _build_engine(sa_url, settings)
    except (ArgumentError, ImportError, SQLAlchemyError) as exc:
        raise BackendConnectionError(f"open {masked}: {exc}", cause=exc).with_context(
            operation="connect", url=masked
        ) from exc

    try:
        _ping(engine, settings.connect_timeout)
    except Exception as exc:
        engine.dispose()
        raise BackendConnectionError(f"ping {masked}: {exc}", cause=exc).with_context(
            operation="connect", url=masked
        ) from exc

    return engine


def _build_engine(url: URL, settings: StashSettings) -> Engine:
    kwargs: dict[str, Any] = {}

    if url.get_backend_name() == "sqlite" and url.get_driver_name() == "pysqlite":
        kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.connect_timeout,
        }

    if _is_memory_sqlite(url):
        # One shared connection, otherwise every pooled connection sees its own empty database.
        kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    engine = create_engine(
        url,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_recycle=settings.pool_recycle,
        pool_timeout=settings.connect_timeout,
        pool_pre_ping=True,
        **kwargs,
    )

    if url.get_backend_name() == "sqlite" and url.get_driver_name() == "pysqlite":

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


def _ping(engine: Engine, timeout: float) -> None:
    """Run ``SELECT 1`` in a helper thread and give up after *timeout* seconds."""

    def select_one() -> None:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tempstash-ping")
    try:
        future = pool.submit(select_one)
        try:
            future.result(timeout=timeout)
        except FutureTimeout as exc:
            raise TimeoutError(f"liveness ping timed out after {timeout}s") from exc
    finally:
        # Do not wait for a hung ping thread.
        pool.shutdown(wait=False)


def ensure_schema(engine: Engine, timeout: float | None = None) -> None:
    """Create the ``stash`` table and its indices if absent (idempotent).

    Raises:
        SchemaError: DDL failed or did not finish within *timeout*
    """

    def create() -> None:
        StashBase.metadata.create_all(engine, checkfirst=True)

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tempstash-schema")
    try:
        future = pool.submit(create)
        future.result(timeout=timeout)
    except FutureTimeout as exc:
        raise SchemaError(f"ensure schema: timed out after {timeout}s", cause=exc).with_context(
            operation="ensure_schema"
        ) from exc
    except SQLAlchemyError as exc:
        raise SchemaError(f"ensure schema: {exc}", cause=exc).with_context(operation="ensure_schema") from exc
    finally:
        pool.shutdown(wait=False)


def _bounded(ctx: Context, operation: str, fn: Callable[[], T]) -> T:
    """Run one statement, giving up once *ctx* is cancelled or past its deadline.

    Without a deadline the statement runs on the calling thread. With one it
    runs on a helper thread while the caller polls the context; an abandoned
    statement runs to completion in the background and its outcome is discarded.
    """
    ctx.check(operation)
    if ctx.deadline is None:
        return fn()

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"tempstash-{operation}")
    try:
        future = pool.submit(fn)
        while True:
            try:
                return future.result(timeout=min(ctx.remaining() or 0.0, _POLL_INTERVAL))
            except FutureTimeout:
                ctx.check(operation)
    finally:
        pool.shutdown(wait=False)


def insert_row(engine: Engine, ctx: Context, namespace: str, name: str, key: str, data: str) -> str:
    """Insert one record and return its generated id."""
    record_id = str(uuid.uuid4())
    stmt = insert(stash_table).values(
        id=record_id,
        namespace=namespace,
        name=name,
        key=key,
        data=data,
    )

    def run() -> None:
        with engine.begin() as conn:
            conn.execute(stmt)

    try:
        _bounded(ctx, "insert", run)
    except SQLAlchemyError as exc:
        raise InsertError(f"insert: {exc}", cause=exc).with_context(
            operation="insert", namespace=namespace, key=key
        ) from exc
    return record_id


def select_rows(engine: Engine, ctx: Context, plan: QueryPlan) -> list[Record]:
    """Execute a compiled plan and map rows to records, in backend order."""
    stmt = select(
        stash_table.c.id,
        stash_table.c.namespace,
        stash_table.c.name,
        stash_table.c.key,
        stash_table.c.data,
        stash_table.c.created_at,
    )
    for p in plan.predicates:
        column = stash_table.c[p.column]
        stmt = stmt.where(column == p.value if p.op == "=" else column >= p.value)

    order_column = stash_table.c[plan.order_by[0]]
    stmt = stmt.order_by(order_column.desc() if plan.order_by[1] == "desc" else order_column.asc())
    stmt = stmt.limit(plan.limit)

    def run() -> list[Any]:
        with engine.connect() as conn:
            return conn.execute(stmt).all()

    try:
        rows = _bounded(ctx, "query", run)
    except SQLAlchemyError as exc:
        raise QueryError(f"query: {exc}", cause=exc).with_context(
            operation="query", plan=plan.describe()
        ) from exc

    try:
        return [
            Record(
                id=row.id,
                namespace=row.namespace,
                name=row.name,
                key=row.key,
                data=row.data,
                created_at=from_storage(row.created_at),
            )
            for row in rows
        ]
    except ValueError as exc:
        raise QueryError(f"scan: bad created_at value: {exc}", cause=exc).with_context(operation="query") from exc


def delete_rows(engine: Engine, ctx: Context, namespace: str | None) -> int:
    """Delete a namespace, or every record when *namespace* is None."""
    stmt = delete(stash_table)
    if namespace is not None:
        stmt = stmt.where(stash_table.c.namespace == namespace)

    def run() -> int:
        with engine.begin() as conn:
            return conn.execute(stmt).rowcount

    try:
        deleted = _bounded(ctx, "delete", run)
    except SQLAlchemyError as exc:
        raise DeleteError(f"delete: {exc}", cause=exc).with_context(
            operation="delete", namespace=namespace
        ) from exc
    return max(deleted, 0)


__all__ = [
    "create_stash_engine",
    "ensure_schema",
    "insert_row",
    "select_rows",
    "delete_rows",
    "mask_url",
]
