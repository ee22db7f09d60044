"""SQLAlchemy 2.0 table definition for the ``stash`` relation.

One table, four payload columns plus id and creation time::

    stash(id TEXT PK, namespace TEXT, name TEXT DEFAULT '', key TEXT DEFAULT '',
          data TEXT DEFAULT '', created_at TEXT DEFAULT <now, UTC>)

``created_at`` is text in the ``2025-01-02T03:04:05.678Z`` format so that
string comparison and ordering match chronological order on every backend.
Its default is rendered per dialect by :class:`utc_now_iso`.

Usage::

    from tempstash.storage.tables import StashBase
    StashBase.metadata.create_all(engine)
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Index, Text
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.functions import FunctionElement


class utc_now_iso(FunctionElement):  # noqa: N801
    """Current UTC time as ISO-8601 text with milliseconds and a ``Z`` suffix."""

    type = Text()
    inherit_cache = True
    name = "utc_now_iso"


@compiles(utc_now_iso)
def _utc_now_iso_sqlite(element: Any, compiler: Any, **kw: Any) -> str:
    return "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"


@compiles(utc_now_iso, "postgresql")
def _utc_now_iso_postgresql(element: Any, compiler: Any, **kw: Any) -> str:
    return "to_char(now() AT TIME ZONE 'UTC', 'YYYY-MM-DD\"T\"HH24:MI:SS.MS\"Z\"')"


class StashBase(DeclarativeBase):
    """Declarative base; ``str`` maps to ``Text`` everywhere."""

    type_annotation_map = {
        str: Text,
    }


class StashRow(StashBase):
    __tablename__ = "stash"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    namespace: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    key: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    data: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    created_at: Mapped[str] = mapped_column(Text, nullable=False, server_default=utc_now_iso())

    __table_args__ = (
        Index("idx_stash_namespace", "namespace"),
        Index("idx_stash_key", "namespace", "key"),
    )


stash_table = StashRow.__table__

__all__ = ["StashBase", "StashRow", "stash_table", "utc_now_iso"]
