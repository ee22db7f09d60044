"""tempstash.storage -- SQLAlchemy table definition and backend statements."""

from tempstash.storage.backend import (
    create_stash_engine,
    delete_rows,
    ensure_schema,
    insert_row,
    mask_url,
    select_rows,
)
from tempstash.storage.tables import StashBase, StashRow, stash_table

__all__ = [
    "StashBase",
    "StashRow",
    "stash_table",
    "create_stash_engine",
    "ensure_schema",
    "insert_row",
    "select_rows",
    "delete_rows",
    "mask_url",
]
