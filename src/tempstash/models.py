"""
Typed records for the stash.

``StashedItem`` is what callers submit, ``Record`` is what they read back,
``QueryFilter`` selects records. All three are immutable.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from tempstash.core.timestamps import ensure_utc


@dataclass(frozen=True, slots=True)
class StashedItem:
    """A payload to store.

    ``data`` may be any value; it is serialized by
    :func:`tempstash.serialization.marshal` before it reaches the backend.
    """

    namespace: str
    name: str = ""
    key: str = ""
    data: Any = ""


@dataclass(frozen=True, slots=True)
class Record:
    """A persisted item.

    Attributes:
        id: Globally unique identifier generated at insert time
        namespace: Logical partition, the unit of bulk deletion
        name: Free-form label
        key: Lookup key within the namespace
        data: Serialized payload
        created_at: UTC time assigned by the backend clock at insert
    """

    id: str
    namespace: str
    name: str
    key: str
    data: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["created_at"] = self.created_at.isoformat()
        return d


@dataclass(frozen=True, slots=True)
class QueryFilter:
    """Sparse query predicates.

    ``None`` means "no constraint on that dimension". Empty strings are
    treated the same as ``None``; a missing or non-positive ``limit`` means
    the default of 100. A naive ``since`` is read as UTC.
    """

    namespace: str | None = None
    key: str | None = None
    since: datetime | None = None
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.namespace == "":
            object.__setattr__(self, "namespace", None)
        if self.key == "":
            object.__setattr__(self, "key", None)
        if self.since is not None:
            object.__setattr__(self, "since", ensure_utc(self.since))
        if self.limit is not None and self.limit <= 0:
            object.__setattr__(self, "limit", None)


__all__ = ["StashedItem", "Record", "QueryFilter"]
