"""
Filter-to-query compiler.

:func:`compile_query` turns a sparse :class:`~tempstash.models.QueryFilter`
into a :class:`QueryPlan`: an ordered list of predicates, a fixed ordering
and a row limit. It performs no I/O; the backend renders the plan into SQL.

Rules:
    - start from every row
    - ``namespace = ?`` only when the filter sets a namespace
    - ``key = ?`` only when the filter sets a key
    - ``created_at >= ?`` only when the filter sets ``since``
    - always ``ORDER BY created_at DESC``
    - always ``LIMIT``: the filter's limit when positive, else 100

There is no maximum limit. A very large caller-supplied limit is honoured
as given; callers own that resource risk.

Examples:
    >>> plan = compile_query(QueryFilter(namespace="ns1", limit=5))
    >>> [(p.column, p.op, p.value) for p in plan.predicates]
    [('namespace', '=', 'ns1')]
    >>> plan.order_by, plan.limit
    (('created_at', 'desc'), 5)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from tempstash.core.timestamps import ceil_to_millisecond, to_storage
from tempstash.models import QueryFilter

DEFAULT_LIMIT = 100
LARGE_LIMIT_WARNING = 10_000

Column = Literal["namespace", "key", "created_at"]
Operator = Literal["=", ">="]


@dataclass(frozen=True, slots=True)
class Predicate:
    column: Column
    op: Operator
    value: str


@dataclass(frozen=True, slots=True)
class QueryPlan:
    """Backend-neutral read plan against the ``stash`` relation."""

    predicates: tuple[Predicate, ...] = ()
    order_by: tuple[str, str] = ("created_at", "desc")
    limit: int = DEFAULT_LIMIT

    @property
    def is_unfiltered(self) -> bool:
        return not self.predicates

    def describe(self) -> str:
        """SQL-like rendering for logs and debugging."""
        where = " AND ".join(f"{p.column} {p.op} {p.value!r}" for p in self.predicates) or "1=1"
        column, direction = self.order_by
        return f"WHERE {where} ORDER BY {column} {direction.upper()} LIMIT {self.limit}"


def compile_query(f: QueryFilter | None = None) -> QueryPlan:
    """Compile a filter into a deterministic, bounded, ordered plan."""
    f = f or QueryFilter()
    predicates: list[Predicate] = []

    if f.namespace:
        predicates.append(Predicate("namespace", "=", f.namespace))
    if f.key:
        predicates.append(Predicate("key", "=", f.key))
    if f.since is not None:
        predicates.append(Predicate("created_at", ">=", to_storage(ceil_to_millisecond(f.since))))

    limit = f.limit if f.limit is not None and f.limit > 0 else DEFAULT_LIMIT
    return QueryPlan(predicates=tuple(predicates), limit=limit)


__all__ = ["DEFAULT_LIMIT", "LARGE_LIMIT_WARNING", "Predicate", "QueryPlan", "compile_query"]
