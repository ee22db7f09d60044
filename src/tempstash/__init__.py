"""
tempstash - durable scratch storage for namespaced, keyed text/JSON payloads.

Stash intermediate artifacts, debug snapshots or short-lived audit trails in
a relational backend without writing a schema or retry logic, then read them
back by namespace, key and recency.

Quick start::

    from tempstash import Stash, StashedItem, QueryFilter

    with Stash.connect("sqlite:///scratch.db") as stash:
        stash.put_sync(StashedItem(namespace="runs", key="r1", data={"loss": 0.12}))
        for record in stash.query(QueryFilter(namespace="runs")):
            print(record.created_at, record.data)
"""

from tempstash.core.errors import (
    BackendConnectionError,
    DeadlineExceeded,
    DeleteError,
    InsertError,
    QueryError,
    RetryExhaustedError,
    SchemaError,
    SerializationError,
    StashClosedError,
    StashError,
)
from tempstash.execution.context import Context
from tempstash.execution.retry import ConstantBackoff, ExponentialBackoff, NoRetry, RetryStrategy
from tempstash.models import QueryFilter, Record, StashedItem
from tempstash.serialization import marshal
from tempstash.stash import Stash

__version__ = "0.1.0"

__all__ = [
    "Stash",
    "StashedItem",
    "Record",
    "QueryFilter",
    "Context",
    "marshal",
    "RetryStrategy",
    "ExponentialBackoff",
    "ConstantBackoff",
    "NoRetry",
    "StashError",
    "BackendConnectionError",
    "SchemaError",
    "SerializationError",
    "RetryExhaustedError",
    "InsertError",
    "QueryError",
    "DeleteError",
    "DeadlineExceeded",
    "StashClosedError",
]
