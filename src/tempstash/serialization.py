"""Payload serialization.

``marshal`` turns whatever the caller put in ``StashedItem.data`` into the
text stored in the ``data`` column:

    - ``str`` passes through unchanged
    - ``bytes``, ``bytearray`` and ``memoryview`` are decoded as UTF-8;
      invalid sequences become U+FFFD rather than failing the write
    - anything else is encoded as compact JSON (``{"A":1}``)

JSON encoding understands dataclasses, pydantic models, datetimes, UUIDs,
Decimals, sets and tuples. Everything else is a :class:`SerializationError`.
"""

from __future__ import annotations

import dataclasses
import json
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from tempstash.core.errors import SerializationError


def _encode_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def marshal(value: Any) -> str:
    """Serialize a payload to its stored text form.

    Raises:
        SerializationError: the value cannot be encoded
    """
    if isinstance(value, str):
        return value

    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")

    try:
        return json.dumps(
            value,
            default=_encode_default,
            ensure_ascii=False,
            allow_nan=False,
            separators=(",", ":"),
        )
    except (TypeError, ValueError, RecursionError) as exc:
        raise SerializationError(
            f"cannot encode {type(value).__name__}: {exc}",
            value_type=type(value).__name__,
            cause=exc,
        ) from exc


__all__ = ["marshal"]
