"""
Structured error types for tempstash.

Every failure the facade surfaces is a :class:`StashError` subclass carrying
a category, a retryable flag, structured context and the chained underlying
exception. Callers can catch ``StashError`` broadly or a specific subclass.

Manifesto:
    - **Typed hierarchy:** one class per failure surface (connect, schema,
      serialize, insert, query, delete)
    - **Explicit retry semantics:** each error knows whether a retry makes sense
    - **Rich context:** namespace, key and operation travel with the error
    - **Error chaining:** the driver exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                        StashError                            │
        │  (category, retryable, context, cause)                       │
        ├─────────────────────────────────────────────────────────────┤
        │                                                              │
        │  BackendConnectionError   SchemaError      SerializationError│
        │  (NETWORK, fatal)         (SCHEMA, fatal)  (SERIALIZATION)   │
        │                                                              │
        │  DatabaseError            RetryExhaustedError                │
        │  (DATABASE)               (wraps last failure)               │
        │       │                                                      │
        │  InsertError  QueryError  DeleteError                        │
        │                                                              │
        │  DeadlineExceeded   ConfigError       StashClosedError       │
        │  (CANCELLED)        InvalidConfigError                       │
        └─────────────────────────────────────────────────────────────┘

Propagation policy:
    - Construction errors (connect, schema) fail loudly, never retried.
    - Write errors are retried by policy, then surfaced (``put_sync``) or
      logged and absorbed (``put``).
    - Read and delete errors are surfaced immediately.

Examples:
    >>> err = InsertError("insert failed").with_context(namespace="debug")
    >>> err.context.namespace
    'debug'
    >>> err.to_dict()["category"]
    'DATABASE'

Tags:
    error-handling, exception-hierarchy, retry-logic, tempstash
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NETWORK = "NETWORK"  # Backend unreachable, ping failure
    DATABASE = "DATABASE"  # Insert/query/delete failures
    SCHEMA = "SCHEMA"  # Table or index creation
    SERIALIZATION = "SERIALIZATION"  # Payload cannot be encoded
    CANCELLED = "CANCELLED"  # Deadline passed or context cancelled
    CONFIG = "CONFIG"  # Invalid settings
    INTERNAL = "INTERNAL"  # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        operation: Facade operation that failed (``put_sync``, ``query``, ...)
        namespace: Namespace the operation targeted
        key: Record key, when relevant
        url: Backend URL with the password masked
        metadata: Additional key-value pairs
    """

    operation: str | None = None
    namespace: str | None = None
    key: str | None = None
    url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for name in ["operation", "namespace", "key", "url"]:
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class StashError(Exception):
    """
    Base exception for all tempstash errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    raising sites only pass what differs from the defaults.

    Examples:
        >>> error = StashError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> StashError:
        """
        Add context to this error (fluent API).

        Usage:
            raise QueryError("query failed", cause=exc).with_context(namespace="ns1")
        """
        for name, value in kwargs.items():
            if name != "metadata" and hasattr(self.context, name):
                setattr(self.context, name, value)
            else:
                self.context.metadata[name] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for structured logging."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONSTRUCTION ERRORS
# =============================================================================


class BackendConnectionError(StashError):
    """Backend unreachable or liveness ping failed. Fatal at construction."""

    default_category = ErrorCategory.NETWORK
    default_retryable = False


class SchemaError(StashError):
    """The backing table or its indices could not be created."""

    default_category = ErrorCategory.SCHEMA
    default_retryable = False


# =============================================================================
# WRITE-PATH ERRORS
# =============================================================================


class SerializationError(StashError):
    """Payload could not be encoded to text."""

    default_category = ErrorCategory.SERIALIZATION
    default_retryable = False

    def __init__(self, message: str, *, value_type: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.value_type = value_type

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.value_type:
            result["value_type"] = self.value_type
        return result


class RetryExhaustedError(StashError):
    """
    Every attempt failed, or the wait between attempts was cancelled.

    ``cause`` (and ``__cause__``) is the most recent underlying failure;
    ``attempts`` is how many times the operation actually ran.
    """

    default_category = ErrorCategory.DATABASE
    default_retryable = False

    def __init__(self, message: str, *, attempts: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.attempts = attempts

    @property
    def last_error(self) -> BaseException | None:
        return self.cause

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["attempts"] = self.attempts
        return result


# =============================================================================
# BACKEND OPERATION ERRORS
# =============================================================================


class DatabaseError(StashError):
    """Single backend statement failed."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class InsertError(DatabaseError):
    """Insert of one record failed. Retried by the write path."""

    default_retryable = True


class QueryError(DatabaseError):
    """Read query failed. Surfaced directly, never retried."""


class DeleteError(DatabaseError):
    """Delete failed. Surfaced directly, never retried."""


# =============================================================================
# CONTROL ERRORS
# =============================================================================


class DeadlineExceeded(StashError, TimeoutError):
    """
    The operation's context was cancelled or its deadline passed.

    Inherits from built-in ``TimeoutError`` for broad exception handling.
    """

    default_category = ErrorCategory.CANCELLED
    default_retryable = False


class ConfigError(StashError):
    """Configuration error."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidConfigError(ConfigError):
    """Invalid configuration value."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


class StashClosedError(StashError):
    """Operation attempted on a closed stash."""

    default_category = ErrorCategory.INTERNAL
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if a failed attempt may be run again.

    Errors outside the :class:`StashError` hierarchy carry no flag and are
    treated as transient.
    """
    if isinstance(error, StashError):
        return error.retryable
    return True


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, StashError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.CANCELLED
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    if isinstance(error, (TypeError, ValueError)):
        return ErrorCategory.SERIALIZATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "StashError",
    "BackendConnectionError",
    "SchemaError",
    "SerializationError",
    "RetryExhaustedError",
    "DatabaseError",
    "InsertError",
    "QueryError",
    "DeleteError",
    "DeadlineExceeded",
    "ConfigError",
    "InvalidConfigError",
    "StashClosedError",
    "is_retryable",
    "categorize_error",
]
