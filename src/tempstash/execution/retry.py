"""Retry strategies with exponential backoff and jitter, cancellable by context.

Used by the write path: every insert runs inside a :class:`RetryContext`.
Reads and deletes are never retried.

Example:
    >>> from tempstash.execution.retry import ExponentialBackoff
    >>>
    >>> strategy = ExponentialBackoff(max_attempts=3, base_delay=0.5)
    >>> for attempt in (1, 2):
    ...     delay = strategy.next_delay(attempt)
    ...     print(f"after attempt {attempt}: wait {delay:.2f}s")

Semantics:
    - the operation runs at most ``max_attempts`` times
    - success returns immediately
    - between attempts the executor waits ``next_delay(attempt)`` on the
      caller's :class:`~tempstash.execution.context.Context`
    - if that wait is cut short by cancellation or the deadline, the most
      recent operation failure is re-raised (there is no separate
      cancellation error on this path)
    - after the last attempt the last failure is re-raised
    - a failure whose ``retryable`` flag is False is re-raised at once
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TypeVar

from tempstash.core.errors import InvalidConfigError, is_retryable
from tempstash.core.timestamps import utc_now
from tempstash.execution.context import Context

T = TypeVar("T")


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    max_attempts: int

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt.

        Args:
            attempt: One-based index of the attempt that just failed

        Returns:
            Delay in seconds, never negative
        """
        ...

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """True if another attempt is allowed after *attempt* failures.

        An *error* flagged as not retryable stops the loop early.
        """
        if error is not None and not is_retryable(error):
            return False
        return attempt < self.max_attempts

    def _validate(self) -> None:
        if self.max_attempts < 1:
            raise InvalidConfigError("max_attempts", self.max_attempts, "max_attempts must be >= 1")


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with additive jitter.

    Delay for attempt *i* = ``base_delay * 2**i`` plus a uniform jitter in
    ``[0, base_delay * 2**i / 2)``, so it always falls in
    ``[base, base * 1.5)``.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay unit in seconds (0.5 gives 1s, 2s, 4s, ...)
        jitter: Add randomness to avoid synchronized retry storms
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    jitter: bool = True

    def __post_init__(self) -> None:
        self._validate()
        if self.base_delay < 0:
            raise InvalidConfigError("base_delay", self.base_delay, "base_delay must be >= 0")

    def next_delay(self, attempt: int) -> float:
        base = self.base_delay * (2**attempt)
        if not self.jitter:
            return base
        # random.random() is in [0, 1), keeping the jitter strictly below base/2
        return base + random.random() * (base / 2)


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between attempts."""

    max_attempts: int = 3
    delay: float = 0.0

    def __post_init__(self) -> None:
        self._validate()

    def next_delay(self, attempt: int) -> float:
        return max(0.0, self.delay)


@dataclass
class NoRetry(RetryStrategy):
    """Single attempt, fail immediately."""

    max_attempts: int = field(default=1, init=False)

    def next_delay(self, attempt: int) -> float:
        return 0.0


def default_strategy() -> ExponentialBackoff:
    """3 attempts, 500ms base, jittered."""
    return ExponentialBackoff()


@dataclass
class RetryContext:
    """Tracks one retried execution.

    Example:
        >>> rc = RetryContext(ExponentialBackoff(max_attempts=3))
        >>> record_id = rc.run(lambda ctx: insert(ctx), ctx)
        >>> rc.attempts
        1
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, BaseException, float], None] | None = None
    attempt: int = field(default=0, init=False)
    last_error: BaseException | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utc_now, init=False)
    errors: list[tuple[int, BaseException, datetime]] = field(default_factory=list, init=False)
    interrupted: bool = field(default=False, init=False)

    @property
    def attempts(self) -> int:
        """Number of times the operation actually ran."""
        return self.attempt

    @property
    def elapsed_seconds(self) -> float:
        return (utc_now() - self.started_at).total_seconds()

    def run(self, func: Callable[[Context], T], ctx: Context | None = None) -> T:
        """Run ``func(ctx)`` until it succeeds or the strategy gives up.

        Raises:
            The last exception raised by *func*.
        """
        ctx = ctx or Context.background()

        while True:
            self.attempt += 1
            try:
                return func(ctx)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utc_now()))

                if not self.strategy.should_retry(self.attempt, e):
                    raise

                delay = self.strategy.next_delay(self.attempt)

                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)

                if ctx.wait(delay):
                    self.interrupted = True
                    raise


__all__ = [
    "RetryStrategy",
    "ExponentialBackoff",
    "ConstantBackoff",
    "NoRetry",
    "RetryContext",
    "default_strategy",
]
