"""tempstash.execution -- cancellation context, retries and async dispatch.

    context.py      Context: cancel flag + deadline
    retry.py        RetryStrategy implementations and RetryContext
    dispatcher.py   AsyncDispatcher: bounded queue + fixed worker pool
"""

from tempstash.execution.context import Context
from tempstash.execution.dispatcher import AsyncDispatcher, DispatcherStats
from tempstash.execution.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    NoRetry,
    RetryContext,
    RetryStrategy,
    default_strategy,
)

__all__ = [
    "Context",
    "AsyncDispatcher",
    "DispatcherStats",
    "RetryStrategy",
    "ExponentialBackoff",
    "ConstantBackoff",
    "NoRetry",
    "RetryContext",
    "default_strategy",
]
