"""Bounded fire-and-forget dispatcher for asynchronous writes.

``Stash.put`` hands each write to :class:`AsyncDispatcher`, which queues it
on a fixed-size queue drained by a fixed pool of daemon worker threads. The
caller never waits and never sees the outcome.

Architecture:
    ::

        submit(task) ──► queue.Queue(maxsize=queue_size) ──► worker-0..N-1
             │                                                    │
             └─ full / closed: drop + log                         ▼
                                                       _run_task(task)
                                                       catch-all boundary:
                                                       any Exception is logged,
                                                       never re-raised

Guarantees:
    - ``submit`` never blocks and never raises for a rejected task
    - a failing task cannot kill its worker thread or the process
    - at most ``workers`` writes are in flight at once; at most
      ``queue_size`` are waiting

Trade-off:
    Writes accepted by ``submit`` are lost if the process exits before
    ``close()`` drains the queue. Use ``Stash.put_sync`` when delivery
    confirmation matters.
"""

from __future__ import annotations

import queue
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from tempstash.core.errors import InvalidConfigError, StashError, categorize_error
from tempstash.core.logging import get_logger

_STOP = object()


@dataclass
class DispatcherStats:
    """Counters for observability and tests."""

    submitted: int = 0
    rejected: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "submitted": self.submitted,
            "rejected": self.rejected,
            "completed": self.completed,
            "failed": self.failed,
        }


class AsyncDispatcher:
    """Fixed worker pool draining a bounded task queue."""

    def __init__(
        self,
        *,
        workers: int = 4,
        queue_size: int = 1024,
        logger: Any | None = None,
        name: str | None = None,
    ):
        if workers < 1:
            raise InvalidConfigError("workers", workers, "workers must be >= 1")
        if queue_size < 1:
            raise InvalidConfigError("queue_size", queue_size, "queue_size must be >= 1")

        self._name = name or f"tempstash-{uuid.uuid4().hex[:8]}"
        self._log = logger or get_logger(__name__)
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=queue_size)
        self._closed = False
        self._state_lock = threading.Lock()
        self._stats = DispatcherStats()
        self._stats_lock = threading.Lock()

        self._threads = [
            threading.Thread(target=self._worker, name=f"{self._name}-{i}", daemon=True)
            for i in range(workers)
        ]
        for t in self._threads:
            t.start()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Approximate number of queued tasks not yet picked up."""
        return self._queue.qsize()

    @property
    def stats(self) -> DispatcherStats:
        with self._stats_lock:
            return DispatcherStats(**self._stats.to_dict())

    # ------------------------------------------------------------------ #
    # Submission
    # ------------------------------------------------------------------ #

    def submit(self, task: Callable[[], None], *, description: str = "task", **log_context: Any) -> bool:
        """Queue *task* without blocking.

        Returns True if the task was accepted. A rejected task is logged and
        dropped; the return value is for tests and diagnostics, the facade
        does not expose it.
        """
        with self._state_lock:
            if self._closed:
                self._reject(description, "dispatcher closed", log_context)
                return False
            try:
                self._queue.put_nowait((task, description, log_context))
            except queue.Full:
                self._reject(description, "queue full", log_context)
                return False

        with self._stats_lock:
            self._stats.submitted += 1
        return True

    def _reject(self, description: str, reason: str, log_context: dict[str, Any]) -> None:
        with self._stats_lock:
            self._stats.rejected += 1
        self._log.error(
            "dispatch_rejected",
            task=description,
            reason=reason,
            queue_size=self._queue.maxsize,
            **log_context,
        )

    # ------------------------------------------------------------------ #
    # Workers
    # ------------------------------------------------------------------ #

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                task, description, log_context = item
                self._run_task(task, description, log_context)
            finally:
                self._queue.task_done()

    def _run_task(self, task: Callable[[], None], description: str, log_context: dict[str, Any]) -> None:
        """Run one task; no exception escapes this boundary."""
        try:
            task()
        except StashError as exc:
            with self._stats_lock:
                self._stats.failed += 1
            self._log.error("dispatch_task_failed", task=description, **exc.to_dict(), **log_context)
        except Exception as exc:
            with self._stats_lock:
                self._stats.failed += 1
            self._log.exception(
                "dispatch_task_failed",
                task=description,
                category=categorize_error(exc).value,
                error=f"{type(exc).__name__}: {exc}",
                **log_context,
            )
        else:
            with self._stats_lock:
                self._stats.completed += 1

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def join(self, timeout: float | None = None) -> bool:
        """Wait until every accepted task has finished.

        Returns False if *timeout* elapsed first.
        """
        if timeout is None:
            self._queue.join()
            return True

        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def close(self, timeout: float | None = None) -> bool:
        """Stop accepting tasks, drain the queue and stop the workers.

        Safe to call more than once. Returns False if the workers did not
        finish within *timeout*.
        """
        with self._state_lock:
            if self._closed:
                return True
            self._closed = True

        # Stop markers queue behind every accepted task, so the drain completes first.
        for _ in self._threads:
            self._queue.put(_STOP)

        deadline = None if timeout is None else time.monotonic() + timeout
        finished = True
        for t in self._threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            t.join(remaining)
            if t.is_alive():
                finished = False
        if not finished:
            self._log.warning("dispatch_close_timeout", pending=self.pending, timeout=timeout)
        return finished


__all__ = ["AsyncDispatcher", "DispatcherStats"]
