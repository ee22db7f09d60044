"""Cancellation and deadline context passed into every stash operation.

A :class:`Context` combines an explicit cancel flag with an optional
absolute deadline on the monotonic clock. The retry executor waits on it
between attempts, and the backend checks it before every statement.

Examples:
    >>> ctx = Context.with_timeout(2.0)
    >>> ctx.remaining() <= 2.0
    True
    >>> ctx.cancel()
    >>> ctx.cancelled
    True

Child contexts inherit the parent's deadline when it is shorter and are
cancelled together with the parent::

    request = Context.with_timeout(30.0)
    step = request.child(timeout=5.0)   # 5s, but never past the request's 30s
    request.cancel()                    # step.cancelled is now True too
"""

from __future__ import annotations

import threading
import time
import weakref

from tempstash.core.errors import DeadlineExceeded


class Context:
    """Cancel flag plus optional deadline."""

    def __init__(self, deadline: float | None = None, parent: Context | None = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        # Weak so finished children do not pile up on a long-lived parent.
        self._children: weakref.WeakSet[Context] = weakref.WeakSet()
        self._deadline = deadline
        if parent is not None:
            if parent.deadline is not None:
                self._deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
            parent._adopt(self)

    @classmethod
    def background(cls) -> Context:
        """A context that is never cancelled and has no deadline."""
        return cls()

    @classmethod
    def with_timeout(cls, seconds: float) -> Context:
        if seconds < 0:
            raise ValueError(f"Timeout must be non-negative, got {seconds}")
        return cls(deadline=time.monotonic() + seconds)

    def child(self, timeout: float | None = None) -> Context:
        deadline = None if timeout is None else time.monotonic() + timeout
        return Context(deadline=deadline, parent=self)

    @property
    def deadline(self) -> float | None:
        """Absolute deadline on the ``time.monotonic`` clock, if any."""
        return self._deadline

    def _adopt(self, child: Context) -> None:
        with self._lock:
            if self._event.is_set():
                child.cancel()
                return
            self._children.add(child)

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            children = list(self._children)
            self._children.clear()
        for child in children:
            child.cancel()

    def remaining(self) -> float | None:
        """Seconds until the deadline, or ``None`` without one. Never negative."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return True as soon as the context is done."""
        if self.cancelled:
            return True
        timeout = max(0.0, seconds)
        remaining = self.remaining()
        if remaining is not None and remaining < timeout:
            self._event.wait(remaining)
            return True
        if self._event.wait(timeout):
            return True
        return self.cancelled

    def check(self, operation: str = "operation") -> None:
        """Raise :class:`DeadlineExceeded` if the context is done."""
        if not self.cancelled:
            return
        reason = "cancelled" if self._event.is_set() else "deadline exceeded"
        raise DeadlineExceeded(f"{operation}: {reason}").with_context(operation=operation)

    def __repr__(self) -> str:
        return f"Context(cancelled={self.cancelled}, remaining={self.remaining()})"


__all__ = ["Context"]
