"""Cancellable, deadline-bearing execution context threaded through a build."""

from __future__ import annotations

import threading
import time

from rootstock.errors import CancelledError

DEADLINE_EXCEEDED = "deadline exceeded"


class BuildContext:
    """Cancellation signal shared by dispatch, fetch, and pack.

    A context is done once ``cancel()`` was called on it or on any ancestor,
    or once its deadline has passed. Children never outlive their parent's
    deadline.
    """

    def __init__(self, *, deadline: float | None = None, parent: BuildContext | None = None) -> None:
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline
        self._parent = parent
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._children: list[BuildContext] = []
        if parent is not None:
            parent._attach(self)

    @classmethod
    def background(cls) -> BuildContext:
        return cls()

    def with_cancel(self) -> BuildContext:
        return BuildContext(parent=self)

    def with_timeout(self, seconds: float) -> BuildContext:
        return BuildContext(deadline=time.monotonic() + seconds, parent=self)

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel(reason)

    @property
    def done(self) -> bool:
        return self.reason is not None

    @property
    def reason(self) -> str | None:
        if self._event.is_set():
            return self._reason
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return DEADLINE_EXCEEDED
        return None

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or ``None`` when there is none."""
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def check(self, operation: str) -> None:
        reason = self.reason
        if reason is None:
            return
        message = (
            f"{operation} exceeded its deadline."
            if reason == DEADLINE_EXCEEDED
            else f"{operation} was cancelled."
        )
        raise CancelledError(message, reason=reason, context={"operation": operation})

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context is done or *timeout* elapses; return ``done``."""
        limit = timeout
        remaining = self.remaining()
        if remaining is not None:
            limit = remaining if limit is None else min(limit, remaining)
        self._event.wait(limit)
        return self.done

    def _attach(self, child: BuildContext) -> None:
        with self._lock:
            already = self._event.is_set()
            if not already:
                self._children.append(child)
        if already:
            child.cancel(self._reason or "cancelled")


__all__ = ["DEADLINE_EXCEEDED", "BuildContext"]
