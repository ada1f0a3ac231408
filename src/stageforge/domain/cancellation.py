"""
Cooperative cancellation.

A CancellationToken is checked at well-defined checkpoints (before each hook,
before and after each provider call). Cancelling a token cancels all of its
children, so cancelling a workflow reaches the attempt currently in flight.
"""

import threading
import weakref
from collections.abc import Callable

from stageforge.domain.exceptions import OperationCancelled


class CancellationToken:
    """Thread-safe, one-shot cancellation signal."""

    def __init__(self, parent: "CancellationToken | None" = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._children: weakref.WeakSet[CancellationToken] = weakref.WeakSet()
        self._callbacks: list[Callable[[str], None]] = []
        if parent is not None:
            parent._attach(self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel this token and every child. Later calls are no-ops."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
            callbacks = list(self._callbacks)

        for child in children:
            child.cancel(reason)
        for callback in callbacks:
            callback(reason)

    def child(self) -> "CancellationToken":
        """Create a token cancelled whenever this one is."""
        return CancellationToken(parent=self)

    def on_cancel(self, callback: Callable[[str], None]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback(self._reason or "cancelled")

    def raise_if_cancelled(self) -> None:
        """Cancellation checkpoint."""
        if self._event.is_set():
            raise OperationCancelled(self._reason or "cancelled")

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to timeout seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def _attach(self, child: "CancellationToken") -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.add(child)
                return
            reason = self._reason or "cancelled"
        child.cancel(reason)
