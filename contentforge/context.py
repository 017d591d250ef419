"""
Cancellation and deadline plumbing shared by the coordinator and adapters.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional


class CancelToken:
    """
    Thread-safe cancellation flag with callbacks and child tokens.

    Cancelling a token cancels every child derived from it. Callbacks
    registered after cancellation run immediately.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self.reason: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Deregister a callback that has not fired yet."""
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def child(self) -> "CancelToken":
        token = CancelToken()
        self.on_cancel(lambda: token.cancel(self.reason or "cancelled"))
        return token

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or timeout elapses. Returns True if cancelled."""
        return self._event.wait(timeout)


@dataclass
class CallContext:
    """Deadline and cancellation for one provider attempt."""
    deadline: float  # time.monotonic()
    token: CancelToken = field(default_factory=CancelToken)

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.deadline
