"""
Circuit breaker for contentforge providers.

Temporarily excludes failing providers from routing. After a cooldown a
single trial call is allowed through.
"""

import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Callable, Optional


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Excluded from routing
    HALF_OPEN = "half_open"  # Testing whether the provider recovered


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""
    failure_threshold: int = 3  # Consecutive failures before opening
    window_seconds: float = 60.0  # Failures must fall within this window
    cooldown_seconds: float = 30.0  # Time before a trial is allowed
    half_open_max_requests: int = 1  # Trial calls allowed in half-open state


class CircuitBreaker:
    """
    Tracks consecutive failures for one provider.

    Any success resets the failure streak. Time comes from an injectable
    clock so tests can step through cooldowns.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Circuit breaker name (the provider name)
            config: Configuration. Uses defaults if not provided.
            clock: Monotonic time source
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = Lock()

        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at: Optional[float] = None
        self._half_open_requests = 0

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        with self._lock:
            self._check_and_update_state()
            return self._state

    def is_available(self) -> bool:
        """Whether a call could be admitted right now. Does not claim a trial slot."""
        with self._lock:
            self._check_and_update_state()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN:
                return self._half_open_requests < self.config.half_open_max_requests
            return False

    def try_acquire(self) -> bool:
        """Admit a call, claiming the trial slot when half-open."""
        with self._lock:
            self._check_and_update_state()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_requests >= self.config.half_open_max_requests:
                    return False
                self._half_open_requests += 1
                return True
            return False

    def release(self) -> None:
        """Give back a claimed trial slot without recording an outcome."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_requests > 0:
                self._half_open_requests -= 1

    def _check_and_update_state(self) -> None:
        """Check if state should transition."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.config.cooldown_seconds:
                self._state = CircuitState.HALF_OPEN
                self._half_open_requests = 0

    def record_success(self) -> None:
        """Record successful call."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures.clear()
            self._opened_at = None
            self._half_open_requests = 0

    def record_failure(self) -> None:
        """Record failed call."""
        with self._lock:
            now = self._clock()
            self._check_and_update_state()

            if self._state == CircuitState.HALF_OPEN:
                # Failed trial -> back to open
                self._open(now)
                return

            self._failures.append(now)
            while self._failures and now - self._failures[0] > self.config.window_seconds:
                self._failures.popleft()

            if self._state == CircuitState.CLOSED and len(self._failures) >= self.config.failure_threshold:
                self._open(now)

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._half_open_requests = 0
        self._failures.clear()

    def reset(self) -> None:
        """Manually reset circuit to closed state."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures.clear()
            self._opened_at = None
            self._half_open_requests = 0

    def get_stats(self) -> dict:
        """
        Get circuit breaker statistics.

        Returns:
            Dictionary with stats
        """
        with self._lock:
            self._check_and_update_state()
            now = self._clock()
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_failures": len(self._failures),
                "time_until_trial": (
                    max(0.0, self.config.cooldown_seconds - (now - self._opened_at))
                    if self._opened_at is not None and self._state == CircuitState.OPEN
                    else 0.0
                ),
            }
