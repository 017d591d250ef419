"""Tests for the circuit breaker."""

import pytest

from contentforge.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestCircuitBreaker:
    """Test suite for CircuitBreaker."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FakeClock()
        self.breaker = CircuitBreaker(
            "sim",
            CircuitBreakerConfig(failure_threshold=3, window_seconds=60, cooldown_seconds=30),
            clock=self.clock,
        )

    def _fail(self, times: int) -> None:
        for _ in range(times):
            self.breaker.record_failure()

    def test_starts_closed(self):
        assert self.breaker.state == CircuitState.CLOSED
        assert self.breaker.is_available() is True

    def test_opens_after_threshold(self):
        """Test three consecutive failures open the circuit."""
        self._fail(2)
        assert self.breaker.state == CircuitState.CLOSED

        self._fail(1)
        assert self.breaker.state == CircuitState.OPEN
        assert self.breaker.is_available() is False
        assert self.breaker.try_acquire() is False

    def test_success_resets_streak(self):
        """Test a success in between prevents opening."""
        self._fail(2)
        self.breaker.record_success()
        self._fail(2)
        assert self.breaker.state == CircuitState.CLOSED

    def test_failures_outside_window_do_not_count(self):
        """Test old failures slide out of the window."""
        self._fail(2)
        self.clock.now += 61
        self._fail(1)
        assert self.breaker.state == CircuitState.CLOSED

    def test_half_open_after_cooldown(self):
        """Test the circuit half-opens after the cooldown."""
        self._fail(3)
        self.clock.now += 29
        assert self.breaker.state == CircuitState.OPEN

        self.clock.now += 1
        assert self.breaker.state == CircuitState.HALF_OPEN

    def test_single_trial_in_half_open(self):
        """Test exactly one trial is admitted while half-open."""
        self._fail(3)
        self.clock.now += 30

        assert self.breaker.try_acquire() is True
        assert self.breaker.try_acquire() is False
        assert self.breaker.is_available() is False

    def test_successful_trial_closes(self):
        self._fail(3)
        self.clock.now += 30
        self.breaker.try_acquire()

        self.breaker.record_success()

        assert self.breaker.state == CircuitState.CLOSED

    def test_failed_trial_reopens(self):
        """Test a failed trial restarts the cooldown."""
        self._fail(3)
        self.clock.now += 30
        self.breaker.try_acquire()

        self.breaker.record_failure()

        assert self.breaker.state == CircuitState.OPEN
        self.clock.now += 29
        assert self.breaker.state == CircuitState.OPEN

    def test_release_returns_trial_slot(self):
        """Test a cancelled trial frees the slot for another caller."""
        self._fail(3)
        self.clock.now += 30
        assert self.breaker.try_acquire() is True

        self.breaker.release()

        assert self.breaker.try_acquire() is True

    def test_stats(self):
        self._fail(3)
        self.clock.now += 10
        stats = self.breaker.get_stats()
        assert stats["state"] == "open"
        assert stats["time_until_trial"] == pytest.approx(20.0)
