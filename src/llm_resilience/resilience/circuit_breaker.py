"""Circuit-breaker state machine.

States:
- CLOSED: calls pass through; failures are counted.
- OPEN: `failure_threshold` consecutive failures landed within
  `monitoring_period_ms`; calls are rejected until `recovery_timeout_ms`
  has passed since the circuit opened.
- HALF_OPEN: the recovery timeout elapsed; exactly one call is admitted as
  a trial and concurrent callers are rejected until it settles. A success
  closes the circuit, a failure opens it again.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
import enum
import logging
import time
from typing import Any

from llm_resilience.core.types import CircuitBreakerConfig

log = logging.getLogger(__name__)


class CircuitState(enum.StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Failure tracking for a single circuit key."""

    def __init__(
        self,
        key: str,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.key = key
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at: float | None = None
        self._trial_in_flight = False
        self.total_failures = 0
        self.total_successes = 0
        self.rejected_calls = 0

    def _now_ms(self) -> float:
        return self._clock() * 1000

    @property
    def state(self) -> CircuitState:
        """Current state; an expired OPEN circuit moves to HALF_OPEN here."""
        if (
            self._state is CircuitState.OPEN
            and self._opened_at is not None
            and self._now_ms() - self._opened_at >= self.config.recovery_timeout_ms
        ):
            log.info("Circuit '%s' transitioning to half-open", self.key)
            self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        state = self.state
        if state is CircuitState.OPEN or (
            state is CircuitState.HALF_OPEN and self._trial_in_flight
        ):
            self.rejected_calls += 1
            return False
        if state is CircuitState.HALF_OPEN:
            self._trial_in_flight = True
        return True

    def release_trial(self) -> None:
        """Give up a half-open trial without recording an outcome."""
        self._trial_in_flight = False

    def retry_in_ms(self) -> float:
        """Milliseconds until an open circuit admits a trial call."""
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return 0.0
        elapsed = self._now_ms() - self._opened_at
        return max(0.0, self.config.recovery_timeout_ms - elapsed)

    def record_success(self) -> None:
        self.total_successes += 1
        self._trial_in_flight = False
        self._failures.clear()
        if self._state is not CircuitState.CLOSED:
            log.info("Circuit '%s' closing after successful trial call", self.key)
            self._state = CircuitState.CLOSED
            self._opened_at = None

    def record_failure(self) -> None:
        now = self._now_ms()
        self.total_failures += 1
        self._trial_in_flight = False

        if self._state is CircuitState.HALF_OPEN:
            log.warning("Circuit '%s' reopening after failed trial call", self.key)
            self._open(now)
            return

        window_start = now - self.config.monitoring_period_ms
        while self._failures and self._failures[0] < window_start:
            self._failures.popleft()
        self._failures.append(now)

        if (
            self._state is CircuitState.CLOSED
            and len(self._failures) >= self.config.failure_threshold
        ):
            log.warning(
                "Circuit '%s' opening after %d consecutive failures",
                self.key,
                len(self._failures),
            )
            self._open(now)

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._failures.clear()

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._trial_in_flight = False
        self._failures.clear()
        self._opened_at = None

    def status(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "state": self.state.value,
            "recent_failures": len(self._failures),
            "total_failures": self.total_failures,
            "total_successes": self.total_successes,
            "rejected_calls": self.rejected_calls,
            "trial_in_flight": self._trial_in_flight,
            "retry_in_ms": self.retry_in_ms(),
            "config": {
                "failure_threshold": self.config.failure_threshold,
                "recovery_timeout_ms": self.config.recovery_timeout_ms,
                "monitoring_period_ms": self.config.monitoring_period_ms,
            },
        }
