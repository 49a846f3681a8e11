"""Retry executor with exponential backoff, batches and circuit breaking.

The executor is the one component that re-raises: after `max_attempts`
(or immediately, for a non-retryable error) the caller's own exception
propagates unchanged.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
import dataclasses
import logging
import random
import time
from typing import TYPE_CHECKING, Any

from llm_resilience.core.types import (
    CircuitBreakerConfig,
    ErrorContext,
    Failure,
    Result,
    RetryConfig,
    Success,
)
from llm_resilience.exceptions import CircuitOpenError
from llm_resilience.telemetry import TelemetryContext, TelemetryContextProtocol

from .circuit_breaker import CircuitBreaker
from .classification import classify_error_kind, is_retryable

if TYPE_CHECKING:
    from llm_resilience.config import FrozenConfig
    from llm_resilience.metrics.collector import ErrorMetricsCollector

log = logging.getLogger(__name__)

type Operation[T] = Callable[[], Awaitable[T]]
type RetryOverrides = RetryConfig | Mapping[str, Any] | None


def compute_delay_ms(
    attempt: int, config: RetryConfig, rng: random.Random | None = None
) -> float:
    """Backoff before the attempt after `attempt`, in milliseconds.

    ``min(base * multiplier ** (attempt - 1), max) + uniform(0, jitter)``
    """
    exponential = config.base_delay_ms * config.backoff_multiplier ** (attempt - 1)
    capped = min(exponential, config.max_delay_ms)
    if not config.jitter_ms:
        return capped
    return capped + (rng or random).uniform(0, config.jitter_ms)


def circuit_key(context: ErrorContext) -> str:
    return f"{context.operation}_{context.file_path or 'global'}"


@dataclasses.dataclass(slots=True)
class _RetryStats:
    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    total_attempts: int = 0
    total_delay_ms: float = 0.0


class RetryExecutor:
    """Runs fallible async operations with bounded retries.

    Args:
        default_config: Backoff parameters used when a call passes none.
        breaker_config: Thresholds for circuits created without their own.
        metrics: Optional collector; failed attempts, successful retries and
            exhausted retries are recorded on it.
        sleep: Awaitable sleep taking seconds. Inject a fake in tests.
        rng: Source of jitter.
        clock: Monotonic clock in seconds, shared with the circuit breakers.
        telemetry: Telemetry context for attempt and retry counters.
    """

    def __init__(
        self,
        default_config: RetryConfig | None = None,
        *,
        breaker_config: CircuitBreakerConfig | None = None,
        metrics: ErrorMetricsCollector | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        self.default_config = default_config or RetryConfig()
        self.breaker_config = breaker_config or CircuitBreakerConfig()
        self.metrics = metrics
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self._tele = telemetry or TelemetryContext()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._stats = _RetryStats()

    async def execute_with_retry[T](
        self,
        operation: Operation[T],
        context: ErrorContext,
        config: RetryOverrides = None,
    ) -> T:
        """Run `operation` until it succeeds or retrying is pointless.

        Raises:
            Exception: The operation's last error, unchanged.
        """
        cfg = self.default_config.merged(config)
        self._stats.total_operations += 1
        total_delay_ms = 0.0

        for attempt in range(1, cfg.max_attempts + 1):
            attempt_context = context.for_attempt(attempt)
            self._stats.total_attempts += 1
            self._tele.count("retry.attempts")
            log.debug(
                "Executing %s (attempt %d/%d)",
                context.operation,
                attempt,
                cfg.max_attempts,
            )
            try:
                result = await operation()
            except Exception as e:
                if self.metrics is not None:
                    self.metrics.record_error(
                        classify_error_kind(e).value, attempt_context
                    )
                log.warning(
                    "%s failed on attempt %d/%d: %s",
                    context.operation,
                    attempt,
                    cfg.max_attempts,
                    e,
                )

                if attempt == cfg.max_attempts:
                    log.error(
                        "%s failed after %d attempts (waited %.0fms)",
                        context.operation,
                        attempt,
                        total_delay_ms,
                    )
                    self._give_up(attempt_context)
                    raise
                if not is_retryable(e):
                    log.info(
                        "Error is not retryable, stopping %s after attempt %d",
                        context.operation,
                        attempt,
                    )
                    self._give_up(attempt_context)
                    raise

                delay_ms = compute_delay_ms(attempt, cfg, self._rng)
                total_delay_ms += delay_ms
                self._stats.total_delay_ms += delay_ms
                self._tele.count("retry.retries")
                log.debug("Waiting %.0fms before retrying %s", delay_ms, context.operation)
                await self._sleep(delay_ms / 1000)
                continue

            self._stats.successful_operations += 1
            if attempt > 1:
                log.info("%s succeeded on attempt %d", context.operation, attempt)
                if self.metrics is not None:
                    self.metrics.record_successful_retry(attempt_context)
            return result

        # max_attempts >= 1 guarantees the loop returns or raises
        raise AssertionError("unreachable")

    def _give_up(self, context: ErrorContext) -> None:
        self._stats.failed_operations += 1
        if context.attempt_number > 1 and self.metrics is not None:
            self.metrics.record_failed_retry(context)

    async def execute_many[T](
        self,
        operations: Iterable[
            tuple[Operation[T], ErrorContext]
            | tuple[Operation[T], ErrorContext, RetryOverrides]
        ],
        *,
        parallel: bool = False,
        fail_fast: bool = False,
    ) -> list[Result[T, Exception]]:
        """Run a batch of operations, each with its own retries.

        Results are returned in input order regardless of completion order.
        With `fail_fast` the first error is re-raised instead of collected;
        in parallel mode the still-running operations are cancelled.
        """
        items = [(op[0], op[1], op[2] if len(op) > 2 else None) for op in operations]

        if not parallel:
            results: list[Result[T, Exception]] = []
            for operation, context, config in items:
                try:
                    results.append(
                        Success(await self.execute_with_retry(operation, context, config))
                    )
                except Exception as e:
                    if fail_fast:
                        raise
                    results.append(Failure(e))
            return results

        tasks = [
            asyncio.ensure_future(self.execute_with_retry(operation, context, config))
            for operation, context, config in items
        ]
        if fail_fast:
            try:
                values = await asyncio.gather(*tasks)
            except Exception:
                for task in tasks:
                    task.cancel()
                raise
            return [Success(value) for value in values]

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        batch: list[Result[T, Exception]] = []
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                batch.append(Failure(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                batch.append(Success(outcome))
        return batch

    async def execute_with_circuit_breaker[T](
        self,
        operation: Operation[T],
        context: ErrorContext,
        breaker_config: CircuitBreakerConfig | None = None,
        retry_config: RetryOverrides = None,
    ) -> T:
        """Run `operation` with retries behind the circuit for its key.

        Raises:
            CircuitOpenError: If the circuit is open; the operation is not
                called.
        """
        key = circuit_key(context)
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = CircuitBreaker(
                key, breaker_config or self.breaker_config, clock=self._clock
            )
            self._breakers[key] = breaker
        elif breaker_config is not None:
            breaker.config = breaker_config

        if not breaker.allow_request():
            log.warning("Circuit '%s' is open, rejecting %s", key, context.operation)
            raise CircuitOpenError(key, breaker.retry_in_ms())

        try:
            result = await self.execute_with_retry(operation, context, retry_config)
        except Exception as e:
            breaker.record_failure()
            log.warning("Circuit '%s' recorded failure: %s", key, e)
            raise
        except BaseException:
            breaker.release_trial()
            raise
        breaker.record_success()
        return result

    def circuit(self, key: str) -> CircuitBreaker | None:
        return self._breakers.get(key)

    def reset_circuits(self) -> None:
        self._breakers.clear()

    def retry_stats(self) -> dict[str, Any]:
        return {
            "default_config": dataclasses.asdict(self.default_config),
            **dataclasses.asdict(self._stats),
            "circuits": {key: b.status() for key, b in self._breakers.items()},
        }

    def update_default_config(self, **overrides: Any) -> None:
        self.default_config = self.default_config.merged(overrides)
        log.debug("Updated default retry configuration: %s", self.default_config)


def create_retry_executor(
    config: FrozenConfig | None = None,
    *,
    metrics: ErrorMetricsCollector | None = None,
    **kwargs: Any,
) -> RetryExecutor:
    """Build an executor from resolved configuration.

    Ambient configuration is resolved only when `config` is None.
    """
    if config is None:
        from llm_resilience.config import resolve_config

        config = resolve_config().to_frozen()
    return RetryExecutor(
        config.retry_config(),
        breaker_config=config.breaker_config(),
        metrics=metrics,
        **kwargs,
    )
