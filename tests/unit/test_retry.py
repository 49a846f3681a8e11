"""Retry executor: backoff, classification, batches and circuit breaking."""

import asyncio

import pytest

from llm_resilience import telemetry
from llm_resilience.config import FrozenConfig
from llm_resilience.core.types import (
    CircuitBreakerConfig,
    ErrorContext,
    Failure,
    RetryConfig,
    Success,
)
from llm_resilience.exceptions import CircuitOpenError
from llm_resilience.metrics import ErrorMetricsCollector
from llm_resilience.resilience import (
    CircuitState,
    RetryExecutor,
    circuit_key,
    compute_delay_ms,
    create_retry_executor,
)
from llm_resilience.telemetry import InMemoryReporter, TelemetryContext

pytestmark = pytest.mark.unit


class FlakyOperation:
    """Fails `failures` times with `error`, then returns `result`."""

    def __init__(self, failures: int, error: Exception, result: str = "ok") -> None:
        self.failures = failures
        self.error = error
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


@pytest.fixture
def metrics() -> ErrorMetricsCollector:
    return ErrorMetricsCollector()


@pytest.fixture
def executor(fast_retry, fake_sleep, fake_clock, seeded_rng, metrics) -> RetryExecutor:
    return RetryExecutor(
        fast_retry,
        metrics=metrics,
        sleep=fake_sleep,
        clock=fake_clock,
        rng=seeded_rng,
    )


class TestComputeDelay:
    def test_exponential_growth_is_capped(self, fast_retry):
        assert compute_delay_ms(1, fast_retry) == 100
        assert compute_delay_ms(2, fast_retry) == 200
        assert compute_delay_ms(3, fast_retry) == 400
        assert compute_delay_ms(10, fast_retry) == 1000

    def test_jitter_stays_within_bounds(self, seeded_rng):
        config = RetryConfig(base_delay_ms=100, jitter_ms=50)
        delays = [compute_delay_ms(1, config, seeded_rng) for _ in range(50)]
        assert all(100 <= delay <= 150 for delay in delays)


class TestExecuteWithRetry:
    @pytest.mark.asyncio
    async def test_always_failing_operation_is_tried_max_attempts(
        self, executor, fake_sleep, error_context
    ):
        error = ConnectionError("connection reset by peer")
        operation = FlakyOperation(failures=10, error=error)

        with pytest.raises(ConnectionError) as exc_info:
            await executor.execute_with_retry(operation, error_context)

        assert exc_info.value is error
        assert operation.calls == 3
        # base + base * multiplier, in seconds
        assert fake_sleep.total >= (100 + 100 * 2) / 1000

    @pytest.mark.asyncio
    async def test_minimum_wait_holds_with_jitter(self, fake_sleep, error_context):
        config = RetryConfig(max_attempts=3, base_delay_ms=1000, jitter_ms=100)
        executor = RetryExecutor(config, sleep=fake_sleep)
        operation = FlakyOperation(failures=10, error=TimeoutError("timed out"))

        with pytest.raises(TimeoutError):
            await executor.execute_with_retry(operation, error_context)

        assert operation.calls == 3
        assert len(fake_sleep.calls) == 2
        assert fake_sleep.total >= 3.0

    @pytest.mark.asyncio
    async def test_non_retryable_error_stops_immediately(
        self, executor, fake_sleep, error_context
    ):
        operation = FlakyOperation(failures=10, error=ValueError("401 Unauthorized"))

        with pytest.raises(ValueError, match="401"):
            await executor.execute_with_retry(operation, error_context)

        assert operation.calls == 1
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_success_after_retries_is_recorded(
        self, executor, metrics, error_context
    ):
        operation = FlakyOperation(failures=2, error=ConnectionError("network down"))

        result = await executor.execute_with_retry(operation, error_context)

        assert result == "ok"
        snapshot = metrics.get_metrics()
        assert snapshot.total_errors == 2
        assert snapshot.errors_by_type == {"network": 2}
        assert snapshot.successful_retries == 1
        assert [event.retry_count for event in metrics.events] == [0, 1]

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_recorded(self, executor, metrics, error_context):
        operation = FlakyOperation(failures=10, error=ConnectionError("network down"))

        with pytest.raises(ConnectionError):
            await executor.execute_with_retry(operation, error_context)

        assert metrics.get_metrics().failed_retries == 1

    @pytest.mark.asyncio
    async def test_per_call_overrides(self, executor, error_context):
        operation = FlakyOperation(failures=10, error=ConnectionError("network down"))

        with pytest.raises(ConnectionError):
            await executor.execute_with_retry(
                operation, error_context, {"max_attempts": 1}
            )

        assert operation.calls == 1
        assert executor.default_config.max_attempts == 3

    @pytest.mark.asyncio
    async def test_telemetry_counts_attempts(
        self, monkeypatch, fast_retry, fake_sleep, error_context
    ):
        monkeypatch.setattr(telemetry, "_TELEMETRY_ENABLED", True)
        reporter = InMemoryReporter()
        executor = RetryExecutor(
            fast_retry, sleep=fake_sleep, telemetry=TelemetryContext(reporter)
        )
        operation = FlakyOperation(failures=1, error=ConnectionError("network down"))

        await executor.execute_with_retry(operation, error_context)

        assert len(reporter.metrics["retry.attempts"]) == 2
        assert len(reporter.metrics["retry.retries"]) == 1

    @pytest.mark.asyncio
    async def test_stats_track_operations(self, executor, error_context):
        await executor.execute_with_retry(
            FlakyOperation(failures=1, error=ConnectionError("network down")),
            error_context,
        )

        stats = executor.retry_stats()
        assert stats["total_operations"] == 1
        assert stats["successful_operations"] == 1
        assert stats["total_attempts"] == 2
        assert stats["total_delay_ms"] == 100

    def test_update_default_config(self, executor):
        executor.update_default_config(max_attempts=5)
        assert executor.default_config.max_attempts == 5
        assert executor.default_config.base_delay_ms == 100


class TestExecuteMany:
    def _batch(self):
        return [
            (FlakyOperation(0, ValueError("unused"), "first"), ErrorContext("op1")),
            (FlakyOperation(5, ValueError("invalid input")), ErrorContext("op2")),
            (
                FlakyOperation(0, ValueError("unused"), "third"),
                ErrorContext("op3"),
                {"max_attempts": 1},
            ),
        ]

    @pytest.mark.asyncio
    async def test_sequential_collects_results_in_order(self, executor):
        results = await executor.execute_many(self._batch())

        assert results[0] == Success("first")
        assert isinstance(results[1], Failure)
        assert str(results[1].error) == "invalid input"
        assert results[2] == Success("third")

    @pytest.mark.asyncio
    async def test_parallel_preserves_input_order(self, executor):
        async def slow() -> str:
            await asyncio.sleep(0.01)
            return "slow"

        async def fast() -> str:
            return "fast"

        results = await executor.execute_many(
            [(slow, ErrorContext("slow")), (fast, ErrorContext("fast"))], parallel=True
        )

        assert results == [Success("slow"), Success("fast")]

    @pytest.mark.asyncio
    async def test_fail_fast_reraises(self, executor):
        with pytest.raises(ValueError, match="invalid input"):
            await executor.execute_many(self._batch(), fail_fast=True)

    @pytest.mark.asyncio
    async def test_parallel_fail_fast_reraises(self, executor):
        with pytest.raises(ValueError, match="invalid input"):
            await executor.execute_many(self._batch(), parallel=True, fail_fast=True)


class TestCircuitBreakerMode:
    @pytest.fixture
    def breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=2, recovery_timeout_ms=5000, monitoring_period_ms=10000
        )

    @pytest.mark.asyncio
    async def test_circuit_opens_after_threshold(
        self, executor, breaker_config, error_context
    ):
        failing = FlakyOperation(failures=100, error=PermissionError("denied"))
        for _ in range(2):
            with pytest.raises(PermissionError):
                await executor.execute_with_circuit_breaker(
                    failing, error_context, breaker_config
                )

        with pytest.raises(CircuitOpenError) as exc_info:
            await executor.execute_with_circuit_breaker(
                failing, error_context, breaker_config
            )

        assert failing.calls == 2
        assert exc_info.value.circuit_key == circuit_key(error_context)
        assert exc_info.value.retry_in_ms == 5000

    @pytest.mark.asyncio
    async def test_half_open_trial_closes_circuit(
        self, executor, breaker_config, fake_clock, error_context
    ):
        failing = FlakyOperation(failures=2, error=PermissionError("denied"))
        for _ in range(2):
            with pytest.raises(PermissionError):
                await executor.execute_with_circuit_breaker(
                    failing, error_context, breaker_config
                )
        breaker = executor.circuit(circuit_key(error_context))
        assert breaker.state is CircuitState.OPEN

        fake_clock.advance_ms(5000)
        assert breaker.state is CircuitState.HALF_OPEN

        result = await executor.execute_with_circuit_breaker(
            failing, error_context, breaker_config
        )

        assert result == "ok"
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_circuits_are_keyed_by_operation_and_file(
        self, executor, breaker_config
    ):
        failing = FlakyOperation(failures=100, error=PermissionError("denied"))
        ctx_a = ErrorContext("analyze", file_path="a.py")
        for _ in range(2):
            with pytest.raises(PermissionError):
                await executor.execute_with_circuit_breaker(failing, ctx_a, breaker_config)

        ok = FlakyOperation(failures=0, error=PermissionError("unused"))
        result = await executor.execute_with_circuit_breaker(
            ok, ErrorContext("analyze", file_path="b.py"), breaker_config
        )

        assert result == "ok"
        assert set(executor.retry_stats()["circuits"]) == {"analyze_a.py", "analyze_b.py"}

    @pytest.mark.asyncio
    async def test_half_open_runs_one_trial_for_concurrent_callers(
        self, executor, breaker_config, fake_clock, error_context
    ):
        failing = FlakyOperation(failures=100, error=PermissionError("denied"))
        for _ in range(2):
            with pytest.raises(PermissionError):
                await executor.execute_with_circuit_breaker(
                    failing, error_context, breaker_config
                )
        fake_clock.advance_ms(5000)

        release = asyncio.Event()
        calls = 0

        async def trial() -> str:
            nonlocal calls
            calls += 1
            await release.wait()
            return "ok"

        tasks = [
            asyncio.ensure_future(
                executor.execute_with_circuit_breaker(
                    trial, error_context, breaker_config
                )
            )
            for _ in range(5)
        ]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert calls == 1
        assert results.count("ok") == 1
        assert sum(isinstance(r, CircuitOpenError) for r in results) == 4
        breaker = executor.circuit(circuit_key(error_context))
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_trial_frees_the_half_open_slot(
        self, executor, breaker_config, fake_clock, error_context
    ):
        failing = FlakyOperation(failures=100, error=PermissionError("denied"))
        for _ in range(2):
            with pytest.raises(PermissionError):
                await executor.execute_with_circuit_breaker(
                    failing, error_context, breaker_config
                )
        fake_clock.advance_ms(5000)

        async def hang() -> str:
            await asyncio.Event().wait()
            return "never"

        task = asyncio.ensure_future(
            executor.execute_with_circuit_breaker(hang, error_context, breaker_config)
        )
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        breaker = executor.circuit(circuit_key(error_context))
        assert breaker.state is CircuitState.HALF_OPEN
        assert breaker.allow_request()

    def test_circuit_key_defaults_to_global(self):
        assert circuit_key(ErrorContext("fetch")) == "fetch_global"


def test_factory_uses_frozen_config():
    config = FrozenConfig(max_attempts=4, base_delay_ms=50, failure_threshold=2)

    executor = create_retry_executor(config)

    assert executor.default_config.max_attempts == 4
    assert executor.default_config.base_delay_ms == 50
    assert executor.breaker_config.failure_threshold == 2


def test_factory_resolves_ambient_config(monkeypatch):
    monkeypatch.setenv("LLM_RESILIENCE_MAX_ATTEMPTS", "6")
    assert create_retry_executor().default_config.max_attempts == 6
