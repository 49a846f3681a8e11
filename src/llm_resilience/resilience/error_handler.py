"""Error-handling service: per-kind strategies plus graceful degradation.

Validation, LLM and API errors are routed to a registered strategy that
decides on a resolution (retry, fallback, fail or transform). Resolutions are
recorded on the metrics collector. `execute_with_error_handling` runs an
operation through the retry executor and falls back to a secondary operation
when it still fails.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import dataclasses
import logging
import random
from typing import TYPE_CHECKING, Any

from llm_resilience.core.types import ErrorContext, ErrorResolution, RetryConfig
from llm_resilience.metrics.collector import ErrorMetrics, ErrorMetricsCollector

from .classification import is_retryable
from .retry import Operation, RetryExecutor

if TYPE_CHECKING:
    from llm_resilience.config import FrozenConfig

log = logging.getLogger(__name__)

type ErrorStrategy = Callable[[BaseException, ErrorContext], Awaitable[ErrorResolution]]


@dataclasses.dataclass(frozen=True, slots=True)
class ErrorHandlerConfig:
    enable_metrics: bool = True
    enable_retry: bool = True
    enable_graceful_degradation: bool = True
    retry: RetryConfig = dataclasses.field(default_factory=RetryConfig)


class ErrorHandlingService:
    """Routes errors to strategies and coordinates retry and fallback."""

    def __init__(
        self,
        config: ErrorHandlerConfig | None = None,
        *,
        metrics: ErrorMetricsCollector | None = None,
        retry: RetryExecutor | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or ErrorHandlerConfig()
        self.metrics = metrics or ErrorMetricsCollector()
        self.retry = retry or RetryExecutor(
            self.config.retry,
            metrics=self.metrics if self.config.enable_metrics else None,
        )
        self._rng = rng or random.Random()
        self._strategies: dict[str, ErrorStrategy] = {
            "validation": self._validation_strategy,
            "llm": self._llm_strategy,
            "api": self._api_strategy,
        }

    # --- Handlers ---

    async def handle_validation_error(
        self, error: BaseException, context: ErrorContext
    ) -> ErrorResolution:
        return await self._handle(
            "validation",
            error,
            context,
            ErrorResolution(
                strategy="fallback",
                message="Validation failed, using fallback processing",
            ),
        )

    async def handle_llm_error(
        self, error: BaseException, context: ErrorContext
    ) -> ErrorResolution:
        return await self._handle(
            "llm",
            error,
            context,
            ErrorResolution(
                strategy="fallback",
                message="LLM provider unavailable, falling back to rule-based analysis",
            ),
        )

    async def handle_api_error(
        self, error: BaseException, context: ErrorContext
    ) -> ErrorResolution:
        return await self._handle(
            "api",
            error,
            context,
            ErrorResolution(
                strategy="retry",
                message="API request failed, will retry",
                retry_after=self.retry_delay_ms(context.attempt_number),
            ),
        )

    async def _handle(
        self,
        kind: str,
        error: BaseException,
        context: ErrorContext,
        default: ErrorResolution,
    ) -> ErrorResolution:
        context = context.for_attempt(context.attempt_number)
        log.debug("Handling %s error in %s: %s", kind, context.operation, error)
        if self.config.enable_metrics:
            self.metrics.record_error(kind, context)

        strategy = self._strategies.get(kind)
        if strategy is None:
            return default
        try:
            resolution = await strategy(error, context)
        except Exception as strategy_error:
            log.error(
                "%s error strategy failed for %s: %s (original error: %s)",
                kind,
                context.operation,
                strategy_error,
                error,
            )
            return default

        if self.config.enable_metrics:
            self.metrics.record_resolution(kind, resolution)
        if resolution.should_log:
            log.info("Resolved %s error with %s: %s", kind, resolution.strategy, resolution.message)
        return resolution

    # --- Default strategies ---

    async def _validation_strategy(
        self, error: BaseException, context: ErrorContext
    ) -> ErrorResolution:
        issues = getattr(error, "issues", None)
        if issues:
            paths = [getattr(issue, "path", str(issue)) for issue in issues]
            return ErrorResolution(
                strategy="transform",
                message=f"Validation failed for fields: {', '.join(paths)}",
                data={
                    "validation_issues": [
                        {"path": path, "message": getattr(issue, "message", "")}
                        for path, issue in zip(paths, issues, strict=True)
                    ]
                },
            )
        return ErrorResolution(
            strategy="fallback",
            message="Validation failed, using default values",
        )

    async def _llm_strategy(
        self, error: BaseException, context: ErrorContext
    ) -> ErrorResolution:
        if self.is_retryable(error):
            return ErrorResolution(
                strategy="retry",
                message="LLM request failed, will retry",
                retry_after=self.retry_delay_ms(context.attempt_number),
            )
        return ErrorResolution(
            strategy="fallback",
            message="LLM provider unavailable, using rule-based analysis",
        )

    async def _api_strategy(
        self, error: BaseException, context: ErrorContext
    ) -> ErrorResolution:
        if self.is_retryable(error):
            delay = self.retry_delay_ms(context.attempt_number)
            return ErrorResolution(
                strategy="retry",
                message=f"API request failed, retrying in {delay:.0f}ms",
                retry_after=delay,
            )
        return ErrorResolution(
            strategy="fail",
            message="API request failed with non-retryable error",
        )

    # --- Execution ---

    async def execute_with_error_handling[T](
        self,
        operation: Operation[T],
        context: ErrorContext,
        *,
        fallback: Operation[T] | None = None,
        enable_retry: bool | None = None,
        enable_fallback: bool | None = None,
        max_attempts: int | None = None,
    ) -> T:
        """Run `operation`, retrying and then falling back as configured.

        Raises:
            Exception: The operation's error when there is no fallback, or
                when the fallback fails too.
        """
        if enable_retry is None:
            enable_retry = self.config.enable_retry
        if enable_fallback is None:
            enable_fallback = self.config.enable_graceful_degradation
        context = context.for_attempt(context.attempt_number)

        try:
            if enable_retry:
                overrides = {"max_attempts": max_attempts} if max_attempts else None
                return await self.retry.execute_with_retry(operation, context, overrides)
            return await operation()
        except Exception as error:
            log.warning(
                "%s failed (retries %s): %s",
                context.operation,
                "enabled" if enable_retry else "disabled",
                error,
            )
            if not (enable_fallback and fallback is not None):
                raise

            log.info("Attempting fallback operation for %s", context.operation)
            try:
                result = await fallback()
            except Exception as fallback_error:
                log.error(
                    "Fallback for %s also failed: %s",
                    context.operation,
                    fallback_error,
                )
                if self.config.enable_metrics:
                    self.metrics.record_fallback_failure(context)
                raise error from fallback_error

            if self.config.enable_metrics:
                self.metrics.record_fallback_success(context)
            return result

    # --- Management ---

    def register_error_handler(self, kind: str, strategy: ErrorStrategy) -> None:
        log.debug("Registering error handler for %s", kind)
        self._strategies[kind] = strategy

    def get_error_metrics(self) -> ErrorMetrics:
        return self.metrics.get_metrics()

    def reset_metrics(self) -> None:
        self.metrics.reset()

    def is_retryable(self, error: BaseException) -> bool:
        return is_retryable(error)

    def retry_delay_ms(self, attempt_number: int) -> float:
        """Backoff for `attempt_number` plus up to 10% jitter."""
        cfg = self.config.retry
        delay = min(
            cfg.base_delay_ms * cfg.backoff_multiplier ** (attempt_number - 1),
            cfg.max_delay_ms,
        )
        return delay + self._rng.random() * 0.1 * delay


def create_error_handling_service(
    config: FrozenConfig | None = None, **kwargs: Any
) -> ErrorHandlingService:
    """Build a service from resolved configuration (ambient when None)."""
    if config is None:
        from llm_resilience.config import resolve_config

        config = resolve_config().to_frozen()
    handler_config = ErrorHandlerConfig(
        enable_metrics=config.enable_metrics,
        enable_retry=config.enable_retry,
        enable_graceful_degradation=config.enable_graceful_degradation,
        retry=config.retry_config(),
    )
    kwargs.setdefault("metrics", ErrorMetricsCollector(config.max_events))
    return ErrorHandlingService(handler_config, **kwargs)
