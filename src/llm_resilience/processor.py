"""Processing orchestrator: cleaner, then parser, then validation engine.

`process_response` never raises. Any stage failure becomes a failed
`ProcessingResult` with ``fallback_used=True``, so the caller can switch to
its own non-LLM analysis.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from llm_resilience.core.types import (
    ErrorContext,
    ProcessingContext,
    ProcessingResult,
)
from llm_resilience.exceptions import ResponseParseError, ResponseValidationError
from llm_resilience.response import JSONRecoveryParser, ResponseCleaner
from llm_resilience.telemetry import TelemetryContext, TelemetryContextProtocol
from llm_resilience.validation import ValidationEngine

if TYPE_CHECKING:
    from llm_resilience.config import FrozenConfig
    from llm_resilience.core.interfaces import TargetShape
    from llm_resilience.metrics.collector import ErrorMetricsCollector

log = logging.getLogger(__name__)

FALLBACK_WARNING = "Falling back to rule-based analysis"
PREVIEW_CHARS = 200


def _error_kind(error: Exception) -> str:
    match error:
        case ResponseParseError():
            return "parse"
        case ResponseValidationError():
            return "validation"
        case _:
            return "unknown"


class LLMResponseProcessor:
    """Turns raw model output into a validated record, or a clean failure.

    Args:
        cleaner: Cleaning stage; a default `ResponseCleaner` when omitted.
        parser: JSON parsing stage with recovery.
        engine: Validation engine with transformers and recovery strategies.
        metrics: Optional collector; stage failures are recorded on it.
        telemetry: Telemetry context timing the three stages.
    """

    def __init__(
        self,
        cleaner: ResponseCleaner | None = None,
        parser: JSONRecoveryParser | None = None,
        engine: ValidationEngine | None = None,
        *,
        metrics: ErrorMetricsCollector | None = None,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        self.cleaner = cleaner or ResponseCleaner()
        self.parser = parser or JSONRecoveryParser()
        self.engine = engine or ValidationEngine()
        self.metrics = metrics
        self._tele = telemetry or TelemetryContext()
        self._processing_metrics: dict[str, float] = {}

    def process_response[T](
        self,
        raw: str,
        shape: TargetShape[T],
        context: ProcessingContext | None = None,
    ) -> ProcessingResult[T]:
        context = context or ProcessingContext()
        start = time.perf_counter()
        original_length = len(raw) if isinstance(raw, str) else 0
        cleaned_length: int | None = None
        log.debug(
            "Processing LLM response (%d chars, provider=%s, model=%s, attempt=%d)",
            original_length,
            context.provider,
            context.model,
            context.attempt_number,
        )

        try:
            with self._tele("llm_resilience.process", provider=context.provider):
                with self._tele("clean"):
                    cleaning = self.cleaner.clean(raw)
                cleaned_length = len(cleaning.cleaned)
                with self._tele("parse"):
                    parsed = self.parser.parse(cleaning.cleaned)
                with self._tele("validate"):
                    validation = self.engine.validate(parsed.value, shape)

            if not validation.success:
                issues = validation.all_issues
                detail = issues[0].message if issues else "unknown error"
                raise ResponseValidationError(
                    f"Validation failed against {shape.describe()}: {detail}", issues
                )
        except Exception as error:
            elapsed = time.perf_counter() - start
            self._update_processing_metrics(context.provider, elapsed, success=False)
            log.error(
                "LLM response processing failed after %.3fs (provider=%s, model=%s, "
                "attempt=%d): %s (preview: %r)",
                elapsed,
                context.provider,
                context.model,
                context.attempt_number,
                error,
                raw[:PREVIEW_CHARS] if isinstance(raw, str) else raw,
            )
            if self.metrics is not None:
                self.metrics.record_error(_error_kind(error), self._error_context(context))
            return ProcessingResult(
                success=False,
                errors=(error,),
                warnings=(FALLBACK_WARNING,),
                fallback_used=True,
                processing_time=elapsed,
                original_length=original_length,
                cleaned_length=cleaned_length,
            )

        elapsed = time.perf_counter() - start
        self._update_processing_metrics(context.provider, elapsed, success=True)
        transformations = (
            *cleaning.applied,
            *((parsed.strategy,) if parsed.strategy else ()),
            *validation.transformations_applied,
        )
        log.debug(
            "LLM response processed in %.3fs (transformations: %s)",
            elapsed,
            transformations,
        )
        return ProcessingResult(
            success=True,
            data=validation.data,
            warnings=validation.warnings,
            transformations_applied=transformations,
            processing_time=elapsed,
            original_length=original_length,
            cleaned_length=cleaned_length,
        )

    def _error_context(self, context: ProcessingContext) -> ErrorContext:
        metadata: dict[str, Any] = {"provider": context.provider}
        if context.model:
            metadata["model"] = context.model
        if context.request_id:
            metadata["request_id"] = context.request_id
        return ErrorContext(
            operation="process_response",
            attempt_number=max(context.attempt_number, 1),
            metadata=metadata,
        )

    def _update_processing_metrics(
        self, provider: str, elapsed: float, *, success: bool
    ) -> None:
        m = self._processing_metrics
        outcome_key = f"{provider}_{'success' if success else 'failure'}"
        m[outcome_key] = m.get(outcome_key, 0) + 1

        total = m.get(f"{provider}_total_requests", 0)
        average = m.get(f"{provider}_avg_time", 0.0)
        m[f"{provider}_avg_time"] = (average * total + elapsed) / (total + 1)
        m[f"{provider}_total_requests"] = total + 1

    def get_processing_metrics(self) -> dict[str, float]:
        """Per-provider counters: ``<provider>_success``, ``_failure``,
        ``_total_requests`` and ``_avg_time`` (seconds)."""
        return dict(self._processing_metrics)

    def reset_processing_metrics(self) -> None:
        self._processing_metrics.clear()


def create_response_processor(
    config: FrozenConfig | None = None,
    *,
    metrics: ErrorMetricsCollector | None = None,
    telemetry: TelemetryContextProtocol | None = None,
) -> LLMResponseProcessor:
    """Build a processor from resolved configuration (ambient when None)."""
    if config is None:
        from llm_resilience.config import resolve_config

        config = resolve_config().to_frozen()
    if metrics is None and config.enable_metrics:
        from llm_resilience.metrics.collector import ErrorMetricsCollector

        metrics = ErrorMetricsCollector(config.max_events)
    return LLMResponseProcessor(
        ResponseCleaner(prose_marker_threshold=config.prose_marker_threshold),
        metrics=metrics,
        telemetry=telemetry,
    )


def process_response[T](
    raw: str,
    shape: TargetShape[T],
    context: ProcessingContext | None = None,
) -> ProcessingResult[T]:
    """One-shot processing with a default processor and no metrics."""
    return LLMResponseProcessor().process_response(raw, shape, context)
