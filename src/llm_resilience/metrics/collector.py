"""Error and recovery metrics.

The collector keeps running counters and a bounded buffer of recent
`ErrorEvent`s. It is not thread-safe: all updates are expected to come from
a single event loop.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
import json
import logging
from typing import Annotated, Any
import uuid

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from llm_resilience.core.types import (
    ErrorContext,
    ErrorKind,
    ErrorResolution,
    ErrorSeverity,
    utcnow,
)
from llm_resilience.exceptions import MetricsImportError

log = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 1000
TOP_N = 10
RECENT_EVENTS = 50

_KIND_ALIASES: dict[str, ErrorKind] = {
    "llm": ErrorKind.LLM_PROVIDER,
    "api": ErrorKind.API_REQUEST,
    "git": ErrorKind.GIT_OPERATION,
}
_HIGH_SEVERITY = frozenset(
    {ErrorKind.AUTHENTICATION, ErrorKind.PERMISSION, ErrorKind.CONFIGURATION}
)
_MEDIUM_SEVERITY = frozenset(
    {ErrorKind.API_REQUEST, ErrorKind.LLM_PROVIDER, ErrorKind.NETWORK, ErrorKind.TIMEOUT}
)


def _assume_utc(value: datetime) -> datetime:
    """Naive timestamps (e.g. from older exports) are read as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_assume_utc)]


def to_error_kind(name: str) -> ErrorKind:
    """Map a free-form kind name onto `ErrorKind`; unknown names map to UNKNOWN."""
    lowered = name.lower()
    if lowered in _KIND_ALIASES:
        return _KIND_ALIASES[lowered]
    try:
        return ErrorKind(lowered)
    except ValueError:
        return ErrorKind.UNKNOWN


def determine_severity(kind: ErrorKind, context: ErrorContext) -> ErrorSeverity:
    if kind in _HIGH_SEVERITY:
        return ErrorSeverity.HIGH
    if kind in _MEDIUM_SEVERITY:
        return ErrorSeverity.MEDIUM
    if context.attempt_number > 3:
        return ErrorSeverity.HIGH
    return ErrorSeverity.LOW


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorEvent(_CamelModel):
    id: str
    kind: ErrorKind
    severity: ErrorSeverity
    operation: str
    timestamp: UtcDatetime
    resolved: bool = False
    resolution_strategy: str | None = None
    retry_count: int = 0
    total_duration: float = 0.0
    file_path: str | None = None


class ErrorMetrics(_CamelModel):
    total_errors: int = 0
    errors_by_type: dict[str, int] = Field(default_factory=dict)
    errors_by_operation: dict[str, int] = Field(default_factory=dict)
    retry_attempts: int = 0
    successful_retries: int = 0
    failed_retries: int = 0
    fallbacks_used: int = 0
    fallback_successes: int = 0
    fallback_failures: int = 0
    average_retry_delay: float = 0.0
    error_recovery_rate: float = 0.0
    last_reset_time: UtcDatetime = Field(default_factory=utcnow)


class ErrorMetricsCollector:
    """Collects error, retry and fallback outcomes for one service instance."""

    def __init__(
        self,
        max_events: int = DEFAULT_MAX_EVENTS,
        *,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        if max_events < 1:
            raise ValueError("max_events must be >= 1")
        self.max_events = max_events
        self._now = now
        self._metrics = ErrorMetrics(last_reset_time=now())
        self._events: deque[ErrorEvent] = deque(maxlen=max_events)

    # --- Recording ---

    def record_error(self, kind: str, context: ErrorContext) -> ErrorEvent:
        m = self._metrics
        m.total_errors += 1
        m.errors_by_type[kind] = m.errors_by_type.get(kind, 0) + 1
        m.errors_by_operation[context.operation] = (
            m.errors_by_operation.get(context.operation, 0) + 1
        )

        error_kind = to_error_kind(kind)
        event = ErrorEvent(
            id=f"error_{int(context.timestamp.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
            kind=error_kind,
            severity=determine_severity(error_kind, context),
            operation=context.operation,
            timestamp=context.timestamp,
            retry_count=context.attempt_number - 1,
            file_path=context.file_path,
        )
        self._events.append(event)
        log.debug(
            "Recorded %s error in %s (total %d)",
            kind,
            context.operation,
            m.total_errors,
        )
        return event

    def record_resolution(self, kind: str, resolution: ErrorResolution) -> None:
        event = self._latest_unresolved(to_error_kind(kind))
        if event is not None:
            event.resolved = True
            event.resolution_strategy = resolution.strategy
            event.total_duration = (
                self._now() - event.timestamp
            ).total_seconds() * 1000

        m = self._metrics
        if resolution.strategy == "retry":
            m.retry_attempts += 1
            if resolution.retry_after:
                # Running mean over every retry resolution so far
                m.average_retry_delay = (
                    m.average_retry_delay * (m.retry_attempts - 1)
                    + resolution.retry_after
                ) / m.retry_attempts
        self._update_recovery_rate()
        log.debug("Recorded %s resolution for %s errors", resolution.strategy, kind)

    def record_successful_retry(self, context: ErrorContext) -> None:
        self._metrics.successful_retries += 1
        self._update_recovery_rate()
        log.debug(
            "Recorded successful retry for %s (attempt %d)",
            context.operation,
            context.attempt_number,
        )

    def record_failed_retry(self, context: ErrorContext) -> None:
        self._metrics.failed_retries += 1
        self._update_recovery_rate()
        log.debug(
            "Recorded failed retry for %s (attempt %d)",
            context.operation,
            context.attempt_number,
        )

    def record_fallback_success(self, context: ErrorContext) -> None:
        self._metrics.fallbacks_used += 1
        self._metrics.fallback_successes += 1
        self._update_recovery_rate()
        log.debug("Recorded successful fallback for %s", context.operation)

    def record_fallback_failure(self, context: ErrorContext) -> None:
        self._metrics.fallbacks_used += 1
        self._metrics.fallback_failures += 1
        self._update_recovery_rate()
        log.debug("Recorded failed fallback for %s", context.operation)

    # --- Reading ---

    def get_metrics(self) -> ErrorMetrics:
        """Snapshot of the counters; mutating it does not affect the collector."""
        return self._metrics.model_copy(deep=True)

    @property
    def events(self) -> tuple[ErrorEvent, ...]:
        return tuple(self._events)

    def get_detailed_stats(self) -> dict[str, Any]:
        total = self._metrics.total_errors

        def ranked(counts: dict[str, int], label: str) -> list[dict[str, Any]]:
            rows = sorted(counts.items(), key=lambda item: item[1], reverse=True)
            return [
                {
                    label: name,
                    "count": count,
                    "percentage": count / total * 100 if total else 0.0,
                }
                for name, count in rows[:TOP_N]
            ]

        recent = sorted(
            list(self._events)[-RECENT_EVENTS:],
            key=lambda event: event.timestamp,
            reverse=True,
        )
        return {
            "metrics": self.get_metrics(),
            "top_error_types": ranked(self._metrics.errors_by_type, "type"),
            "top_operations": ranked(self._metrics.errors_by_operation, "operation"),
            "recent_events": [event.model_copy() for event in recent],
            "recovery_rate_by_type": self._recovery_rate_by_kind(),
        }

    def reset(self) -> None:
        self._metrics = ErrorMetrics(last_reset_time=self._now())
        self._events.clear()
        log.info("Error metrics reset")

    # --- Persistence ---

    def export_metrics(self) -> str:
        """Serialize to the ``{metrics, events, exportTime}`` JSON object."""
        payload = {
            "metrics": self._metrics.model_dump(mode="json", by_alias=True),
            "events": [
                event.model_dump(mode="json", by_alias=True) for event in self._events
            ],
            "exportTime": self._now().isoformat(),
        }
        return json.dumps(payload, indent=2)

    def import_metrics(self, blob: str) -> None:
        """Merge exported metrics over the current ones and replace the events.

        Raises:
            MetricsImportError: If `blob` is not a valid export.
        """
        try:
            data = json.loads(blob)
            if not isinstance(data, dict):
                raise TypeError("top-level value must be an object")

            metrics = self._metrics
            if data.get("metrics") is not None:
                if not isinstance(data["metrics"], dict):
                    raise TypeError("'metrics' must be an object")
                merged = metrics.model_dump(by_alias=True) | data["metrics"]
                metrics = ErrorMetrics.model_validate(merged)

            events = None
            if isinstance(data.get("events"), list):
                events = [ErrorEvent.model_validate(raw) for raw in data["events"]]
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            log.error("Failed to import metrics: %s", e)
            raise MetricsImportError(f"Invalid metrics data format: {e}") from e

        self._metrics = metrics
        if events is not None:
            self._events = deque(events, maxlen=self.max_events)
        log.info("Error metrics imported (%d events)", len(self._events))

    # --- Internals ---

    def _latest_unresolved(self, kind: ErrorKind) -> ErrorEvent | None:
        for event in reversed(self._events):
            if event.kind is kind and not event.resolved:
                return event
        return None

    def _update_recovery_rate(self) -> None:
        m = self._metrics
        attempts = (
            m.successful_retries
            + m.failed_retries
            + m.fallback_successes
            + m.fallback_failures
        )
        if attempts == 0:
            m.error_recovery_rate = 0.0
            return
        recovered = m.successful_retries + m.fallback_successes
        m.error_recovery_rate = recovered / attempts * 100

    def _recovery_rate_by_kind(self) -> dict[str, float]:
        totals: dict[str, list[int]] = {}
        for event in self._events:
            counts = totals.setdefault(event.kind.value, [0, 0])
            counts[0] += 1
            counts[1] += event.resolved
        return {
            kind: round(resolved / seen * 100, 2) for kind, (seen, resolved) in totals.items()
        }
