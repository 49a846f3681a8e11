"""Core data types shared by the processing and resilience layers.

Records that cross a stage boundary are frozen dataclasses: a stage never
mutates what it received, it returns a new value. The only mutable state in
the library lives inside the metrics collector and the circuit breakers.
"""

from __future__ import annotations

from collections.abc import Mapping
import dataclasses
from datetime import UTC, datetime
import enum
from types import MappingProxyType
import typing


def _freeze_mapping(m: Mapping[str, typing.Any] | None) -> Mapping[str, typing.Any]:
    """Return an immutable mapping view (empty when None)."""
    if isinstance(m, MappingProxyType):
        return m
    return MappingProxyType(dict(m or {}))


def _require(
    *,
    condition: bool,
    message: str,
    exc: type[Exception] = ValueError,
    field_name: str | None = None,
) -> None:
    """Centralized validation with optional field context for clearer errors."""
    if not condition:
        if field_name:
            raise exc(f"{field_name}: {message}")
        raise exc(message)


def utcnow() -> datetime:
    """Timezone-aware current time; the single clock for event timestamps."""
    return datetime.now(UTC)


# --- Result type ---

TSuccess = typing.TypeVar("TSuccess")
TFailure = typing.TypeVar("TFailure")


@dataclasses.dataclass(frozen=True, slots=True)
class Success[TSuccess]:
    """A successful outcome."""

    value: TSuccess


@dataclasses.dataclass(frozen=True, slots=True)
class Failure[TFailure]:
    """A failed outcome, carrying the error (or issue list)."""

    error: TFailure


type Result[S, F] = Success[S] | Failure[F]


# --- Validation issues ---


class IssueKind(enum.StrEnum):
    """Vendor-neutral classification of a validation failure."""

    INVALID_TYPE = "invalid_type"
    INVALID_ENUM = "invalid_enum"
    MISSING = "missing"
    INVALID_VALUE = "invalid_value"


@dataclasses.dataclass(frozen=True, slots=True)
class Issue:
    """A single reason a value does not satisfy a target shape."""

    field_path: tuple[str, ...]
    kind: IssueKind
    expected: str | None = None
    received: str | None = None
    message: str = ""

    @property
    def path(self) -> str:
        """Dotted field path, e.g. ``issues.0.line``."""
        return ".".join(self.field_path)

    @property
    def is_top_level(self) -> bool:
        return len(self.field_path) == 1


# --- Error classification ---


class ErrorKind(enum.StrEnum):
    """Error categories tracked by the metrics collector."""

    VALIDATION = "validation"
    PARSE = "parse"
    LLM_PROVIDER = "llm_provider"
    API_REQUEST = "api_request"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    RATE_LIMIT = "rate_limit"
    FILE_NOT_FOUND = "file_not_found"
    TIMEOUT = "timeout"
    SERVICE_UNAVAILABLE = "service_unavailable"
    GIT_OPERATION = "git_operation"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class ErrorSeverity(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclasses.dataclass(frozen=True, slots=True)
class ErrorContext:
    """Per-attempt metadata threaded through retry and metrics calls."""

    operation: str
    attempt_number: int = 1
    timestamp: datetime = dataclasses.field(default_factory=utcnow)
    file_path: str | None = None
    metadata: Mapping[str, typing.Any] = dataclasses.field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        _require(
            condition=isinstance(self.operation, str) and bool(self.operation),
            message="must be a non-empty str",
            field_name="operation",
        )
        _require(
            condition=self.attempt_number >= 1,
            message="must be >= 1",
            field_name="attempt_number",
        )
        object.__setattr__(self, "metadata", _freeze_mapping(self.metadata))

    def for_attempt(self, attempt_number: int) -> ErrorContext:
        """Return a fresh context for the given attempt, stamped now."""
        return dataclasses.replace(
            self, attempt_number=attempt_number, timestamp=utcnow()
        )


@dataclasses.dataclass(frozen=True, slots=True)
class ErrorResolution:
    """Outcome chosen by an error-handling strategy."""

    strategy: typing.Literal["retry", "fallback", "fail", "transform"]
    message: str
    should_log: bool = True
    data: typing.Any = None
    retry_after: float | None = None
    metadata: Mapping[str, typing.Any] = dataclasses.field(
        default_factory=lambda: MappingProxyType({})
    )


# --- Retry configuration ---


@dataclasses.dataclass(frozen=True, slots=True)
class RetryConfig:
    """Backoff parameters; delays are in milliseconds."""

    max_attempts: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: float = 30000
    backoff_multiplier: float = 2.0
    jitter_ms: float = 100

    def __post_init__(self) -> None:
        _require(
            condition=self.max_attempts >= 1,
            message="must be >= 1",
            field_name="max_attempts",
        )
        _require(
            condition=self.base_delay_ms >= 0 and self.max_delay_ms >= 0,
            message="delays must be non-negative",
            field_name="base_delay_ms",
        )
        _require(
            condition=self.backoff_multiplier >= 1,
            message="must be >= 1",
            field_name="backoff_multiplier",
        )
        _require(
            condition=self.jitter_ms >= 0,
            message="must be non-negative",
            field_name="jitter_ms",
        )

    def merged(
        self, overrides: RetryConfig | Mapping[str, typing.Any] | None
    ) -> RetryConfig:
        """Return a config with per-call overrides applied.

        A full `RetryConfig` replaces this one; a mapping overrides only the
        keys it names. Unknown keys raise `TypeError`.
        """
        if overrides is None:
            return self
        if isinstance(overrides, RetryConfig):
            return overrides
        return dataclasses.replace(self, **dict(overrides))


@dataclasses.dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Thresholds for the circuit-breaker state machine (milliseconds)."""

    failure_threshold: int = 5
    recovery_timeout_ms: float = 60000
    monitoring_period_ms: float = 10000

    def __post_init__(self) -> None:
        _require(
            condition=self.failure_threshold >= 1,
            message="must be >= 1",
            field_name="failure_threshold",
        )


# --- Processing records ---


@dataclasses.dataclass(frozen=True, slots=True)
class ProcessingContext:
    """Caller-supplied context for one `process_response` call."""

    provider: str = "unknown"
    model: str | None = None
    prompt: str | None = None
    attempt_number: int = 1
    timestamp: datetime = dataclasses.field(default_factory=utcnow)
    request_id: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class CleaningResult:
    cleaned: str
    applied: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True, slots=True)
class RecoveryResult:
    """Outcome of a single validation recovery strategy."""

    success: bool
    data: typing.Any = None
    issues: tuple[tuple[Issue, ...], ...] = ()
    transformations_applied: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of the validation engine.

    `issues` holds every issue list produced along the way: the initial
    validation failure first, then one entry per failed recovery attempt.
    """

    success: bool
    original_data: typing.Any
    data: typing.Any = None
    transformations_applied: tuple[str, ...] = ()
    issues: tuple[tuple[Issue, ...], ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def all_issues(self) -> tuple[Issue, ...]:
        return tuple(issue for group in self.issues for issue in group)


@dataclasses.dataclass(frozen=True, slots=True)
class ProcessingResult[T]:
    """Single result record produced by `process_response`."""

    success: bool
    data: T | None = None
    errors: tuple[Exception, ...] = ()
    warnings: tuple[str, ...] = ()
    fallback_used: bool = False
    transformations_applied: tuple[str, ...] = ()
    processing_time: float = 0.0
    original_length: int = 0
    cleaned_length: int | None = None
