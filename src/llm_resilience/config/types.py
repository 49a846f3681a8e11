"""Configuration data types, following the resolve-once, freeze-then-flow pattern."""

from collections.abc import Mapping
import dataclasses
from typing import Any, Literal, NamedTuple

from llm_resilience.core.types import CircuitBreakerConfig, RetryConfig

# --- Source Tracking Types ---

ConfigOrigin = Literal["programmatic", "env", "file", "default"]
SourceMap = Mapping[str, ConfigOrigin]


class ResolvedConfig(NamedTuple):
    """Configuration after resolution from all sources, before freezing.

    Carries the per-field origin map for auditing. Convert with `to_frozen()`
    before handing it to the factories.
    """

    max_attempts: int
    base_delay_ms: float
    max_delay_ms: float
    backoff_multiplier: float
    jitter_ms: float
    failure_threshold: int
    recovery_timeout_ms: float
    monitoring_period_ms: float
    max_events: int
    prose_marker_threshold: int
    enable_metrics: bool
    enable_retry: bool
    enable_graceful_degradation: bool

    origin: SourceMap

    def to_frozen(self) -> "FrozenConfig":
        values = self._asdict()
        values.pop("origin")
        return FrozenConfig(**values)

    def with_overrides(self, **overrides: Any) -> "ResolvedConfig":
        """Return a copy with programmatic overrides applied; unknown fields are ignored."""
        new_values = self._asdict()
        new_origin = dict(self.origin)
        for field, value in overrides.items():
            if field in new_values and field != "origin":
                new_values[field] = value
                new_origin[field] = "programmatic"
        new_values["origin"] = new_origin
        return ResolvedConfig(**new_values)

    def audit(self) -> str:
        """Render one ``field: origin:value`` line per field.

        Environment-sourced values are shown with the variable that set them.
        """
        lines = []
        for field in self._fields:
            if field == "origin" or field not in self.origin:
                continue
            origin = self.origin[field]
            value = getattr(self, field)
            if origin == "env":
                lines.append(f"{field}: env:LLM_RESILIENCE_{field.upper()}={value}")
            else:
                lines.append(f"{field}: {origin}:{value}")
        return "\n".join(lines)


@dataclasses.dataclass(frozen=True)
class FrozenConfig:
    """Immutable configuration consumed by the component factories."""

    max_attempts: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: float = 30000
    backoff_multiplier: float = 2.0
    jitter_ms: float = 100
    failure_threshold: int = 5
    recovery_timeout_ms: float = 60000
    monitoring_period_ms: float = 10000
    max_events: int = 1000
    prose_marker_threshold: int = 2
    enable_metrics: bool = True
    enable_retry: bool = True
    enable_graceful_degradation: bool = True

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            backoff_multiplier=self.backoff_multiplier,
            jitter_ms=self.jitter_ms,
        )

    def breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            recovery_timeout_ms=self.recovery_timeout_ms,
            monitoring_period_ms=self.monitoring_period_ms,
        )
