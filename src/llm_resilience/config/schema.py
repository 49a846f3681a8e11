"""Configuration schema and validation using Pydantic.

The settings schema validates and coerces values gathered from every source
(environment, files, programmatic) into the right types, with defaults.
"""

from typing import Any, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "LLM_RESILIENCE_"


class ResilienceSettings(BaseSettings):
    """Pydantic settings schema for llm_resilience.

    Environment variables use the ``LLM_RESILIENCE_`` prefix, e.g.
    ``LLM_RESILIENCE_MAX_ATTEMPTS=5``.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=None,
        case_sensitive=False,
        extra="ignore",  # Meta variables such as LLM_RESILIENCE_PROFILE share the prefix
    )

    # --- Retry ---

    max_attempts: int = Field(default=3, ge=1, description="Attempts per operation")
    base_delay_ms: float = Field(default=1000, ge=0, description="First backoff delay")
    max_delay_ms: float = Field(default=30000, ge=0, description="Backoff cap")
    backoff_multiplier: float = Field(default=2.0, ge=1)
    jitter_ms: float = Field(default=100, ge=0, description="Upper bound of added jitter")

    # --- Circuit breaker ---

    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout_ms: float = Field(default=60000, ge=0)
    monitoring_period_ms: float = Field(default=10000, ge=0)

    # --- Processing and metrics ---

    max_events: int = Field(default=1000, ge=1, description="Metrics event buffer size")
    prose_marker_threshold: int = Field(
        default=2, ge=1, description="Markers needed before text is treated as prose"
    )
    enable_metrics: bool = True
    enable_retry: bool = True
    enable_graceful_degradation: bool = True

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> Self:
        """Ensure the backoff cap is not below the first delay."""
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"base_delay_ms ({self.base_delay_ms})"
            )
        return self

    @classmethod
    def field_defaults(cls) -> dict[str, Any]:
        """Schema defaults, without reading the environment."""
        return {
            name: info.get_default(call_default_factory=True)
            for name, info in cls.model_fields.items()
        }

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()
