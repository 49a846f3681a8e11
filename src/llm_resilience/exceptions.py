"""Exception taxonomy for LLM response processing and resilience."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
import typing

if typing.TYPE_CHECKING:
    from llm_resilience.core.types import Issue


class LLMResilienceError(Exception):
    """Base exception for all llm_resilience errors."""


class ConfigurationError(LLMResilienceError):
    """Raised when configuration resolution or validation fails."""


class ConfigFileError(ConfigurationError):
    """Raised when a configuration file exists but cannot be loaded."""

    def __init__(
        self, file_path: Path, message: str, cause: Exception | None = None
    ) -> None:
        """Initialize with file path, message, and optional cause."""
        self.file_path = file_path
        self.message = message
        self.cause = cause
        super().__init__(f"Config file error in {file_path}: {message}")


class ResponseCleaningError(LLMResilienceError):
    """Raised when a cleaning step cannot convert the text.

    Never fatal: the cleaner logs it and continues with the unconverted text.
    """


class ResponseParseError(LLMResilienceError):
    """Raised when cleaned text cannot be parsed as JSON, even after recovery.

    Attributes:
        text: The cleaned text as it was before any recovery attempt.
        original_error: The first `json.JSONDecodeError`.
        strategy: Name of the recovery strategy tried, if any matched.
    """

    def __init__(
        self,
        message: str,
        *,
        text: str,
        original_error: Exception | None = None,
        strategy: str | None = None,
    ) -> None:
        super().__init__(message)
        self.text = text
        self.original_error = original_error
        self.strategy = strategy


class ResponseValidationError(LLMResilienceError):
    """Raised when a parsed value cannot be made to satisfy the target shape."""

    def __init__(self, message: str, issues: Sequence[Issue] = ()) -> None:
        super().__init__(message)
        self.issues = tuple(issues)


class CircuitOpenError(LLMResilienceError):
    """Raised when a call is rejected because its circuit is open."""

    retryable = False

    def __init__(self, circuit_key: str, retry_in_ms: float) -> None:
        super().__init__(
            f"Circuit '{circuit_key}' is open; retry in {retry_in_ms:.0f}ms"
        )
        self.circuit_key = circuit_key
        self.retry_in_ms = retry_in_ms


class MetricsImportError(LLMResilienceError):
    """Raised when a metrics snapshot cannot be imported."""
