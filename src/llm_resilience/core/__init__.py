"""Core types, registries and collaborator protocols."""

from .interfaces import ModelProvider, ResultCache, TargetShape
from .registry import StrategyRegistry
from .types import (
    CircuitBreakerConfig,
    CleaningResult,
    ErrorContext,
    ErrorKind,
    ErrorResolution,
    ErrorSeverity,
    Failure,
    Issue,
    IssueKind,
    ProcessingContext,
    ProcessingResult,
    RecoveryResult,
    Result,
    RetryConfig,
    Success,
    ValidationResult,
)

__all__ = [  # noqa: RUF022
    "StrategyRegistry",
    "TargetShape",
    "ModelProvider",
    "ResultCache",
    "Success",
    "Failure",
    "Result",
    "Issue",
    "IssueKind",
    "ErrorKind",
    "ErrorSeverity",
    "ErrorContext",
    "ErrorResolution",
    "RetryConfig",
    "CircuitBreakerConfig",
    "ProcessingContext",
    "CleaningResult",
    "RecoveryResult",
    "ValidationResult",
    "ProcessingResult",
]
