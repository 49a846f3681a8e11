"""Retry, circuit breaking and error handling around fallible operations."""

from .circuit_breaker import CircuitBreaker, CircuitState
from .classification import classify_error_kind, is_retryable
from .error_handler import (
    ErrorHandlerConfig,
    ErrorHandlingService,
    create_error_handling_service,
)
from .retry import RetryExecutor, circuit_key, compute_delay_ms, create_retry_executor

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ErrorHandlerConfig",
    "ErrorHandlingService",
    "RetryExecutor",
    "circuit_key",
    "classify_error_kind",
    "compute_delay_ms",
    "create_error_handling_service",
    "create_retry_executor",
    "is_retryable",
]
