"""Resilient processing of LLM output: cleaning, JSON recovery, validation and retries."""

import importlib.metadata
import logging

from llm_resilience.config import FrozenConfig, ResolvedConfig, resolve_config
from llm_resilience.core.types import (
    CircuitBreakerConfig,
    ErrorContext,
    ErrorKind,
    ErrorResolution,
    Failure,
    Issue,
    IssueKind,
    ProcessingContext,
    ProcessingResult,
    Result,
    RetryConfig,
    Success,
)
from llm_resilience.exceptions import (
    CircuitOpenError,
    ConfigFileError,
    ConfigurationError,
    LLMResilienceError,
    MetricsImportError,
    ResponseCleaningError,
    ResponseParseError,
    ResponseValidationError,
)
from llm_resilience.metrics import ErrorMetricsCollector
from llm_resilience.processor import (
    LLMResponseProcessor,
    create_response_processor,
    process_response,
)
from llm_resilience.resilience import (
    CircuitBreaker,
    ErrorHandlingService,
    RetryExecutor,
    create_error_handling_service,
    create_retry_executor,
    is_retryable,
)
from llm_resilience.response import JSONRecoveryParser, ResponseCleaner
from llm_resilience.telemetry import InMemoryReporter, TelemetryContext, TelemetryReporter
from llm_resilience.validation import PydanticShape, ValidationEngine

try:
    __version__ = importlib.metadata.version("llm-resilience")
except importlib.metadata.PackageNotFoundError:
    __version__ = "development"

# Library logging stays silent unless the application configures handlers
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [  # noqa: RUF022
    # Processing
    "process_response",
    "LLMResponseProcessor",
    "create_response_processor",
    "ResponseCleaner",
    "JSONRecoveryParser",
    "ValidationEngine",
    "PydanticShape",
    # Resilience
    "RetryExecutor",
    "create_retry_executor",
    "CircuitBreaker",
    "ErrorHandlingService",
    "create_error_handling_service",
    "is_retryable",
    "ErrorMetricsCollector",
    # Configuration
    "resolve_config",
    "ResolvedConfig",
    "FrozenConfig",
    # Telemetry (extension points)
    "TelemetryContext",
    "TelemetryReporter",
    "InMemoryReporter",
    # Core types
    "Success",
    "Failure",
    "Result",
    "Issue",
    "IssueKind",
    "ErrorKind",
    "ErrorContext",
    "ErrorResolution",
    "RetryConfig",
    "CircuitBreakerConfig",
    "ProcessingContext",
    "ProcessingResult",
    # Exceptions
    "LLMResilienceError",
    "ConfigurationError",
    "ConfigFileError",
    "ResponseCleaningError",
    "ResponseParseError",
    "ResponseValidationError",
    "CircuitOpenError",
    "MetricsImportError",
]
