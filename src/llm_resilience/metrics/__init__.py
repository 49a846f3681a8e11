"""Error and recovery metrics collection."""

from .collector import (
    ErrorEvent,
    ErrorMetrics,
    ErrorMetricsCollector,
    determine_severity,
    to_error_kind,
)

__all__ = [
    "ErrorEvent",
    "ErrorMetrics",
    "ErrorMetricsCollector",
    "determine_severity",
    "to_error_kind",
]
