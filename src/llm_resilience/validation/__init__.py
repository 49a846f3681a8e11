"""Validation of parsed values against target shapes."""

from .engine import (
    FallbackValidation,
    ValidationEngine,
    ValidationRecoveryStrategy,
)
from .shapes import (
    FLEXIBLE_SHAPE,
    PARTIAL_SHAPE,
    STRICT_SHAPE,
    VALIDATION_MODES,
    CodeIssue,
    FlexibleReviewAnalysis,
    PartialReviewAnalysis,
    PydanticShape,
    ReviewAnalysis,
    ValidationMode,
    get_schema,
    issues_from_error,
)
from .transformers import DataTransformer, coerce_boolean, coerce_coverage

__all__ = [  # noqa: RUF022
    "ValidationEngine",
    "ValidationRecoveryStrategy",
    "FallbackValidation",
    "DataTransformer",
    "coerce_boolean",
    "coerce_coverage",
    "PydanticShape",
    "ReviewAnalysis",
    "CodeIssue",
    "FlexibleReviewAnalysis",
    "PartialReviewAnalysis",
    "STRICT_SHAPE",
    "FLEXIBLE_SHAPE",
    "PARTIAL_SHAPE",
    "VALIDATION_MODES",
    "ValidationMode",
    "get_schema",
    "issues_from_error",
]
