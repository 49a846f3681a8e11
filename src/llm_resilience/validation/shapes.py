"""Target shapes: pydantic models for review analyses and their adapter.

`PydanticShape` adapts any pydantic model to the `TargetShape` protocol,
translating pydantic's error list into vendor-neutral `Issue`s. Three
review-analysis variants are registered for `validate_with_fallback`:

- ``strict``: exact types, no coercion; the shape the engine repairs toward.
- ``flexible``: coerces strings and numbers the way the transformers do.
- ``partial``: like ``flexible`` but every field is optional with a default.
"""

from __future__ import annotations

import dataclasses
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from llm_resilience.core.types import Failure, Issue, IssueKind, Result, Success

from .transformers import (
    FIELD_DEFAULTS,
    coerce_boolean,
    coerce_coverage,
    normalize_enum,
)

Grade = Literal["A", "B", "C", "D", "F"]
BusinessValue = Literal["high", "medium", "low"]
ReviewState = Literal["pass", "warning", "fail"]
Severity = Literal["low", "medium", "high"]
IssueType = Literal["security", "performance", "style", "bug"]


# --- Strict shape ---


class CodeIssue(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True)

    line: int
    severity: Severity
    type: IssueType
    message: str


class ReviewAnalysis(BaseModel):
    """A code-review verdict as produced by the model."""

    model_config = ConfigDict(strict=True, frozen=True, populate_by_name=True)

    grade: Grade
    coverage: Annotated[int, Field(ge=0, le=100)]
    tests_present: bool = Field(alias="testsPresent")
    value: BusinessValue
    state: ReviewState
    issues: list[CodeIssue]
    suggestions: list[str]
    summary: str


# --- Flexible and partial shapes ---


def _enum_or(default: str, allowed: tuple[str, ...]):
    def coerce(value: Any) -> Any:
        normalized = normalize_enum(value)
        return normalized if normalized in allowed else default

    return coerce


def _int_or(default: int):
    def coerce(value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        try:
            return int(str(value).strip())
        except ValueError:
            return default

    return coerce


def _list_or_empty(value: Any) -> Any:
    return [] if value is None else value


def _str_or(default: str):
    return lambda value: value if isinstance(value, str) else default


FlexibleGrade = Annotated[Grade, BeforeValidator(_enum_or("C", ("A", "B", "C", "D", "F")))]
FlexibleValue = Annotated[
    BusinessValue, BeforeValidator(_enum_or("medium", ("high", "medium", "low")))
]
FlexibleState = Annotated[
    ReviewState, BeforeValidator(_enum_or("warning", ("pass", "warning", "fail")))
]
FlexibleCoverage = Annotated[int, BeforeValidator(coerce_coverage)]
FlexibleBool = Annotated[bool, BeforeValidator(coerce_boolean)]


class FlexibleCodeIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    line: Annotated[int, BeforeValidator(_int_or(1))]
    severity: Annotated[
        Severity, BeforeValidator(_enum_or("medium", ("low", "medium", "high")))
    ]
    type: Annotated[
        IssueType,
        BeforeValidator(
            lambda v: v.strip().lower()
            if isinstance(v, str)
            and v.strip().lower() in ("security", "performance", "style", "bug")
            else "style"
        ),
    ]
    message: str = "No message provided"


class FlexibleReviewAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    grade: FlexibleGrade
    coverage: FlexibleCoverage
    tests_present: FlexibleBool = Field(alias="testsPresent")
    value: FlexibleValue
    state: FlexibleState
    issues: Annotated[list[FlexibleCodeIssue], BeforeValidator(_list_or_empty)] = Field(
        default_factory=list
    )
    suggestions: Annotated[list[str], BeforeValidator(_list_or_empty)] = Field(
        default_factory=list
    )
    summary: Annotated[str, BeforeValidator(_str_or("Analysis completed"))] = (
        "Analysis completed"
    )


class PartialReviewAnalysis(FlexibleReviewAnalysis):
    grade: FlexibleGrade = FIELD_DEFAULTS["grade"]
    coverage: FlexibleCoverage = FIELD_DEFAULTS["coverage"]
    tests_present: FlexibleBool = Field(
        default=FIELD_DEFAULTS["testsPresent"], alias="testsPresent"
    )
    value: FlexibleValue = FIELD_DEFAULTS["value"]
    state: FlexibleState = FIELD_DEFAULTS["state"]


# --- Adapter ---


def _issue_kind(error_type: str) -> IssueKind:
    if error_type == "missing":
        return IssueKind.MISSING
    if error_type in ("literal_error", "enum"):
        return IssueKind.INVALID_ENUM
    if error_type.endswith(("_type", "_parsing")) or error_type == "int_from_float":
        return IssueKind.INVALID_TYPE
    return IssueKind.INVALID_VALUE


def _expected(error: dict[str, Any]) -> str | None:
    ctx = error.get("ctx") or {}
    if "expected" in ctx:
        return str(ctx["expected"])
    error_type = error["type"]
    if error_type.endswith("_type"):
        return error_type.removesuffix("_type")
    return None


def issues_from_error(exc: ValidationError) -> list[Issue]:
    """Translate a pydantic `ValidationError` into `Issue`s."""
    issues = []
    for error in exc.errors(include_url=False):
        kind = _issue_kind(error["type"])
        issues.append(
            Issue(
                field_path=tuple(str(part) for part in error["loc"]),
                kind=kind,
                expected=_expected(error),
                received=None
                if kind is IssueKind.MISSING
                else type(error["input"]).__name__,
                message=error["msg"],
            )
        )
    return issues


@dataclasses.dataclass(frozen=True, slots=True)
class PydanticShape[M: BaseModel]:
    """`TargetShape` backed by a pydantic model class."""

    model: type[M]

    def validate(self, value: Any) -> Result[M, list[Issue]]:
        try:
            return Success(self.model.model_validate(value))
        except ValidationError as e:
            return Failure(issues_from_error(e))

    def describe(self) -> str:
        fields = ", ".join(
            info.alias or name for name, info in self.model.model_fields.items()
        )
        return f"{self.model.__name__}({fields})"


STRICT_SHAPE = PydanticShape(ReviewAnalysis)
FLEXIBLE_SHAPE = PydanticShape(FlexibleReviewAnalysis)
PARTIAL_SHAPE = PydanticShape(PartialReviewAnalysis)

SCHEMAS: dict[str, PydanticShape[Any]] = {
    "strict": STRICT_SHAPE,
    "flexible": FLEXIBLE_SHAPE,
    "partial": PARTIAL_SHAPE,
}


@dataclasses.dataclass(frozen=True, slots=True)
class ValidationMode:
    schema: Literal["strict", "flexible", "partial"]
    enable_transformation: bool
    enable_error_recovery: bool
    fallback_to_partial: bool


VALIDATION_MODES: dict[str, ValidationMode] = {
    "production": ValidationMode("flexible", True, True, True),
    "development": ValidationMode("strict", False, False, False),
    "testing": ValidationMode("flexible", True, True, False),
}


def get_schema(name: str = "flexible") -> PydanticShape[Any]:
    try:
        return SCHEMAS[name]
    except KeyError:
        raise ValueError(
            f"Unknown schema '{name}'. Expected one of: {', '.join(SCHEMAS)}"
        ) from None
