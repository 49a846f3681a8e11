"""Built-in data transformers for the pre-validation pass.

A transformer is bound to the fields it knows about; `can_transform` decides
whether a given value needs work, `transform` returns the replacement. Every
built-in is idempotent: feeding its output back in is a no-op.
"""

from __future__ import annotations

from collections.abc import Callable
import dataclasses
import math
import re
from typing import Any

GRADES = ("A", "B", "C", "D", "F")
VALUES = ("high", "medium", "low")
STATES = ("pass", "warning", "fail")

FIELD_DEFAULTS: dict[str, Any] = {
    "issues": [],
    "suggestions": [],
    "summary": "Analysis completed",
    "grade": "C",
    "coverage": 0,
    "testsPresent": False,
    "value": "medium",
    "state": "warning",
}

_LEADING_NUMBER = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_TRUTHY = frozenset({"true", "1", "yes"})


@dataclasses.dataclass(frozen=True, slots=True)
class DataTransformer:
    """A named value transform run before validation.

    Attributes:
        fields: Top-level keys this transformer is bound to. Empty for
            caller-supplied transformers, which are offered every field.
        hint: Target type hint passed to `can_transform` for bound fields.
    """

    name: str
    priority: int
    can_transform: Callable[[Any, str], bool]
    transform: Callable[[Any], Any]
    fields: tuple[str, ...] = ()
    hint: str = "unknown"


def default_for(field: str) -> Any:
    """Fresh default for a known review-analysis field (lists are copied)."""
    value = FIELD_DEFAULTS[field]
    return list(value) if isinstance(value, list) else value


# --- Coverage ---


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _clamp_percentage(number: float) -> int:
    if not math.isfinite(number):
        return 0
    return min(100, max(0, math.floor(number + 0.5)))


def coerce_coverage(value: Any) -> int:
    """Coerce a number or percent string into an int in [0, 100].

    ``"75.5%"`` becomes 76, ``"150%"`` becomes 100, and anything without a
    leading number becomes 0.
    """
    if _is_number(value):
        return _clamp_percentage(value)
    if isinstance(value, str):
        match = _LEADING_NUMBER.match(re.sub(r"[%\s]", "", value))
        return _clamp_percentage(float(match.group(0))) if match else 0
    return 0


def _needs_coverage(value: Any, _hint: str) -> bool:
    if isinstance(value, str):
        return True
    if isinstance(value, float):
        return True
    return _is_number(value) and not 0 <= value <= 100


# --- Booleans ---


def coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    if _is_number(value):
        return value != 0
    return False


def _needs_boolean(value: Any, _hint: str) -> bool:
    return isinstance(value, str) or _is_number(value)


# --- Enumerations ---


def normalize_enum(value: Any) -> Any:
    """Case-normalize a grade, business value or state; leave others alone."""
    if not isinstance(value, str):
        return value
    normalized = value.strip().lower()
    if normalized.upper() in GRADES:
        return normalized.upper()
    if normalized in VALUES or normalized in STATES:
        return normalized
    return value


# --- Null defaults ---


def _is_null(value: Any, _hint: str) -> bool:
    return value is None


def empty_list(value: Any) -> Any:
    return [] if value is None else value


def empty_string(value: Any) -> Any:
    return "" if value is None else value


COVERAGE = DataTransformer(
    name="coverage-transformer",
    priority=100,
    can_transform=_needs_coverage,
    transform=coerce_coverage,
    fields=("coverage",),
    hint="number",
)
BOOLEAN = DataTransformer(
    name="boolean-transformer",
    priority=90,
    can_transform=_needs_boolean,
    transform=coerce_boolean,
    fields=("testsPresent",),
    hint="boolean",
)
ENUM = DataTransformer(
    name="enum-normalizer",
    priority=80,
    can_transform=lambda value, _hint: isinstance(value, str),
    transform=normalize_enum,
    fields=("grade", "value", "state"),
    hint="enum",
)
ARRAY_DEFAULT = DataTransformer(
    name="array-default",
    priority=70,
    can_transform=_is_null,
    transform=empty_list,
    fields=("issues", "suggestions"),
    hint="array",
)
STRING_DEFAULT = DataTransformer(
    name="string-default",
    priority=60,
    can_transform=_is_null,
    transform=empty_string,
    fields=("summary",),
    hint="string",
)

DEFAULT_TRANSFORMERS: tuple[DataTransformer, ...] = (
    COVERAGE,
    BOOLEAN,
    ENUM,
    ARRAY_DEFAULT,
    STRING_DEFAULT,
)

# Field -> transformer used by the type-coercion recovery tier
COERCIONS: dict[str, DataTransformer] = {
    field: transformer
    for transformer in DEFAULT_TRANSFORMERS
    for field in transformer.fields
}
