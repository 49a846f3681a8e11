"""Validation with a transformation tier and a recovery tier.

1. A pre-validation pass runs the registered transformers over a copy of the
   value, then any caller-supplied transformers.
2. The transformed value is validated against the target shape.
3. On failure, recovery strategies repair the value guided by the reported
   issues, and the first repair the shape accepts wins.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
import dataclasses
import logging
from typing import Any

from llm_resilience.core.interfaces import TargetShape
from llm_resilience.core.registry import StrategyRegistry
from llm_resilience.core.types import (
    Issue,
    IssueKind,
    RecoveryResult,
    Success,
    ValidationResult,
)

from .shapes import VALIDATION_MODES, ValidationMode, get_schema
from .transformers import COERCIONS, DEFAULT_TRANSFORMERS, DataTransformer, default_for

log = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class ValidationRecoveryStrategy:
    """A repair run only after validation failed."""

    name: str
    priority: int
    can_recover: Callable[[Sequence[Issue], Any], bool]
    recover: Callable[[Sequence[Issue], Any, TargetShape[Any]], RecoveryResult]


@dataclasses.dataclass(frozen=True, slots=True)
class FallbackValidation:
    """Outcome of `ValidationEngine.validate_with_fallback`."""

    success: bool
    schema: str
    data: Any = None
    transformations_applied: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    issues: tuple[tuple[Issue, ...], ...] = ()


def _changed(before: Any, after: Any) -> bool:
    return type(before) is not type(after) or before != after


# --- Field repairs ---


def coerce_invalid_types(issues: Sequence[Issue], value: Any) -> Any:
    """Run the matching transformer on every top-level field with a type issue."""
    if not isinstance(value, Mapping):
        return value
    repaired = dict(value)
    for issue in issues:
        if issue.kind is not IssueKind.INVALID_TYPE or not issue.is_top_level:
            continue
        field = issue.field_path[0]
        transformer = COERCIONS.get(field)
        if transformer is not None and field in repaired:
            repaired[field] = transformer.transform(repaired[field])
    return repaired


def fill_missing_fields(issues: Sequence[Issue], value: Any) -> Any:
    """Substitute the field default for every top-level missing field."""
    if not isinstance(value, Mapping):
        return value
    repaired = dict(value)
    for issue in issues:
        if issue.kind is not IssueKind.MISSING or not issue.is_top_level:
            continue
        field = issue.field_path[0]
        if field in COERCIONS:
            repaired[field] = default_for(field)
    return repaired


def _repair_strategy(
    name: str,
    priority: int,
    can_recover: Callable[[Sequence[Issue], Any], bool],
    repair: Callable[[Sequence[Issue], Any], Any],
    success_warning: str | None,
    failure_warning: str,
) -> ValidationRecoveryStrategy:
    def recover(
        issues: Sequence[Issue], value: Any, shape: TargetShape[Any]
    ) -> RecoveryResult:
        outcome = shape.validate(repair(issues, value))
        if isinstance(outcome, Success):
            return RecoveryResult(
                success=True,
                data=outcome.value,
                transformations_applied=(name,),
                warnings=(success_warning,) if success_warning else (),
            )
        return RecoveryResult(
            success=False,
            issues=(tuple(outcome.error),),
            transformations_applied=(name,),
            warnings=(failure_warning,),
        )

    return ValidationRecoveryStrategy(name, priority, can_recover, recover)


def _has_kind(kind: IssueKind) -> Callable[[Sequence[Issue], Any], bool]:
    return lambda issues, _value: any(issue.kind is kind for issue in issues)


def _touches_known_field(issues: Sequence[Issue], value: Any) -> bool:
    return isinstance(value, Mapping) and any(
        issue.is_top_level and issue.field_path[0] in COERCIONS for issue in issues
    )


DEFAULT_RECOVERY_STRATEGIES: tuple[ValidationRecoveryStrategy, ...] = (
    _repair_strategy(
        "type-coercion",
        100,
        _has_kind(IssueKind.INVALID_TYPE),
        coerce_invalid_types,
        None,
        "Type coercion failed",
    ),
    _repair_strategy(
        "missing-field-defaults",
        90,
        _has_kind(IssueKind.MISSING),
        fill_missing_fields,
        "Applied default values for missing fields",
        "Missing field defaults failed",
    ),
    _repair_strategy(
        "partial-recovery",
        80,
        _touches_known_field,
        lambda issues, value: fill_missing_fields(
            issues, coerce_invalid_types(issues, value)
        ),
        "Recovered partial data with defaults for invalid fields",
        "Partial recovery failed",
    ),
)


class ValidationEngine:
    """Validates parsed values against a target shape, repairing where it can."""

    def __init__(self) -> None:
        self.transformers: StrategyRegistry[DataTransformer] = StrategyRegistry(
            "transformer"
        )
        self.recovery_strategies: StrategyRegistry[ValidationRecoveryStrategy] = (
            StrategyRegistry("validation-recovery")
        )
        for transformer in DEFAULT_TRANSFORMERS:
            self.transformers.register(transformer)
        for strategy in DEFAULT_RECOVERY_STRATEGIES:
            self.recovery_strategies.register(strategy)

    def register_transformer(self, transformer: DataTransformer) -> None:
        self.transformers.register(transformer)

    def register_recovery_strategy(self, strategy: ValidationRecoveryStrategy) -> None:
        self.recovery_strategies.register(strategy)

    def available_transformers(self) -> list[DataTransformer]:
        return self.transformers.ordered()

    def available_recovery_strategies(self) -> list[ValidationRecoveryStrategy]:
        return self.recovery_strategies.ordered()

    def transform(
        self,
        value: Any,
        extra_transformers: Iterable[DataTransformer] | None = None,
    ) -> tuple[Any, tuple[str, ...]]:
        """Run the pre-validation pass; returns the new value and the names
        of the transformers that changed something.

        Non-mapping values are returned untouched. The input is never mutated.
        """
        if not isinstance(value, Mapping):
            return value, ()

        data = dict(value)
        applied: list[str] = []

        def run(transformer: DataTransformer, field: str, hint: str) -> bool:
            if not transformer.can_transform(data[field], hint):
                return False
            before = data[field]
            data[field] = transformer.transform(before)
            if _changed(before, data[field]):
                log.debug(
                    "Applied %s to %s: %r -> %r",
                    transformer.name,
                    field,
                    before,
                    data[field],
                )
                if transformer.name not in applied:
                    applied.append(transformer.name)
            return True

        for transformer in self.transformers:
            for field in transformer.fields:
                if field in data:
                    run(transformer, field, transformer.hint)

        extras = list(extra_transformers or ())
        for field in list(data):
            for transformer in extras:
                if run(transformer, field, "unknown"):
                    break

        return data, tuple(applied)

    def validate(
        self,
        value: Any,
        shape: TargetShape[Any],
        extra_transformers: Iterable[DataTransformer] | None = None,
    ) -> ValidationResult:
        transformed, applied = self.transform(value, extra_transformers)
        return self._validate_transformed(value, transformed, applied, shape)

    def _validate_transformed(
        self,
        original: Any,
        transformed: Any,
        applied: tuple[str, ...],
        shape: TargetShape[Any],
        *,
        recover: bool = True,
    ) -> ValidationResult:
        outcome = shape.validate(transformed)
        if isinstance(outcome, Success):
            log.debug("Validation succeeded (transformations: %s)", applied)
            return ValidationResult(
                success=True,
                original_data=original,
                data=outcome.value,
                transformations_applied=applied,
            )

        issues = tuple(outcome.error)
        log.debug("Validation failed with %d issue(s)", len(issues))
        if not recover:
            return ValidationResult(
                success=False,
                original_data=original,
                transformations_applied=applied,
                issues=(issues,),
            )

        recovered = self._recover(issues, transformed, shape)
        if recovered.success:
            warnings = (
                *recovered.warnings,
                "Data transformation applied: "
                + ", ".join(recovered.transformations_applied),
            )
            return ValidationResult(
                success=True,
                original_data=original,
                data=recovered.data,
                transformations_applied=(*applied, *recovered.transformations_applied),
                warnings=warnings,
            )

        log.warning(
            "Validation recovery failed for %s: %s",
            shape.describe(),
            "; ".join(f"{i.path or '<root>'}: {i.kind}" for i in issues),
        )
        return ValidationResult(
            success=False,
            original_data=original,
            transformations_applied=(*applied, *recovered.transformations_applied),
            issues=(issues, *recovered.issues),
            warnings=recovered.warnings,
        )

    def _recover(
        self, issues: tuple[Issue, ...], value: Any, shape: TargetShape[Any]
    ) -> RecoveryResult:
        all_issues: list[tuple[Issue, ...]] = []
        warnings: list[str] = []
        transformations: list[str] = []

        for strategy in self.recovery_strategies:
            if not strategy.can_recover(issues, value):
                continue
            log.debug("Trying validation recovery strategy: %s", strategy.name)
            try:
                result = strategy.recover(issues, value, shape)
            except Exception as e:
                log.debug("Recovery strategy %s raised: %s", strategy.name, e)
                warnings.append(f"Recovery strategy {strategy.name} failed: {e}")
                continue

            if result.success:
                log.info("Validation recovered with strategy: %s", strategy.name)
                return RecoveryResult(
                    success=True,
                    data=result.data,
                    transformations_applied=(
                        *transformations,
                        *result.transformations_applied,
                    ),
                    warnings=(*warnings, *result.warnings),
                )
            all_issues.extend(result.issues)
            warnings.extend(result.warnings)
            transformations.extend(result.transformations_applied)

        return RecoveryResult(
            success=False,
            issues=tuple(all_issues),
            transformations_applied=tuple(transformations),
            warnings=tuple(warnings),
        )

    def validate_with_fallback(
        self, value: Any, mode: str | ValidationMode = "production"
    ) -> FallbackValidation:
        """Validate against a named review-analysis schema with mode switches.

        Modes are ``production`` (flexible schema, transformation, recovery,
        partial fallback), ``development`` (strict schema only) and
        ``testing`` (flexible schema without the partial fallback).
        """
        if isinstance(mode, str):
            if mode not in VALIDATION_MODES:
                raise ValueError(
                    f"Unknown validation mode '{mode}'. "
                    f"Expected one of: {', '.join(VALIDATION_MODES)}"
                )
            mode = VALIDATION_MODES[mode]

        if mode.enable_transformation:
            transformed, applied = self.transform(value)
        else:
            transformed, applied = value, ()

        result = self._validate_transformed(
            value,
            transformed,
            applied,
            get_schema(mode.schema),
            recover=mode.enable_error_recovery,
        )
        if result.success:
            return FallbackValidation(
                success=True,
                schema=mode.schema,
                data=result.data,
                transformations_applied=result.transformations_applied,
                warnings=result.warnings,
            )

        if mode.fallback_to_partial and mode.schema != "partial":
            outcome = get_schema("partial").validate(transformed)
            if isinstance(outcome, Success):
                return FallbackValidation(
                    success=True,
                    schema="partial",
                    data=outcome.value,
                    transformations_applied=(
                        *result.transformations_applied,
                        "fallback-to-partial",
                    ),
                    warnings=(
                        *result.warnings,
                        "Fell back to partial schema validation",
                    ),
                    issues=result.issues,
                )
            return FallbackValidation(
                success=False,
                schema=mode.schema,
                transformations_applied=result.transformations_applied,
                warnings=result.warnings,
                issues=(*result.issues, tuple(outcome.error)),
            )

        return FallbackValidation(
            success=False,
            schema=mode.schema,
            transformations_applied=result.transformations_applied,
            warnings=result.warnings,
            issues=result.issues,
        )
