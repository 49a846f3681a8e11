"""Validation engine: transformation tier, recovery tier and modes."""

import pytest

from llm_resilience.core.types import IssueKind, RecoveryResult
from llm_resilience.validation import (
    STRICT_SHAPE,
    DataTransformer,
    FlexibleReviewAnalysis,
    PydanticShape,
    ReviewAnalysis,
    ValidationEngine,
    ValidationMode,
    ValidationRecoveryStrategy,
    get_schema,
)

pytestmark = pytest.mark.unit

SCENARIO_A = {
    "grade": "b",
    "coverage": "85%",
    "testsPresent": "true",
    "value": "HIGH",
    "state": "PASS",
    "issues": [],
    "suggestions": [],
    "summary": "ok",
}

SCENARIO_D = {
    "grade": "B",
    "coverage": 80,
    "testsPresent": True,
    "value": "medium",
    "state": "warning",
}


@pytest.fixture
def engine() -> ValidationEngine:
    return ValidationEngine()


class TestValidate:
    def test_valid_payload_passes_untouched(self, engine, review_payload):
        result = engine.validate(review_payload, STRICT_SHAPE)

        assert result.success
        assert isinstance(result.data, ReviewAnalysis)
        assert result.transformations_applied == ()
        assert result.warnings == ()

    def test_scenario_a_is_normalized(self, engine):
        result = engine.validate(SCENARIO_A, STRICT_SHAPE)

        assert result.success
        data = result.data
        assert (data.grade, data.coverage, data.tests_present) == ("B", 85, True)
        assert (data.value, data.state) == ("high", "pass")
        assert result.transformations_applied == (
            "coverage-transformer",
            "boolean-transformer",
            "enum-normalizer",
        )

    def test_scenario_d_missing_fields_get_defaults(self, engine):
        result = engine.validate(SCENARIO_D, STRICT_SHAPE)

        assert result.success
        assert result.data.issues == []
        assert result.data.suggestions == []
        assert result.data.summary == "Analysis completed"
        assert "missing-field-defaults" in result.transformations_applied
        assert "Applied default values for missing fields" in result.warnings
        assert result.warnings[-1] == "Data transformation applied: missing-field-defaults"

    def test_type_coercion_repairs_wrong_types(self, engine, review_payload):
        payload = {**review_payload, "testsPresent": None}

        result = engine.validate(payload, STRICT_SHAPE)

        assert result.success
        assert result.data.tests_present is False
        assert result.transformations_applied == ("type-coercion",)

    def test_unrecoverable_value_reports_every_issue_set(self, engine, review_payload):
        payload = {**review_payload, "grade": "Z"}

        result = engine.validate(payload, STRICT_SHAPE)

        assert not result.success
        assert result.data is None
        assert len(result.issues) == 2  # initial failure + partial-recovery attempt
        kinds = {(issue.path, issue.kind) for issue in result.all_issues}
        assert ("grade", IssueKind.INVALID_ENUM) in kinds
        assert "Partial recovery failed" in result.warnings

    def test_range_violation_is_an_invalid_value(self, engine, review_payload):
        shape = PydanticShape(ReviewAnalysis)
        outcome = shape.validate({**review_payload, "coverage": 101})

        assert [issue.kind for issue in outcome.error] == [IssueKind.INVALID_VALUE]
        # The coverage transformer clamps it before validation
        assert engine.validate({**review_payload, "coverage": 101}, shape).success

    def test_missing_issue_has_no_received_type(self):
        outcome = STRICT_SHAPE.validate({})
        missing = [issue for issue in outcome.error if issue.path == "summary"]

        assert missing[0].kind is IssueKind.MISSING
        assert missing[0].received is None


class TestExtensionPoints:
    def test_extra_transformers_run_last(self, engine, review_payload):
        strip = DataTransformer(
            name="strip-strings",
            priority=10,
            can_transform=lambda value, _hint: isinstance(value, str)
            and value != value.strip(),
            transform=str.strip,
        )
        payload = {**review_payload, "summary": "  padded  "}

        result = engine.validate(payload, STRICT_SHAPE, extra_transformers=[strip])

        assert result.success
        assert result.data.summary == "padded"
        assert result.transformations_applied == ("strip-strings",)

    def test_registered_recovery_strategy_runs_by_priority(self, engine, review_payload):
        def replace_everything(_issues, _value, shape):
            return RecoveryResult(
                success=True,
                data=shape.validate(review_payload).value,
                transformations_applied=("replace-everything",),
            )

        engine.register_recovery_strategy(
            ValidationRecoveryStrategy(
                "replace-everything", 200, lambda _i, _v: True, replace_everything
            )
        )
        result = engine.validate({"grade": "Z"}, STRICT_SHAPE)

        assert result.success
        assert result.data.summary == review_payload["summary"]
        assert result.transformations_applied == ("replace-everything",)
        assert engine.available_recovery_strategies()[0].name == "replace-everything"

    def test_raising_recovery_strategy_becomes_a_warning(self, engine):
        def broken(_issues, _value, _shape):
            raise RuntimeError("boom")

        engine.register_recovery_strategy(
            ValidationRecoveryStrategy("broken", 200, lambda _i, _v: True, broken)
        )
        result = engine.validate(SCENARIO_D, STRICT_SHAPE)

        assert result.success
        assert "Recovery strategy broken failed: boom" in result.warnings

    def test_builtin_registrations(self, engine):
        assert [t.name for t in engine.available_transformers()] == [
            "coverage-transformer",
            "boolean-transformer",
            "enum-normalizer",
            "array-default",
            "string-default",
        ]
        assert [s.name for s in engine.available_recovery_strategies()] == [
            "type-coercion",
            "missing-field-defaults",
            "partial-recovery",
        ]


class TestValidateWithFallback:
    def test_production_mode_uses_flexible_schema(self, engine):
        result = engine.validate_with_fallback(SCENARIO_A, "production")

        assert result.success
        assert result.schema == "flexible"
        assert isinstance(result.data, FlexibleReviewAnalysis)
        assert result.data.grade == "B"

    def test_development_mode_is_strict(self, engine):
        result = engine.validate_with_fallback(SCENARIO_A, "development")

        assert not result.success
        assert result.schema == "strict"
        assert result.issues

    def test_falls_back_to_partial_schema(self, engine):
        mode = ValidationMode(
            "flexible",
            enable_transformation=True,
            enable_error_recovery=False,
            fallback_to_partial=True,
        )

        result = engine.validate_with_fallback({"coverage": "50%"}, mode)

        assert result.success
        assert result.schema == "partial"
        assert (result.data.grade, result.data.coverage) == ("C", 50)
        assert result.transformations_applied[-1] == "fallback-to-partial"
        assert "Fell back to partial schema validation" in result.warnings

    def test_unknown_mode_is_rejected(self, engine):
        with pytest.raises(ValueError, match="Unknown validation mode"):
            engine.validate_with_fallback({}, "staging")

    def test_unknown_schema_is_rejected(self):
        with pytest.raises(ValueError, match="Unknown schema"):
            get_schema("lenient")
