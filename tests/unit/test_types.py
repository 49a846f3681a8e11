from types import MappingProxyType

import pytest

from llm_resilience.core.types import (
    ErrorContext,
    Issue,
    IssueKind,
    RetryConfig,
    ValidationResult,
)

pytestmark = pytest.mark.unit


class TestRetryConfig:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"base_delay_ms": -1},
            {"backoff_multiplier": 0.5},
            {"jitter_ms": -5},
        ],
    )
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)

    def test_merged_mapping_overrides_named_keys(self):
        merged = RetryConfig().merged({"max_attempts": 5})

        assert merged.max_attempts == 5
        assert merged.base_delay_ms == 1000

    def test_merged_config_replaces(self):
        replacement = RetryConfig(max_attempts=1)
        assert RetryConfig().merged(replacement) is replacement

    def test_merged_unknown_key_raises(self):
        with pytest.raises(TypeError):
            RetryConfig().merged({"attempts": 5})


class TestErrorContext:
    def test_requires_operation(self):
        with pytest.raises(ValueError, match="operation"):
            ErrorContext(operation="")

    def test_metadata_is_read_only(self):
        context = ErrorContext("op", metadata={"provider": "openai"})

        assert isinstance(context.metadata, MappingProxyType)
        with pytest.raises(TypeError):
            context.metadata["provider"] = "other"

    def test_for_attempt_returns_new_context(self):
        context = ErrorContext("op", file_path="a.py")

        retried = context.for_attempt(2)

        assert retried.attempt_number == 2
        assert retried.file_path == "a.py"
        assert context.attempt_number == 1
        assert retried.timestamp >= context.timestamp


def test_issue_path():
    issue = Issue(("issues", "0", "line"), IssueKind.INVALID_TYPE)

    assert issue.path == "issues.0.line"
    assert not issue.is_top_level
    assert Issue(("grade",), IssueKind.MISSING).is_top_level


def test_validation_result_flattens_issue_groups():
    first = Issue(("grade",), IssueKind.INVALID_ENUM)
    second = Issue(("coverage",), IssueKind.INVALID_VALUE)

    result = ValidationResult(
        success=False, original_data={}, issues=((first,), (first, second))
    )

    assert result.all_issues == (first, first, second)
