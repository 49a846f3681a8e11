"""JSON parsing with single-shot recovery."""

import json

import pytest

from llm_resilience.exceptions import ResponseParseError
from llm_resilience.response.parser import (
    FALLBACK_SENTINEL,
    JSONRecoveryParser,
    ParseRecoveryStrategy,
    balance_brackets,
    extract_partial,
    fix_quotes,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def parser() -> JSONRecoveryParser:
    return JSONRecoveryParser()


class TestRecovery:
    def test_valid_json_needs_no_strategy(self, parser):
        outcome = parser.parse('{"a": 1}')
        assert outcome.value == {"a": 1}
        assert outcome.strategy is None

    def test_single_quotes_are_fixed(self, parser):
        outcome = parser.parse("{'grade': 'A', 'coverage': 85}")
        assert outcome.value == {"grade": "A", "coverage": 85}
        assert outcome.strategy == "quote-fixing"

    def test_bare_keys_are_quoted(self, parser):
        outcome = parser.parse('{grade: "A", coverage: 85}')
        assert outcome.value == {"grade": "A", "coverage": 85}
        assert outcome.strategy == "quote-fixing"

    def test_apostrophes_inside_strings_survive(self, parser):
        outcome = parser.parse("""{"summary": "it's fine", 'grade': 'B'}""")
        assert outcome.value == {"summary": "it's fine", "grade": "B"}

    def test_truncated_output_is_closed(self, parser):
        outcome = parser.parse('{"grade": "A", "issues": [{"line": 1}')
        assert outcome.value == {"grade": "A", "issues": [{"line": 1}]}
        assert outcome.strategy == "bracket-balancing"

    def test_dangling_comma_is_dropped_before_closing(self, parser):
        outcome = parser.parse('{"a": 1,')
        assert outcome.value == {"a": 1}
        assert outcome.strategy == "bracket-balancing"

    def test_invalid_escapes_are_doubled(self, parser):
        outcome = parser.parse(r'{"path": "C:\Users\data"}')
        assert outcome.value == {"path": r"C:\Users\data"}
        assert outcome.strategy == "escape-fixing"

    def test_longest_flat_object_is_extracted(self, parser):
        outcome = parser.parse('prefix {"a": 1} junk {"bb": 22} trailing')
        assert outcome.value == {"bb": 22}
        assert outcome.strategy == "partial-extraction"


class TestFailure:
    def test_empty_text_has_no_matching_strategy(self, parser):
        with pytest.raises(ResponseParseError) as exc_info:
            parser.parse("")

        error = exc_info.value
        assert error.text == ""
        assert error.strategy is None
        assert isinstance(error.original_error, json.JSONDecodeError)

    def test_strategies_are_not_chained(self, parser):
        with pytest.raises(ResponseParseError) as exc_info:
            parser.parse("{'a': }")

        assert exc_info.value.strategy == "quote-fixing"
        assert exc_info.value.text == "{'a': }"

    def test_raising_strategy_is_skipped(self, parser):
        def explode(_error, _text):
            raise RuntimeError("boom")

        parser.register_strategy(
            ParseRecoveryStrategy("explode", 200, lambda _e, _t: True, explode)
        )
        outcome = parser.parse("{'a': 1}")

        assert outcome.value == {"a": 1}
        assert outcome.strategy == "quote-fixing"


class TestRepairs:
    def test_fix_quotes_without_double_quotes(self):
        assert fix_quotes("{'a': ['x', 'y']}") == '{"a": ["x", "y"]}'

    def test_balance_brackets_closes_innermost_first(self):
        assert balance_brackets('{"a": [{"b": [1') == '{"a": [{"b": [1]}]}'

    def test_balance_brackets_ignores_brackets_in_strings(self):
        assert balance_brackets('{"a": "[{"') == '{"a": "[{"}'

    def test_extract_partial_falls_back_to_sentinel(self):
        assert extract_partial("no objects here") == FALLBACK_SENTINEL
        assert json.loads(FALLBACK_SENTINEL)["fallback"] is True
