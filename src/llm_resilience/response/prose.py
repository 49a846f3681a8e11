"""Detection and conversion of structured-prose model answers.

Some providers ignore the "respond with JSON" instruction and answer with a
numbered or bolded list of fields instead. This module recognizes those
answers and rebuilds the review-analysis JSON object from them, field by
field, with a safe default for every field it cannot find.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from llm_resilience.exceptions import ResponseCleaningError

log = logging.getLogger(__name__)

DEFAULT_MARKER_THRESHOLD = 2

# Field labels may carry a hint in parentheses and markdown bold, e.g.
# "**Code Quality Grade (A-F)**: A".
_HINT = r"\s*(?:\([^)]*\))?\s*\**\s*:\s*"

_FENCE = re.compile(r"```[A-Za-z]*\s*")

PROSE_MARKERS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\d+\.\s*\*\*.*\*\*\s*:", re.M),
    re.compile(r"^\d+\.\s*[A-Za-z\s]+\s*\([^)]+\)\s*\*\*\s*:", re.M),
    re.compile(r"Code\s*Quality\s*Grade.*\*\*\s*:", re.I),
    re.compile(r"Test\s*Coverage\s*Percentage.*\*\*\s*:", re.I),
    re.compile(r"Tests\s*Present.*\*\*\s*:", re.I),
    re.compile(r"Business\s*Value.*\*\*\s*:", re.I),
    re.compile(r"Overall\s*State.*\*\*\s*:", re.I),
    re.compile(r"Security\s*Analysis.*\*\*\s*:", re.I),
    re.compile(r"Performance\s*Analysis.*\*\*\s*:", re.I),
    re.compile(r"Best\s*Practices.*\*\*\s*:", re.I),
    re.compile(r"^Grade\s*:\s*[A-F]", re.I | re.M),
    re.compile(r"^Coverage\s*:\s*\d+%?", re.I | re.M),
    re.compile(r"^Tests?\s*Present\s*:\s*(Yes|No|True|False)", re.I | re.M),
    re.compile(r"^(?:Business\s*)?Value\s*:\s*(high|medium|low)", re.I | re.M),
    re.compile(r"^(?:Overall\s*)?State\s*:\s*(pass|warning|fail)", re.I | re.M),
    re.compile(r"^\d+\.\s*Code\s*Quality\s*Grade", re.I | re.M),
    re.compile(r"^\s*\*\s*The\s*code\s*is\s*well", re.I | re.M),
    re.compile(r"^\s*\*\s*The\s*code\s*has\s*good", re.I | re.M),
    re.compile(r"^\d+\.\s*Test\s*Coverage", re.I | re.M),
    re.compile(r"^\d+\.\s*Tests\s*Present", re.I | re.M),
    re.compile(r"^\d+\.\s*Business\s*Value", re.I | re.M),
    re.compile(r"^\d+\.\s*Overall\s*State", re.I | re.M),
    re.compile(r"^\d+\.\s*Security\s*Analysis", re.I | re.M),
    re.compile(r"^\d+\.\s*Performance\s*Analysis", re.I | re.M),
    re.compile(r"^\d+\.\s*Best\s*Practices", re.I | re.M),
)

_GRADE_PATTERNS = (
    re.compile(r"(?:Code\s*Quality\s*)?Grade" + _HINT + r"([A-F][+-]?)(?![A-Za-z])", re.I),
    re.compile(r"overall\s+grade\s+of\s+([A-F][+-]?)(?![A-Za-z])", re.I),
)
_COVERAGE_PATTERNS = (
    re.compile(r"(?:Test\s*)?Coverage\s*(?:Percentage)?" + _HINT + r"(\d+)\s*%?", re.I),
)
_TESTS_PATTERNS = (
    re.compile(r"Tests?\s*Present" + _HINT + r"(Yes|No|True|False)\b", re.I),
    re.compile(r"Tests?\s*:\s*(Yes|No|True|False)\b", re.I),
)
_VALUE_PATTERNS = (
    re.compile(r"(?:Business\s*)?Value" + _HINT + r"(high|medium|low)\b", re.I),
)
_STATE_PATTERNS = (
    re.compile(r"(?:Overall\s*)?State" + _HINT + r"(pass|warning|fail)\b", re.I),
)
_SECURITY = re.compile(r"Security\s*Analysis\s*\**\s*:\s*(.+?)(?=\n\s*\d+\.|\Z)", re.I | re.S)
_PERFORMANCE = re.compile(
    r"Performance\s*Analysis\s*\**\s*:\s*(.+?)(?=\n\s*\d+\.|\Z)", re.I | re.S
)
_BEST_PRACTICES = re.compile(
    r"Best\s*Practices\s*\**\s*:\s*(.+?)(?=Overall,|\n\s*\d+\.|\Z)", re.I | re.S
)
_PRACTICE_ITEM = re.compile(r"(?:^|\n)\s*(?:[a-z]\.|[*-])\s*", re.I)
_BULLET = re.compile(r"^\s*\*\s+(.+)$", re.M)
_FIRST_SENTENCE = re.compile(r"^\s*(?:\d+\.\s*)?(.+?)[.!?]", re.M)

DEFAULTS: dict[str, Any] = {
    "grade": "C",
    "coverage": 0,
    "testsPresent": False,
    "value": "medium",
    "state": "warning",
    "issues": [],
    "suggestions": [],
    "summary": "Analysis completed",
}

MAX_SUGGESTIONS = 5
MAX_PRACTICE_ISSUES = 3
MAX_SUMMARY_LENGTH = 200


def strip_fences(text: str) -> str:
    return _FENCE.sub("", text.strip()).strip()


def count_prose_markers(text: str) -> int:
    """Number of distinct field markers present in `text`."""
    return sum(1 for pattern in PROSE_MARKERS if pattern.search(text))


def looks_like_prose(text: str, threshold: int = DEFAULT_MARKER_THRESHOLD) -> bool:
    """Whether `text` is a structured-prose answer rather than JSON.

    Text that starts with ``{`` or ``[`` once code fences are removed is
    always treated as JSON, however many markers it happens to contain.
    """
    body = strip_fences(text)
    if body.startswith(("{", "[")):
        return False
    matches = count_prose_markers(body)
    log.debug("Structured prose markers matched: %d (threshold %d)", matches, threshold)
    return matches >= threshold


def _first_group(patterns: tuple[re.Pattern[str], ...], text: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def _section_issue(
    pattern: re.Pattern[str], text: str, kind: str, dismissals: tuple[str, ...]
) -> dict[str, Any] | None:
    match = pattern.search(text)
    if not match:
        return None
    body = match.group(1).strip()
    lowered = body.lower()
    if not body or any(phrase in lowered for phrase in dismissals):
        return None
    return {"line": 1, "severity": "medium", "type": kind, "message": body}


def _practice_issues(text: str) -> list[dict[str, Any]]:
    match = _BEST_PRACTICES.search(text)
    if not match:
        return []
    items = [
        re.sub(r":\s*", ": ", item.strip(), count=1)
        for item in _PRACTICE_ITEM.split(match.group(1))
        if item.strip()
    ]
    items = [item for item in items if len(item) > 10][:MAX_PRACTICE_ISSUES]
    return [
        {
            "line": index + 2,
            "severity": "low",
            "type": "style",
            "message": f"Best practice: {item}",
        }
        for index, item in enumerate(items)
    ]


def _summarize(result: dict[str, Any], text: str) -> str:
    parts = []
    if result["grade"] != DEFAULTS["grade"]:
        parts.append(f"Grade: {result['grade']}")
    if result["coverage"] > 0:
        parts.append(f"Coverage: {result['coverage']}%")
    if result["testsPresent"]:
        parts.append("Tests present")
    if result["value"] != DEFAULTS["value"]:
        parts.append(f"Business value: {result['value']}")
    if result["state"] != DEFAULTS["state"]:
        parts.append(f"State: {result['state']}")
    if parts:
        return ", ".join(parts)

    sentence = _FIRST_SENTENCE.search(text)
    if sentence:
        return sentence.group(1).strip()[:MAX_SUMMARY_LENGTH]
    first_line = text.strip().split("\n", 1)[0].strip()
    if len(first_line) > 10:
        return first_line[:MAX_SUMMARY_LENGTH]
    return DEFAULTS["summary"]


def extract_fields(text: str) -> dict[str, Any]:
    """Build a review-analysis mapping from a structured-prose answer.

    Every field is extracted independently; a field that cannot be found
    keeps its default from `DEFAULTS`.

    Raises:
        ResponseCleaningError: If `text` is empty.
    """
    if not text or not text.strip():
        raise ResponseCleaningError("Cannot convert empty text to JSON")

    result: dict[str, Any] = {
        key: list(value) if isinstance(value, list) else value
        for key, value in DEFAULTS.items()
    }

    grade = _first_group(_GRADE_PATTERNS, text)
    if grade and grade[0].upper() in "ABCDF":
        result["grade"] = grade[0].upper()

    coverage = _first_group(_COVERAGE_PATTERNS, text)
    if coverage is not None:
        result["coverage"] = min(int(coverage), 100)

    tests_present = _first_group(_TESTS_PATTERNS, text)
    if tests_present is not None:
        result["testsPresent"] = tests_present.lower() in ("yes", "true")

    value = _first_group(_VALUE_PATTERNS, text)
    if value is not None:
        result["value"] = value.lower()

    state = _first_group(_STATE_PATTERNS, text)
    if state is not None:
        result["state"] = state.lower()

    bullets = [b.strip() for b in _BULLET.findall(text)]
    result["suggestions"] = [b for b in bullets if len(b) > 10][:MAX_SUGGESTIONS]

    for issue in (
        _section_issue(_SECURITY, text, "security", ("none found", "no obvious")),
        _section_issue(
            _PERFORMANCE, text, "performance", ("none found", "not significantly")
        ),
    ):
        if issue is not None:
            result["issues"].append(issue)
    result["issues"].extend(_practice_issues(text))

    result["summary"] = _summarize(result, text)

    if (
        result["grade"] == DEFAULTS["grade"]
        and result["coverage"] == 0
        and not result["testsPresent"]
        and not result["suggestions"]
    ):
        log.warning("Limited extraction from structured text, using neutral defaults")
        result["testsPresent"] = True
        result["coverage"] = 50
        result["summary"] = "Code analysis completed with basic assessment"

    log.debug(
        "Converted structured text: grade=%s coverage=%s testsPresent=%s "
        "value=%s state=%s issues=%d suggestions=%d",
        result["grade"],
        result["coverage"],
        result["testsPresent"],
        result["value"],
        result["state"],
        len(result["issues"]),
        len(result["suggestions"]),
    )
    return result


def convert_prose_to_json(text: str) -> str:
    """Return the JSON text for a structured-prose answer."""
    return json.dumps(extract_fields(text), indent=2)
