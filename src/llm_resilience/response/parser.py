"""JSON parsing with a single round of heuristic recovery.

A strict `json.loads` is tried first. On failure the highest-priority
recovery strategy whose predicate accepts the decode error and the text is
applied once, and its output is parsed once more. Strategies are never
chained: if that second parse fails the stage fails.
"""

from __future__ import annotations

from collections.abc import Callable
import dataclasses
import json
import logging
import re
from typing import Any

from llm_resilience.core.registry import StrategyRegistry
from llm_resilience.exceptions import ResponseParseError

log = logging.getLogger(__name__)

FALLBACK_SENTINEL = '{"error": "Failed to parse LLM response", "fallback": true}'


@dataclasses.dataclass(frozen=True, slots=True)
class ParseRecoveryStrategy:
    """A named repair tried once after a JSON decode failure."""

    name: str
    priority: int
    can_recover: Callable[[json.JSONDecodeError, str], bool]
    recover: Callable[[json.JSONDecodeError, str], str]


@dataclasses.dataclass(frozen=True, slots=True)
class ParseOutcome:
    value: Any
    strategy: str | None = None


# --- Repairs ---

_UNQUOTED_KEY = re.compile(r"([{,]\s*)([A-Za-z_]\w*)(\s*:)")
_SINGLE_QUOTED_KEY = re.compile(r"([{,]\s*)'([^']+)'(\s*:)")
_SINGLE_QUOTED_VALUE = re.compile(r"(:\s*)'([^']*)'(\s*[,}\]])")
_SINGLE_QUOTED_ITEM = re.compile(r"([\[,]\s*)'([^']*)'(?=\s*[,\]])")
_STRUCTURAL_SINGLE_QUOTE = re.compile(r"[{,\[]\s*'|'\s*:")
_INVALID_ESCAPE = re.compile(r'\\(?!["\\/bfnrtu])')
_FLAT_OBJECT = re.compile(r"\{[^{}]*\}")

_OPENERS = {"{": "}", "[": "]"}


def fix_quotes(text: str) -> str:
    """Convert single-quoted JSON structure to double quotes and quote bare keys.

    When the text has no double quotes at all every single quote is
    converted; otherwise only quotes around keys and whole values are, so
    apostrophes inside strings survive.
    """
    if "'" in text and '"' not in text:
        text = text.replace("'", '"')
    elif _STRUCTURAL_SINGLE_QUOTE.search(text):
        text = _SINGLE_QUOTED_KEY.sub(r'\1"\2"\3', text)
        text = _SINGLE_QUOTED_VALUE.sub(r'\1"\2"\3', text)
        text = _SINGLE_QUOTED_ITEM.sub(r'\1"\2"', text)
    return _UNQUOTED_KEY.sub(r'\1"\2"\3', text)


def unclosed_brackets(text: str) -> list[str]:
    """Stack of openers left unclosed, ignoring brackets inside strings."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in _OPENERS:
            stack.append(char)
        elif char in "}]" and stack and _OPENERS[stack[-1]] == char:
            stack.pop()
    return stack


def balance_brackets(text: str) -> str:
    """Append the closers for every unclosed ``{`` and ``[``, innermost first."""
    stack = unclosed_brackets(text)
    fixed = text.rstrip().rstrip(",")
    return fixed + "".join(_OPENERS[opener] for opener in reversed(stack))


def fix_escapes(text: str) -> str:
    """Double every backslash that does not start a valid JSON escape."""
    return _INVALID_ESCAPE.sub(r"\\\\", text)


def extract_partial(text: str) -> str:
    """Longest flat ``{...}`` substring, or a sentinel object."""
    candidates = _FLAT_OBJECT.findall(text)
    if candidates:
        return max(candidates, key=len)
    return FALLBACK_SENTINEL


def _message(error: json.JSONDecodeError) -> str:
    return error.msg


DEFAULT_STRATEGIES: tuple[ParseRecoveryStrategy, ...] = (
    ParseRecoveryStrategy(
        name="quote-fixing",
        priority=100,
        can_recover=lambda error, text: _message(error).startswith(
            ("Expecting property name", "Expecting value")
        )
        and ("'" in text or _UNQUOTED_KEY.search(text) is not None),
        recover=lambda _error, text: fix_quotes(text),
    ),
    ParseRecoveryStrategy(
        name="bracket-balancing",
        priority=90,
        can_recover=lambda _error, text: bool(unclosed_brackets(text)),
        recover=lambda _error, text: balance_brackets(text),
    ),
    ParseRecoveryStrategy(
        name="escape-fixing",
        priority=80,
        can_recover=lambda error, text: "Invalid \\escape" in _message(error)
        or ("\\" in text and _INVALID_ESCAPE.search(text) is not None),
        recover=lambda _error, text: fix_escapes(text),
    ),
    ParseRecoveryStrategy(
        name="partial-extraction",
        priority=70,
        can_recover=lambda _error, text: "{" in text and "}" in text,
        recover=lambda _error, text: extract_partial(text),
    ),
)


class JSONRecoveryParser:
    """Strict JSON parse with one recovery attempt."""

    def __init__(self) -> None:
        self.strategies: StrategyRegistry[ParseRecoveryStrategy] = StrategyRegistry(
            "parse-recovery"
        )
        for strategy in DEFAULT_STRATEGIES:
            self.strategies.register(strategy)

    def register_strategy(self, strategy: ParseRecoveryStrategy) -> None:
        self.strategies.register(strategy)

    def parse(self, cleaned: str) -> ParseOutcome:
        """Parse `cleaned`, recovering once if needed.

        Raises:
            ResponseParseError: When no strategy matched or the recovered text
                still does not parse. The error carries the original text.
        """
        try:
            return ParseOutcome(json.loads(cleaned))
        except json.JSONDecodeError as e:
            original_error = e

        log.warning(
            "Initial JSON parse failed, attempting recovery: %s (preview: %r)",
            original_error,
            cleaned[:200],
        )

        recovered, strategy_name = self._recover(original_error, cleaned)
        if recovered is None:
            raise ResponseParseError(
                f"Invalid JSON response from LLM: {original_error}",
                text=cleaned,
                original_error=original_error,
            )

        try:
            value = json.loads(recovered)
        except json.JSONDecodeError as e:
            log.error(
                "JSON recovery with %s failed: %s (preview: %r)",
                strategy_name,
                e,
                cleaned[:200],
            )
            raise ResponseParseError(
                f"Invalid JSON response from LLM: {original_error}",
                text=cleaned,
                original_error=original_error,
                strategy=strategy_name,
            ) from e

        log.info("JSON parsing recovered with strategy %s", strategy_name)
        return ParseOutcome(value, strategy_name)

    def _recover(
        self, error: json.JSONDecodeError, text: str
    ) -> tuple[str | None, str | None]:
        for strategy in self.strategies:
            if not strategy.can_recover(error, text):
                continue
            log.debug("Attempting JSON recovery with strategy: %s", strategy.name)
            try:
                return strategy.recover(error, text), strategy.name
            except Exception as e:
                # A broken custom strategy falls through to the next match
                log.debug("JSON recovery strategy %s raised: %s", strategy.name, e)
        log.warning("No JSON recovery strategy matched")
        return None, None
