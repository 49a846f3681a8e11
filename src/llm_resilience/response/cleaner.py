"""Response cleaning: turn raw model output into JSON-parseable text.

Cleaning runs in two phases. Structured-prose answers are first converted to
JSON (see `llm_resilience.response.prose`); then every registered cleaning
strategy whose predicate matches the current text is applied, cumulatively,
highest priority first.
"""

from __future__ import annotations

from collections.abc import Callable
import dataclasses
import logging
import re

from llm_resilience.core.registry import StrategyRegistry
from llm_resilience.core.types import CleaningResult
from llm_resilience.exceptions import ResponseCleaningError

from .prose import DEFAULT_MARKER_THRESHOLD, convert_prose_to_json, looks_like_prose

log = logging.getLogger(__name__)

PROSE_CONVERSION = "structured-text-conversion"


@dataclasses.dataclass(frozen=True, slots=True)
class CleaningStrategy:
    """A named text transform applied when `can_handle` matches."""

    name: str
    priority: int
    can_handle: Callable[[str], bool]
    clean: Callable[[str], str]


# --- Scanners ---

_STRING_LITERAL = re.compile(r'"(?:[^"\\\n]|\\.)*"')
_FENCE_MARKER = re.compile(r"```[A-Za-z]*[ \t]*\n?")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def _outside_strings(text: str, transform: Callable[[str], str]) -> str:
    """Apply `transform` to the parts of `text` outside double-quoted strings."""
    pieces: list[str] = []
    last = 0
    for match in _STRING_LITERAL.finditer(text):
        pieces.append(transform(text[last : match.start()]))
        pieces.append(match.group(0))
        last = match.end()
    pieces.append(transform(text[last:]))
    return "".join(pieces)


def extract_first_object(text: str) -> str:
    """Return the first balanced ``{...}`` substring of `text`.

    Braces inside string literals do not count. When the object never
    closes, everything from the first ``{`` onward is returned so that the
    parser's bracket balancing can finish it.
    """
    start = text.find("{")
    if start == -1:
        return text
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return text[start:].rstrip()


def strip_comments(text: str) -> str:
    """Remove ``//`` line comments and ``/* */`` block comments outside strings.

    Single-quoted spans are treated as strings as well.
    """
    out: list[str] = []
    index = 0
    length = len(text)
    quote: str | None = None
    while index < length:
        char = text[index]
        if quote is not None:
            out.append(char)
            if char == "\\" and index + 1 < length:
                out.append(text[index + 1])
                index += 2
                continue
            if char == quote:
                quote = None
            index += 1
            continue
        if char in "\"'":
            quote = char
            out.append(char)
            index += 1
        elif text.startswith("//", index):
            newline = text.find("\n", index)
            index = length if newline == -1 else newline
        elif text.startswith("/*", index):
            end = text.find("*/", index + 2)
            index = length if end == -1 else end + 2
        else:
            out.append(char)
            index += 1
    return "".join(out)


def normalize_whitespace(text: str) -> str:
    """Drop blank lines, trim every line, and collapse runs of spaces and tabs."""
    lines = (line.strip() for line in text.splitlines())
    joined = "\n".join(line for line in lines if line)
    return _outside_strings(joined, lambda part: re.sub(r"[ \t]{2,}", " ", part))


def remove_fences(text: str) -> str:
    return _FENCE_MARKER.sub("", text.strip()).replace("```", "").strip()


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", text)


def _changes(transform: Callable[[str], str]) -> Callable[[str], bool]:
    return lambda text: transform(text) != text


DEFAULT_STRATEGIES: tuple[CleaningStrategy, ...] = (
    CleaningStrategy(
        name="markdown-removal",
        priority=100,
        can_handle=lambda text: "```" in text,
        clean=remove_fences,
    ),
    CleaningStrategy(
        name="json-extraction",
        priority=90,
        can_handle=lambda text: "{" in text and extract_first_object(text) != text,
        clean=extract_first_object,
    ),
    CleaningStrategy(
        name="whitespace-normalization",
        priority=80,
        can_handle=_changes(normalize_whitespace),
        clean=normalize_whitespace,
    ),
    CleaningStrategy(
        name="comment-removal",
        priority=70,
        can_handle=lambda text: ("//" in text or "/*" in text)
        and strip_comments(text) != text,
        clean=strip_comments,
    ),
    CleaningStrategy(
        name="trailing-comma-removal",
        priority=60,
        can_handle=lambda text: _TRAILING_COMMA.search(text) is not None,
        clean=remove_trailing_commas,
    ),
)


class ResponseCleaner:
    """Applies prose conversion and the registered cleaning strategies."""

    def __init__(self, *, prose_marker_threshold: int = DEFAULT_MARKER_THRESHOLD):
        self.prose_marker_threshold = prose_marker_threshold
        self.strategies: StrategyRegistry[CleaningStrategy] = StrategyRegistry("cleaning")
        for strategy in DEFAULT_STRATEGIES:
            self.strategies.register(strategy)

    def register_strategy(self, strategy: CleaningStrategy) -> None:
        self.strategies.register(strategy)

    def clean(self, raw: str) -> CleaningResult:
        cleaned = raw
        applied: list[str] = []

        if looks_like_prose(raw, self.prose_marker_threshold):
            log.debug("Detected structured prose response, converting to JSON")
            try:
                cleaned = convert_prose_to_json(raw)
                applied.append(PROSE_CONVERSION)
            except ResponseCleaningError as e:
                log.warning("Structured prose conversion failed: %s", e)

        for strategy in self.strategies:
            if not strategy.can_handle(cleaned):
                continue
            before = len(cleaned)
            cleaned = strategy.clean(cleaned)
            applied.append(strategy.name)
            log.debug(
                "Applied cleaning strategy %s (%d -> %d chars)",
                strategy.name,
                before,
                len(cleaned),
            )

        if applied:
            log.debug(
                "Cleaning applied %s (%d -> %d chars)",
                applied,
                len(raw),
                len(cleaned),
            )
        return CleaningResult(cleaned=cleaned, applied=tuple(applied))
