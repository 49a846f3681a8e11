"""Error classification: retryable or not, and which `ErrorKind`.

Classification looks at, in order: an explicit boolean ``retryable``
attribute on the exception, the exception type, then the message. Message
rules that mark an error retryable are checked before the ones that rule it
out, so "invalid response: connection reset" is retried. Anything
unclassified is retryable.
"""

from __future__ import annotations

import re

from llm_resilience.core.types import ErrorKind
from llm_resilience.exceptions import (
    CircuitOpenError,
    ConfigurationError,
    ResponseParseError,
    ResponseValidationError,
)


def _any(*patterns: str) -> re.Pattern[str]:
    return re.compile("|".join(f"(?:{p})" for p in patterns), re.IGNORECASE)


RETRYABLE_MESSAGE = _any(
    r"network",
    r"connection",
    r"econnrefused",
    r"econnreset",
    r"enotfound",
    r"\bdns\b",
    r"name resolution",
    r"reset by peer",
    r"timeout",
    r"timed out",
    r"etimedout",
    r"rate limit",
    r"too many requests",
    r"\b429\b",
    r"service unavailable",
    r"bad gateway",
    r"gateway timeout",
    r"\b50[234]\b",
    r"temporar",
    r"busy",
    r"overloaded",
)

NON_RETRYABLE_MESSAGE = _any(
    r"unauthori[sz]ed",
    r"authentication",
    r"forbidden",
    r"permission denied",
    r"\b40[0134]\b",
    r"bad request",
    r"not found",
    r"enoent",
    r"invalid",
    r"malformed",
    r"syntax error",
)

_NON_RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    CircuitOpenError,
    PermissionError,
    FileNotFoundError,
    ConfigurationError,
)
_RETRYABLE_TYPES: tuple[type[BaseException], ...] = (TimeoutError, ConnectionError)


def is_retryable(error: BaseException) -> bool:
    """Whether retrying the operation that raised `error` could succeed."""
    flag = getattr(error, "retryable", None)
    if isinstance(flag, bool):
        return flag
    if isinstance(error, _NON_RETRYABLE_TYPES):
        return False
    if isinstance(error, _RETRYABLE_TYPES):
        return True

    message = str(error)
    if RETRYABLE_MESSAGE.search(message):
        return True
    if NON_RETRYABLE_MESSAGE.search(message):
        return False
    return True


_KIND_BY_MESSAGE: tuple[tuple[re.Pattern[str], ErrorKind], ...] = (
    (_any(r"rate limit", r"too many requests", r"\b429\b"), ErrorKind.RATE_LIMIT),
    (_any(r"unauthori[sz]ed", r"authentication", r"\b401\b"), ErrorKind.AUTHENTICATION),
    (_any(r"forbidden", r"permission denied", r"\b403\b"), ErrorKind.PERMISSION),
    (_any(r"service unavailable", r"\b50[234]\b"), ErrorKind.SERVICE_UNAVAILABLE),
    (_any(r"timeout", r"timed out", r"etimedout"), ErrorKind.TIMEOUT),
    (_any(r"network", r"connection", r"econn", r"enotfound", r"\bdns\b"), ErrorKind.NETWORK),
    (_any(r"not found", r"\b404\b", r"enoent"), ErrorKind.FILE_NOT_FOUND),
)


def classify_error_kind(error: BaseException) -> ErrorKind:
    """Best-effort `ErrorKind` for an exception, used when recording metrics."""
    match error:
        case ResponseParseError():
            return ErrorKind.PARSE
        case ResponseValidationError():
            return ErrorKind.VALIDATION
        case ConfigurationError():
            return ErrorKind.CONFIGURATION
        case TimeoutError():
            return ErrorKind.TIMEOUT
        case PermissionError():
            return ErrorKind.PERMISSION
        case FileNotFoundError():
            return ErrorKind.FILE_NOT_FOUND
        case ConnectionError():
            return ErrorKind.NETWORK

    message = str(error)
    for pattern, kind in _KIND_BY_MESSAGE:
        if pattern.search(message):
            return kind
    return ErrorKind.UNKNOWN
