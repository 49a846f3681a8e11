"""Turning raw model text into a parsed JSON value."""

from .cleaner import CleaningStrategy, ResponseCleaner
from .parser import JSONRecoveryParser, ParseOutcome, ParseRecoveryStrategy
from .prose import convert_prose_to_json, looks_like_prose

__all__ = [
    "CleaningStrategy",
    "JSONRecoveryParser",
    "ParseOutcome",
    "ParseRecoveryStrategy",
    "ResponseCleaner",
    "convert_prose_to_json",
    "looks_like_prose",
]
