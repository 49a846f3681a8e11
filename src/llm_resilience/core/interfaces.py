"""Duck-typed collaborator protocols.

The library talks to the outside world only through these seams. None of them
is implemented here except `TargetShape`, which has a pydantic adapter in
`llm_resilience.validation.shapes`.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from llm_resilience.core.types import Issue, Result


@runtime_checkable
class TargetShape[T](Protocol):
    """An externally defined schema a parsed value must conform to."""

    def validate(self, value: Any) -> Result[T, list[Issue]]:
        """Return `Success(model)` or `Failure(issues)`; never raise."""
        ...

    def describe(self) -> str: ...


@runtime_checkable
class ModelProvider(Protocol):
    """A language-model provider; wrap `generate` in a `RetryExecutor`."""

    async def generate(self, prompt: str) -> str: ...


@runtime_checkable
class ResultCache(Protocol):
    """Caller-side memoization of processing results by content fingerprint."""

    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any, ttl_ms: int) -> None: ...
    def clear(self) -> None: ...
