"""Priority-ordered strategy registry shared by every processing stage."""

from __future__ import annotations

from collections.abc import Iterator
import logging
from typing import Protocol

log = logging.getLogger(__name__)


class NamedStrategy(Protocol):
    """Anything with a name and a priority can live in a registry."""

    @property
    def name(self) -> str: ...

    @property
    def priority(self) -> int: ...


class StrategyRegistry[S: NamedStrategy]:
    """Ordered list of strategies, iterated by descending priority.

    Ties are broken by registration order. Registering a name that already
    exists replaces the strategy but keeps its original registration slot,
    so overriding a built-in does not reorder its peers.
    """

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._entries: list[S] = []

    def register(self, strategy: S) -> None:
        for index, existing in enumerate(self._entries):
            if existing.name == strategy.name:
                self._entries[index] = strategy
                log.debug("Replaced %s strategy: %s", self.kind, strategy.name)
                return
        self._entries.append(strategy)
        log.debug("Registered %s strategy: %s", self.kind, strategy.name)

    def unregister(self, name: str) -> bool:
        """Remove a strategy by name; returns whether one was removed."""
        before = len(self._entries)
        self._entries = [s for s in self._entries if s.name != name]
        return len(self._entries) != before

    def get(self, name: str) -> S | None:
        return next((s for s in self._entries if s.name == name), None)

    def ordered(self) -> list[S]:
        """Strategies sorted for a pass (re-sorted on every call)."""
        ranked = sorted(
            enumerate(self._entries), key=lambda pair: (-pair[1].priority, pair[0])
        )
        return [strategy for _, strategy in ranked]

    def names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.ordered())

    def __iter__(self) -> Iterator[S]:
        return iter(self.ordered())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return any(s.name == name for s in self._entries)
