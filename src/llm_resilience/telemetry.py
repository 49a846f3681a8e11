"""Scoped telemetry for the processing and retry layers.

When disabled (the default) every call goes to a shared, stateless no-op
context. Set ``LLM_RESILIENCE_TELEMETRY=1`` (or ``DEBUG=1``) and pass at
least one reporter to get nested timing scopes and counters.
"""

from collections import deque
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
import logging
import os
import time
from types import TracebackType
from typing import Any, Protocol, Self, runtime_checkable

log = logging.getLogger(__name__)

_scope_stack_var: ContextVar[tuple[str, ...]] = ContextVar(
    "llm_resilience_scope_stack", default=()
)

# Evaluated once at import time
_TELEMETRY_ENABLED = (
    os.getenv("LLM_RESILIENCE_TELEMETRY") == "1" or os.getenv("DEBUG") == "1"
)


@runtime_checkable
class TelemetryReporter(Protocol):
    """Duck-typed sink for timings and metrics."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None: ...
    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None: ...


@dataclass(frozen=True, slots=True)
class _NoOpTelemetryContext:
    def __call__(self, name: str, **metadata: Any) -> Self:  # noqa: ARG002
        return self

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        return None

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        pass

    def gauge(self, name: str, value: float, **metadata: Any) -> None:
        pass

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        pass


class _EnabledTelemetryContext:
    __slots__ = ("reporters",)

    def __init__(self, *reporters: TelemetryReporter):
        self.reporters = reporters

    def __call__(
        self, name: str, **metadata: Any
    ) -> AbstractContextManager["_EnabledTelemetryContext"]:
        return self._scope(name, **metadata)

    @contextmanager
    def _scope(self, name: str, **metadata: Any) -> Iterator["_EnabledTelemetryContext"]:
        if not name or not isinstance(name, str):
            raise ValueError("Scope name must be a non-empty string")

        parent = _scope_stack_var.get()
        token = _scope_stack_var.set((*parent, name))
        start = time.perf_counter()
        try:
            yield self
        finally:
            duration = time.perf_counter() - start
            _scope_stack_var.reset(token)
            self._emit(
                "record_timing",
                ".".join((*parent, name)),
                duration,
                depth=len(parent),
                parent_scope=".".join(parent) or None,
                **metadata,
            )

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        stack = _scope_stack_var.get()
        self._emit(
            "record_metric",
            ".".join((*stack, name)),
            value,
            depth=len(stack),
            parent_scope=".".join(stack) or None,
            **metadata,
        )

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        self.metric(name, increment, metric_type="counter", **metadata)

    def gauge(self, name: str, value: float, **metadata: Any) -> None:
        self.metric(name, value, metric_type="gauge", **metadata)

    def _emit(self, method: str, scope: str, value: Any, **metadata: Any) -> None:
        for reporter in self.reporters:
            try:
                getattr(reporter, method)(scope, value, **metadata)
            except Exception as e:
                # A broken reporter must never break response processing
                log.error(
                    "Telemetry reporter '%s' failed: %s",
                    type(reporter).__name__,
                    e,
                    exc_info=True,
                )


_NO_OP_SINGLETON = _NoOpTelemetryContext()

type TelemetryContextProtocol = _EnabledTelemetryContext | _NoOpTelemetryContext


def TelemetryContext(*reporters: TelemetryReporter) -> TelemetryContextProtocol:  # noqa: N802
    """Return a live context, or the shared no-op one when disabled."""
    if _TELEMETRY_ENABLED and reporters:
        return _EnabledTelemetryContext(*reporters)
    return _NO_OP_SINGLETON


class InMemoryReporter:
    """Reporter that keeps the newest samples per scope, for development."""

    def __init__(self, max_entries_per_scope: int = 1000):
        self.max_entries = max_entries_per_scope
        self.timings: dict[str, deque[tuple[float, dict[str, Any]]]] = {}
        self.metrics: dict[str, deque[tuple[Any, dict[str, Any]]]] = {}

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:
        self.timings.setdefault(scope, deque(maxlen=self.max_entries)).append(
            (duration, metadata)
        )

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:
        self.metrics.setdefault(scope, deque(maxlen=self.max_entries)).append(
            (value, metadata)
        )

    def get_report(self) -> str:
        lines = ["=== Telemetry Report ===", "", "--- Timings ---"]
        for scope, samples in sorted(self.timings.items()):
            durations = [d for d, _ in samples]
            lines.append(
                f"{scope:<40} | Calls: {len(durations):<4} | "
                f"Avg: {sum(durations) / len(durations):.4f}s | "
                f"Total: {sum(durations):.4f}s"
            )
        if self.metrics:
            lines += ["", "--- Metrics ---"]
            for scope, values in sorted(self.metrics.items()):
                total = sum(v for v, _ in values if isinstance(v, int | float))
                lines.append(
                    f"{scope:<40} | Count: {len(values):<4} | Total: {total:,.0f}"
                )
        return "\n".join(lines)
