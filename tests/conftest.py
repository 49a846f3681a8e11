"""
Global test configuration: environment isolation and shared fixtures.
"""

import logging
import os
import random

import pytest

from llm_resilience.core.types import ErrorContext, RetryConfig


# --- Environment Isolation (Autouse) ---
@pytest.fixture(autouse=True)
def isolate_resilience_env(request, monkeypatch):
    """Ensure a clean LLM_RESILIENCE_* environment for each test.

    Escape hatch: @pytest.mark.allow_env_pollution keeps the current env.
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith("LLM_RESILIENCE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("DEBUG", raising=False)


@pytest.fixture(autouse=True)
def neutral_config_sources(request, monkeypatch, tmp_path):
    """Point the home file and the pyproject search at an empty temp directory.

    Prevents reading a developer's real ~/.config/llm_resilience.toml or the
    pyproject.toml of whatever checkout the tests run from.
    """
    if request.node.get_closest_marker("allow_real_home_config"):
        return

    fake_home_dir = tmp_path / "home_config_isolated"
    fake_home_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv(
        "LLM_RESILIENCE_CONFIG_HOME", str(fake_home_dir / "llm_resilience.toml")
    )
    monkeypatch.setenv(
        "LLM_RESILIENCE_PYPROJECT_PATH", str(tmp_path / "no_project" / "pyproject.toml")
    )


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Keep asyncio debug chatter out of captured logs."""
    logging.getLogger("asyncio").setLevel(logging.WARNING)


# --- Test Environment Markers ---
def pytest_configure(config):
    """Configure custom markers for test organization."""
    markers = [
        "unit: Fast, isolated unit tests",
        "allow_env_pollution: Keep LLM_RESILIENCE_* variables from the real environment",
        "allow_real_home_config: Read the real home configuration file",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


# --- Core Fixtures ---


class FakeSleep:
    """Records requested sleeps instead of waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


class FakeClock:
    """Monotonic clock in seconds, advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def seeded_rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def error_context() -> ErrorContext:
    return ErrorContext(operation="analyze_file", file_path="src/app.py")


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Three attempts, no jitter, so waits are exact."""
    return RetryConfig(max_attempts=3, base_delay_ms=100, max_delay_ms=1000, jitter_ms=0)


@pytest.fixture
def review_payload() -> dict:
    """A fully valid review analysis as the strict shape expects it."""
    return {
        "grade": "B",
        "coverage": 85,
        "testsPresent": True,
        "value": "high",
        "state": "pass",
        "issues": [
            {"line": 12, "severity": "medium", "type": "bug", "message": "Off by one"}
        ],
        "suggestions": ["Add a regression test for the loop bound"],
        "summary": "Solid change with one bug",
    }
