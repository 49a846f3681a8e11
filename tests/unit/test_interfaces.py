import pytest

from llm_resilience.core import ModelProvider, ResultCache, TargetShape
from llm_resilience.core.types import ErrorContext
from llm_resilience.resilience import RetryExecutor
from llm_resilience.validation import FLEXIBLE_SHAPE, STRICT_SHAPE

pytestmark = pytest.mark.unit


class FlakyProvider:
    def __init__(self) -> None:
        self.calls = 0

    async def generate(self, prompt: str) -> str:
        self.calls += 1
        if self.calls == 1:
            raise ConnectionError("connection reset")
        return f'{{"summary": "{prompt}"}}'


class DictCache:
    def __init__(self) -> None:
        self.entries: dict[str, object] = {}

    def get(self, key):
        return self.entries.get(key)

    def set(self, key, value, ttl_ms):
        self.entries[key] = value

    def clear(self):
        self.entries.clear()


def test_pydantic_shapes_satisfy_target_shape():
    assert isinstance(STRICT_SHAPE, TargetShape)
    assert isinstance(FLEXIBLE_SHAPE, TargetShape)


def test_cache_protocol_is_structural():
    assert isinstance(DictCache(), ResultCache)


@pytest.mark.asyncio
async def test_provider_calls_are_retried(fast_retry, fake_sleep):
    provider = FlakyProvider()
    assert isinstance(provider, ModelProvider)

    executor = RetryExecutor(fast_retry, sleep=fake_sleep)
    text = await executor.execute_with_retry(
        lambda: provider.generate("hello"), ErrorContext("generate")
    )

    assert text == '{"summary": "hello"}'
    assert provider.calls == 2
