"""Pytest configuration and fixtures."""

import asyncio
from typing import List

import pytest
import pytest_asyncio

from model_orchestrator.exceptions import ConfigurationError, ProviderError
from model_orchestrator.providers.base import (
    BaseModelAdapter,
    FinishReason,
    ModelCapabilities,
    ModelRequest,
    ModelResponse,
    ProviderConfig,
    RateLimitQuota,
    TokenUsage,
)
from model_orchestrator.providers.registry import ProviderRegistry
from model_orchestrator.telemetry.metrics import MetricsCollector


class FakeAdapter(BaseModelAdapter):
    """In-process adapter with scriptable failures."""

    provider_type = "fake"
    default_endpoint = "https://fake.invalid"

    def __init__(self, config: ProviderConfig, connect_retries: int = 1):
        super().__init__(config, connect_retries=connect_retries)
        self.reply = f"reply from {config.id}"
        self.prompt_tokens = 3
        self.completion_tokens = 7
        self.delay = 0.0
        self.fail = False
        self.sent: List[ModelRequest] = []
        self.cleaned_up = False

    def detect_capabilities(self, model: str) -> ModelCapabilities:
        return ModelCapabilities(reasoning=True, streaming=True)

    def _validate_config(self) -> None:
        if self.config.api_key is None:
            raise ConfigurationError("fake API key is not configured", provider=self.id)

    async def _send_request(self, request: ModelRequest) -> ModelResponse:
        self.sent.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ProviderError(f"{self.id} is down", provider=self.id)
        return ModelResponse(
            content=self.reply,
            usage=TokenUsage(
                prompt_tokens=self.prompt_tokens,
                completion_tokens=self.completion_tokens,
                total_tokens=self.prompt_tokens + self.completion_tokens,
            ),
        )

    async def _send_stream_request(self, request: ModelRequest):
        self.sent.append(request)
        if self.fail:
            raise ProviderError(f"{self.id} is down", provider=self.id)
        for word in self.reply.split():
            yield ModelResponse(content=word, finish_reason=None)
        yield ModelResponse(
            content="",
            finish_reason=FinishReason.STOP,
            usage=TokenUsage(prompt_tokens=2, completion_tokens=3, total_tokens=5),
            metadata={"final": True},
        )

    async def _cleanup(self) -> None:
        self.cleaned_up = True


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def build_config(adapter_id: str = "alpha", **overrides) -> ProviderConfig:
    values = {
        "id": adapter_id,
        "provider": "fake",
        "model": "fake-model",
        "api_key": "test-key",
        "max_tokens": 4000,
        "cost_per_token": 0.001,
        "rate_limit": RateLimitQuota(requests_per_minute=1000),
    }
    values.update(overrides)
    return ProviderConfig(**values)


@pytest.fixture
def fake_adapter_cls():
    return FakeAdapter


@pytest.fixture
def make_config():
    return build_config


@pytest.fixture
def make_adapter():
    """Build an uninitialized FakeAdapter."""

    def factory(adapter_id: str = "alpha", **overrides) -> FakeAdapter:
        return FakeAdapter(build_config(adapter_id, **overrides))

    return factory


@pytest_asyncio.fixture
async def ready_adapter(make_adapter):
    adapter = make_adapter("alpha")
    await adapter.initialize()
    yield adapter
    await adapter.shutdown()


@pytest.fixture
def make_registry():
    """Build a registry of FakeAdapters; each id gets one adapter."""

    def factory(ids=("alpha", "beta"), default_provider: str = "alpha", fallback_providers=None, **overrides):
        return ProviderRegistry(
            {adapter_id: build_config(adapter_id, **overrides.get(adapter_id, {})) for adapter_id in ids},
            default_provider=default_provider,
            fallback_providers=fallback_providers,
            adapter_types={"fake": FakeAdapter},
        )

    return factory


@pytest_asyncio.fixture
async def registry(make_registry):
    registry = make_registry()
    await registry.initialize()
    yield registry
    await registry.shutdown()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    return MetricsCollector()
