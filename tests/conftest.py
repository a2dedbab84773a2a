"""Shared test fixtures for llm-relay."""

from __future__ import annotations

import pytest

from llm_relay.config import API_KEY_ENV_VARS
from llm_relay.gateway import Gateway
from llm_relay.observability.tracing import disable_tracing
from llm_relay.registry import ProviderRegistry
from llm_relay.testing import FakeProviderClient, fake_factories
from llm_relay.usage import InMemoryUsageSink, UsageTracker


@pytest.fixture(autouse=True)
def _isolate_env(request: pytest.FixtureRequest, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep real vendor keys and relay settings out of every unit test."""
    disable_tracing()
    if request.node.get_closest_marker("integration") is not None:
        return
    for env_var in API_KEY_ENV_VARS.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.delenv("LLM_RELAY_PROVIDERS_FILE", raising=False)
    monkeypatch.delenv("LLM_RELAY_DEFAULT_PROVIDER", raising=False)


@pytest.fixture
def primary() -> FakeProviderClient:
    """Fake client registered as the high-priority provider."""
    return FakeProviderClient(reply="from primary", chunks=["Hel", "lo"])


@pytest.fixture
def backup() -> FakeProviderClient:
    """Fake client registered as the low-priority provider."""
    return FakeProviderClient(reply="from backup", chunks=["Back", "up"])


@pytest.fixture
def registry(primary: FakeProviderClient, backup: FakeProviderClient) -> ProviderRegistry:
    """Registry with two Ollama-typed providers backed by fakes."""
    reg = ProviderRegistry(factories=fake_factories({"primary": primary, "backup": backup}))
    assert reg.register_provider(
        "primary",
        {"type": "ollama", "base_url": "http://primary:11434", "priority": 10},
    )
    assert reg.register_provider(
        "backup",
        {
            "type": "ollama",
            "base_url": "http://backup:11434",
            "priority": 5,
            "default_model": "mistral",
        },
    )
    return reg


@pytest.fixture
def usage_sink() -> InMemoryUsageSink:
    return InMemoryUsageSink()


@pytest.fixture
def gateway(registry: ProviderRegistry, usage_sink: InMemoryUsageSink) -> Gateway:
    """Gateway over the two-provider registry, recording usage in memory."""
    return Gateway(registry, usage_tracker=UsageTracker([usage_sink]))
