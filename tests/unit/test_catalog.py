"""Tests for ModelCatalog."""

from __future__ import annotations

import pytest

from llm_relay.catalog import ModelCatalog
from llm_relay.exceptions import ProviderNotFoundError, ValidationError
from llm_relay.registry import ProviderRegistry
from llm_relay.store import InMemoryModelStore
from llm_relay.testing import FakeProviderClient, fake_factories
from llm_relay.types import ModelInfo

OLLAMA = {"type": "ollama", "base_url": "http://localhost:11434"}


def _registry(**clients: FakeProviderClient) -> ProviderRegistry:
    return ProviderRegistry(factories=fake_factories(clients))


@pytest.mark.unit
class TestLoadAll:
    @pytest.mark.asyncio
    async def test_stored_models_replace_static_table(self) -> None:
        registry = _registry()
        registry.register_provider("local", OLLAMA)
        store = InMemoryModelStore(
            [
                ModelInfo(model_id="phi3", provider="local"),
                ModelInfo(model_id="stale", provider="local", is_active=False),
                ModelInfo(model_id="orphan", provider="gone"),
            ]
        )
        catalog = ModelCatalog(registry, store)

        count = await catalog.load_all()

        ids = {m.model_id for m in catalog.models("local")}
        assert ids == {"phi3"}
        assert "stale" not in ids
        assert "orphan" not in {m.model_id for m in catalog.models()}
        assert count == len(catalog.models())

    @pytest.mark.asyncio
    async def test_unsynced_provider_cached_from_static_table(self) -> None:
        registry = _registry()
        registry.register_provider("local", OLLAMA)
        registry.register_provider("synced", {**OLLAMA, "base_url": "http://other:11434"})
        store = InMemoryModelStore([ModelInfo(model_id="phi3", provider="synced")])
        catalog = ModelCatalog(registry, store)

        await catalog.load_all()

        assert {m.model_id for m in catalog.models("local")} == {"llama2", "mistral", "codellama"}
        assert {m.model_id for m in catalog.models("synced")} == {"phi3"}
        # Static entries stay resolvable when pinned.
        assert catalog.resolve("llama2", "synced").provider == "synced"

    @pytest.mark.asyncio
    async def test_inactive_providers_excluded(self) -> None:
        registry = _registry()
        registry.register_provider("off", {**OLLAMA, "is_active": False})
        catalog = ModelCatalog(registry)
        assert await catalog.load_all() == 0


@pytest.mark.unit
class TestResolve:
    @pytest.mark.asyncio
    async def test_resolve_on_named_provider(self) -> None:
        registry = _registry()
        registry.register_provider("local", OLLAMA)
        catalog = ModelCatalog(registry)
        await catalog.load_all()

        info = catalog.resolve("mistral", "local")
        assert info.provider == "local"
        assert info.model_id == "mistral"

    @pytest.mark.asyncio
    async def test_resolve_prefers_higher_priority_provider(self) -> None:
        registry = _registry()
        registry.register_provider("low", {**OLLAMA, "priority": 1})
        registry.register_provider("high", {**OLLAMA, "priority": 5})
        catalog = ModelCatalog(registry)
        await catalog.load_all()

        assert catalog.resolve("llama2").provider == "high"

    def test_resolve_falls_back_to_static_config(self) -> None:
        """Resolution works before the cache is loaded."""
        registry = _registry()
        registry.register_provider("local", OLLAMA)
        catalog = ModelCatalog(registry)
        assert catalog.resolve("codellama").provider == "local"

    def test_default_model_outside_table_resolves(self) -> None:
        registry = _registry()
        registry.register_provider(
            "local", {**OLLAMA, "default_model": "phi3", "models": [{"model_id": "qwen"}]}
        )
        catalog = ModelCatalog(registry)
        info = catalog.resolve("phi3", "local")
        assert info.is_default
        assert info.provider == "local"

    def test_unknown_model(self) -> None:
        registry = _registry()
        registry.register_provider("local", OLLAMA)
        catalog = ModelCatalog(registry)
        with pytest.raises(ValidationError, match="gpt-9"):
            catalog.resolve("gpt-9")

    def test_unknown_provider(self) -> None:
        catalog = ModelCatalog(_registry())
        with pytest.raises(ProviderNotFoundError):
            catalog.resolve("llama2", "missing")


@pytest.mark.unit
class TestResolveOrSync:
    @pytest.mark.asyncio
    async def test_miss_triggers_single_sync(self) -> None:
        client = FakeProviderClient(models=[ModelInfo(model_id="phi3")])
        registry = _registry(local=client)
        registry.register_provider("local", OLLAMA)
        catalog = ModelCatalog(registry)
        await catalog.load_all()

        info = await catalog.resolve_or_sync("phi3", "local")

        assert info.model_id == "phi3"
        assert [c.method for c in client.calls] == ["list_models"]

    @pytest.mark.asyncio
    async def test_still_missing_after_sync_raises(self) -> None:
        client = FakeProviderClient(models=[])
        registry = _registry(local=client)
        registry.register_provider("local", OLLAMA)
        catalog = ModelCatalog(registry)

        with pytest.raises(ValidationError):
            await catalog.resolve_or_sync("phi3", "local")
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_unpinned_miss_does_not_sync(self) -> None:
        client = FakeProviderClient(models=[ModelInfo(model_id="phi3")])
        registry = _registry(local=client)
        registry.register_provider("local", OLLAMA)
        catalog = ModelCatalog(registry)

        with pytest.raises(ValidationError):
            await catalog.resolve_or_sync("phi3")
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_static_provider_does_not_sync(self) -> None:
        client = FakeProviderClient(models=[ModelInfo(model_id="phi3")])
        registry = _registry(local=client)
        registry.register_provider("local", {**OLLAMA, "supports_dynamic_models": False})
        catalog = ModelCatalog(registry)

        with pytest.raises(ValidationError):
            await catalog.resolve_or_sync("phi3", "local")
        assert client.calls == []


@pytest.mark.unit
class TestSync:
    @pytest.mark.asyncio
    async def test_sync_reloads_cache(self) -> None:
        client = FakeProviderClient(models=[ModelInfo(model_id="phi3")])
        registry = _registry(local=client)
        registry.register_provider("local", OLLAMA)
        catalog = ModelCatalog(registry)

        synced = await catalog.sync("local")

        assert [m.model_id for m in synced] == ["phi3"]
        assert "phi3" in {m.model_id for m in catalog.models("local")}


@pytest.mark.unit
class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_tracks_registry_without_store_reads(self) -> None:
        registry = _registry()
        registry.register_provider("a", OLLAMA)
        registry.register_provider("b", {**OLLAMA, "base_url": "http://b:11434"})
        registry.set_active_provider("a")
        store = InMemoryModelStore([ModelInfo(model_id="phi3", provider="b")])
        catalog = ModelCatalog(registry, store)
        await catalog.load_all()

        registry.remove_provider("b")
        catalog.refresh()

        assert {m.provider for m in catalog.models()} == {"a"}
        with pytest.raises(ValidationError):
            catalog.resolve("phi3")

    @pytest.mark.asyncio
    async def test_refresh_reuses_last_stored_snapshot(self) -> None:
        registry = _registry()
        store = InMemoryModelStore([ModelInfo(model_id="phi3", provider="late")])
        catalog = ModelCatalog(registry, store)
        await catalog.load_all()

        registry.register_provider("late", OLLAMA)
        catalog.refresh()

        assert [m.model_id for m in catalog.models("late")] == ["phi3"]
