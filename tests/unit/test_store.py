"""Tests for config and model stores."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from llm_relay.exceptions import ConfigurationError
from llm_relay.store import (
    InMemoryModelStore,
    JsonConfigStore,
    JsonModelStore,
    StaticConfigStore,
)
from llm_relay.types import ModelInfo


@pytest.mark.unit
class TestConfigStores:
    def test_static_store_returns_copies(self) -> None:
        store = StaticConfigStore([{"name": "local", "type": "ollama"}])
        records = store.load_providers()
        records[0]["name"] = "changed"
        assert store.load_providers()[0]["name"] == "local"

    def test_json_store_wrapped(self, tmp_path: Path) -> None:
        path = tmp_path / "providers.json"
        path.write_text(json.dumps({"providers": [{"name": "local", "type": "ollama"}]}))
        assert JsonConfigStore(path).load_providers() == [{"name": "local", "type": "ollama"}]

    def test_json_store_bare_list(self, tmp_path: Path) -> None:
        path = tmp_path / "providers.json"
        path.write_text(json.dumps([{"name": "a"}, "junk", {"name": "b"}]))
        assert [r["name"] for r in JsonConfigStore(path).load_providers()] == ["a", "b"]

    def test_json_store_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            JsonConfigStore(tmp_path / "missing.json").load_providers()

    def test_json_store_malformed(self, tmp_path: Path) -> None:
        path = tmp_path / "providers.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError):
            JsonConfigStore(path).load_providers()


@pytest.mark.unit
class TestInMemoryModelStore:
    @pytest.mark.asyncio
    async def test_reconcile_marks_stale_inactive(self) -> None:
        store = InMemoryModelStore(
            [
                ModelInfo(model_id="old", provider="local"),
                ModelInfo(model_id="keep", provider="local"),
            ]
        )

        active = await store.reconcile_provider_models(
            "local", [ModelInfo(model_id="keep"), ModelInfo(model_id="new")]
        )

        assert {m.model_id for m in active} == {"keep", "new"}
        stored = {m.model_id: m for m in await store.load_models("local")}
        assert stored["old"].is_active is False
        assert stored["keep"].is_active is True
        assert stored["new"].provider == "local"

    @pytest.mark.asyncio
    async def test_reconcile_leaves_other_providers_alone(self) -> None:
        store = InMemoryModelStore([ModelInfo(model_id="gpt-4o", provider="oa")])
        await store.reconcile_provider_models("local", [ModelInfo(model_id="phi3")])
        assert [m.model_id for m in await store.load_models("oa")] == ["gpt-4o"]
        assert len(await store.load_models()) == 2

    @pytest.mark.asyncio
    async def test_failed_commit_leaves_state_unchanged(self) -> None:
        class _FailingStore(InMemoryModelStore):
            async def _commit(self, state: object) -> None:
                raise OSError("disk full")

        store = _FailingStore([ModelInfo(model_id="old", provider="local")])
        with pytest.raises(OSError):
            await store.reconcile_provider_models("local", [ModelInfo(model_id="new")])

        models = await store.load_models("local")
        assert [(m.model_id, m.is_active) for m in models] == [("old", True)]


@pytest.mark.unit
class TestJsonModelStore:
    @pytest.mark.asyncio
    async def test_persists_and_reloads(self, tmp_path: Path) -> None:
        path = tmp_path / "models.json"
        store = JsonModelStore(path)
        await store.reconcile_provider_models(
            "local", [ModelInfo(model_id="phi3"), ModelInfo(model_id="qwen")]
        )

        reloaded = JsonModelStore(path)
        assert {m.model_id for m in await reloaded.load_models("local")} == {"phi3", "qwen"}
        assert not list(tmp_path.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        store = JsonModelStore(tmp_path / "absent.json")
        assert await store.load_models() == []

    def test_malformed_file(self, tmp_path: Path) -> None:
        path = tmp_path / "models.json"
        path.write_text("[")
        with pytest.raises(ConfigurationError):
            JsonModelStore(path)
