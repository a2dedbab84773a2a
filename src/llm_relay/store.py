"""Persistent configuration and model-catalog stores.

The gateway only depends on the two small protocols defined here; the
implementations cover in-memory use and simple JSON files.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from llm_relay.exceptions import ConfigurationError
from llm_relay.types import ModelInfo

logger = logging.getLogger(__name__)


# ── Provider configuration ──────────────────────────────────────


@runtime_checkable
class ConfigStore(Protocol):
    """Source of raw provider configuration records."""

    def load_providers(self) -> list[dict[str, Any]]:
        """Return one mapping per provider (validated later by the registry)."""
        ...


class StaticConfigStore:
    """Provider records supplied in code."""

    def __init__(self, providers: Sequence[dict[str, Any]]) -> None:
        self._providers = [dict(p) for p in providers]

    def load_providers(self) -> list[dict[str, Any]]:
        return [dict(p) for p in self._providers]


class JsonConfigStore:
    """Provider records read from a JSON file.

    Accepts either ``{"providers": [...]}`` or a bare list.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def load_providers(self) -> list[dict[str, Any]]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            msg = f"Cannot read providers file {self._path}: {exc}"
            raise ConfigurationError(msg) from exc

        entries = raw.get("providers", []) if isinstance(raw, dict) else raw
        if not isinstance(entries, list):
            msg = f"Providers file {self._path} must contain a list of providers"
            raise ConfigurationError(msg)
        return [entry for entry in entries if isinstance(entry, dict)]


# ── Model catalog ───────────────────────────────────────────────


@runtime_checkable
class ModelStore(Protocol):
    """Persistent side of the model catalog."""

    async def load_models(self, provider: str | None = None) -> list[ModelInfo]:
        """Return stored models (active and inactive), optionally for one provider."""
        ...

    async def reconcile_provider_models(
        self, provider: str, models: Sequence[ModelInfo]
    ) -> list[ModelInfo]:
        """Atomically make ``models`` the active set for ``provider``.

        Previously stored models absent from ``models`` are kept but marked
        inactive; present ones are upserted as active.

        Returns:
            The provider's active models after the transaction.
        """
        ...


def _reconcile(
    provider: str,
    existing: dict[str, ModelInfo],
    models: Sequence[ModelInfo],
) -> dict[str, ModelInfo]:
    updated = {
        model_id: info.model_copy(update={"is_active": False})
        for model_id, info in existing.items()
    }
    for info in models:
        updated[info.model_id] = info.model_copy(update={"provider": provider, "is_active": True})
    return updated


class InMemoryModelStore:
    """Model store held in process memory."""

    def __init__(self, models: Sequence[ModelInfo] = ()) -> None:
        self._models: dict[str, dict[str, ModelInfo]] = {}
        for info in models:
            self._models.setdefault(info.provider, {})[info.model_id] = info
        self._lock = asyncio.Lock()

    async def load_models(self, provider: str | None = None) -> list[ModelInfo]:
        snapshot = self._models
        if provider is not None:
            return list(snapshot.get(provider, {}).values())
        return [info for by_id in snapshot.values() for info in by_id.values()]

    async def reconcile_provider_models(
        self, provider: str, models: Sequence[ModelInfo]
    ) -> list[ModelInfo]:
        async with self._lock:
            updated = _reconcile(provider, self._models.get(provider, {}), models)
            new_state = {**self._models, provider: updated}
            await self._commit(new_state)
            self._models = new_state
        return [info for info in updated.values() if info.is_active]

    async def _commit(self, state: dict[str, dict[str, ModelInfo]]) -> None:
        """Persist ``state`` before it becomes visible. No-op in memory."""


class JsonModelStore(InMemoryModelStore):
    """Model store persisted to a JSON file.

    Writes go to a temporary file that replaces the target in one
    ``os.replace`` so readers never see a half-written catalog.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        super().__init__(self._read())

    def _read(self) -> list[ModelInfo]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            msg = f"Cannot read models file {self._path}: {exc}"
            raise ConfigurationError(msg) from exc
        return [ModelInfo.model_validate(entry) for entry in raw.get("models", [])]

    async def _commit(self, state: dict[str, dict[str, ModelInfo]]) -> None:
        payload = {
            "models": [
                info.model_dump(mode="json") for by_id in state.values() for info in by_id.values()
            ]
        }
        await asyncio.to_thread(self._write_atomic, payload)

    def _write_atomic(self, payload: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Wrote model catalog", extra={"path": str(self._path)})
