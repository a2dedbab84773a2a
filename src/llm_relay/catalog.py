"""In-memory model catalog backed by a :class:`~llm_relay.store.ModelStore`."""

from __future__ import annotations

import logging

from llm_relay.config import ProviderConfig
from llm_relay.exceptions import ProviderNotFoundError, ValidationError
from llm_relay.registry import ProviderRegistry
from llm_relay.store import InMemoryModelStore, ModelStore
from llm_relay.types import ModelInfo

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str]


def _static_model(config: ProviderConfig, model_id: str) -> ModelInfo | None:
    """Look ``model_id`` up in a provider's configured models.

    A provider's configured default and embedding models are always
    resolvable even when absent from its model table.
    """
    for info in config.models:
        if info.model_id == model_id:
            return info
    if model_id == config.embedding_model:
        return ModelInfo(
            model_id=model_id,
            provider=config.name,
            is_chat_model=model_id == config.default_model,
            is_embedding_model=True,
            is_default=model_id == config.default_model,
        )
    if model_id == config.default_model:
        return ModelInfo(
            model_id=model_id,
            provider=config.name,
            max_tokens=config.max_tokens or 2048,
            is_default=True,
        )
    return None


class ModelCatalog:
    """Caches active models per ``(provider, model_id)`` for fast resolution.

    ``load_all`` and ``refresh`` rebuild the whole cache and swaps it in one assignment, so
    a concurrent ``resolve`` sees either the previous or the new catalog.
    """

    def __init__(self, registry: ProviderRegistry, store: ModelStore | None = None) -> None:
        self._registry = registry
        self._store: ModelStore = store if store is not None else InMemoryModelStore()
        self._cache: dict[CacheKey, ModelInfo] = {}
        self._stored: list[ModelInfo] = []

    @property
    def store(self) -> ModelStore:
        return self._store

    async def load_all(self) -> int:
        """Re-read the store and rebuild the cache.

        Returns:
            Number of cached models.
        """
        self._stored = await self._store.load_models()
        count = self.refresh()
        logger.info("Loaded model catalog", extra={"models": count, "stored": len(self._stored)})
        return count

    def refresh(self) -> int:
        """Rebuild the cache against the registry's current providers.

        Uses the stored models read by the last :meth:`load_all`, so it can
        run right after a registry mutation without touching the store. A
        provider with stored models is cached from the store alone; its
        static table only seeds the cache until its first sync.

        Returns:
            Number of cached models.
        """
        providers = {config.name: config for config in self._registry.list_providers()}
        stored_by_provider: dict[str, list[ModelInfo]] = {}
        for info in self._stored:
            if info.provider in providers:
                stored_by_provider.setdefault(info.provider, []).append(info)

        cache: dict[CacheKey, ModelInfo] = {}
        for name, config in providers.items():
            source = stored_by_provider.get(name, config.models)
            for info in source:
                if info.is_active:
                    cache[(name, info.model_id)] = info

        self._cache = cache
        logger.debug(
            "Rebuilt model catalog",
            extra={"models": len(cache), "providers": len(providers)},
        )
        return len(cache)

    def resolve(self, model_id: str, provider: str | None = None) -> ModelInfo:
        """Return the model for ``model_id``, optionally on a given provider.

        Without ``provider`` the first match in provider-priority order wins,
        checking cached models before static configuration.

        Raises:
            ProviderNotFoundError: If ``provider`` is not registered.
            ValidationError: If no provider offers ``model_id``.
        """
        cache = self._cache

        if provider is not None:
            config = self._registry.get_provider_config(provider)
            if config is None:
                raise ProviderNotFoundError(provider)
            info = cache.get((provider, model_id)) or _static_model(config, model_id)
            if info is None:
                msg = f"Model '{model_id}' is not available from provider '{provider}'"
                raise ValidationError(msg)
            return info

        configs = self._registry.list_providers()
        for config in configs:
            info = cache.get((config.name, model_id))
            if info is not None:
                return info
        for config in configs:
            info = _static_model(config, model_id)
            if info is not None:
                return info

        msg = f"Unknown model '{model_id}'"
        raise ValidationError(msg)

    async def resolve_or_sync(self, model_id: str, provider: str | None = None) -> ModelInfo:
        """Like :meth:`resolve`, syncing a pinned dynamic provider once on a miss."""
        try:
            return self.resolve(model_id, provider)
        except ProviderNotFoundError:
            raise
        except ValidationError:
            config = self._registry.get_provider_config(provider) if provider else None
            if config is None or not config.supports_dynamic_models:
                raise
            logger.info(
                "Model not cached; syncing provider",
                extra={"provider": provider, "model": model_id},
            )

        await self.sync(provider)
        return self.resolve(model_id, provider)

    async def sync(self, provider: str) -> list[ModelInfo]:
        """Refresh ``provider``'s models from the vendor and reload the cache."""
        models = await self._registry.sync_provider_models(provider, self._store)
        await self.load_all()
        return models

    def models(self, provider: str | None = None) -> list[ModelInfo]:
        """Cached active models, optionally for a single provider."""
        cache = self._cache
        if provider is None:
            return list(cache.values())
        return [info for (name, _), info in cache.items() if name == provider]
