"""Provider registry — validates configs and owns provider client instances."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from llm_relay.config import ProviderConfig
from llm_relay.exceptions import (
    GatewayError,
    ProviderError,
    ProviderInitError,
    ProviderNotFoundError,
)
from llm_relay.provider_specs import apply_provider_defaults, validate_provider_config
from llm_relay.providers.anthropic import AnthropicClient
from llm_relay.providers.base import ModelListingClient, ProviderClient
from llm_relay.providers.ollama import OllamaClient
from llm_relay.providers.openai_compat import OpenAICompatibleClient
from llm_relay.store import ModelStore
from llm_relay.types import ModelInfo, ProviderType

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ProviderConfig], ProviderClient]

# Static type → constructor table. Every ProviderType must have an entry.
CLIENT_FACTORIES: dict[ProviderType, ClientFactory] = {
    ProviderType.OPENAI: OpenAICompatibleClient.from_config,
    ProviderType.ANTHROPIC: AnthropicClient.from_config,
    ProviderType.MISTRAL: OpenAICompatibleClient.from_config,
    ProviderType.OLLAMA: OllamaClient.from_config,
    ProviderType.GROQ: OpenAICompatibleClient.from_config,
    ProviderType.HUGGINGFACE: OpenAICompatibleClient.from_config,
}

_missing_factories = set(ProviderType) - set(CLIENT_FACTORIES)
if _missing_factories:  # pragma: no cover - guards new enum members
    msg = f"No client factory for provider types: {sorted(t.value for t in _missing_factories)}"
    raise RuntimeError(msg)


@dataclass(frozen=True)
class RegisteredProvider:
    """An immutable (config, client) pair. Replaced whole, never mutated."""

    config: ProviderConfig
    client: ProviderClient
    order: int


class ProviderRegistry:
    """Owns one client per registered provider and the active-provider pointer.

    Mutations build the new client first and then swap in a fresh mapping,
    so a reader resolving a provider by name sees either the old entry or
    the new one, never a half-built client. Mutations never raise: they log
    and return ``False``.

    Usage:
        registry = ProviderRegistry()
        registry.register_provider("local", {"type": "ollama", "base_url": "http://localhost:11434"})
        client = registry.get_provider("local")
    """

    def __init__(self, factories: Mapping[ProviderType, ClientFactory] | None = None) -> None:
        self._factories: dict[ProviderType, ClientFactory] = {
            **CLIENT_FACTORIES,
            **(factories or {}),
        }
        self._entries: dict[str, RegisteredProvider] = {}
        self._active: str | None = None
        self._retired: list[ProviderClient] = []
        self._order = itertools.count()

    # ── Construction ────────────────────────────────────────────

    def _build(
        self, name: str, config: ProviderConfig | Mapping[str, Any]
    ) -> tuple[ProviderConfig, ProviderClient]:
        if isinstance(config, ProviderConfig):
            parsed = config if config.name == name else config.model_copy(update={"name": name})
        else:
            parsed = ProviderConfig.model_validate({**config, "name": name})

        validate_provider_config(parsed)
        parsed = apply_provider_defaults(parsed)

        factory = self._factories[parsed.type]
        try:
            client = factory(parsed)
        except Exception as exc:
            raise ProviderInitError(name, str(exc)) from exc
        return parsed, client

    def register_provider(self, name: str, config: ProviderConfig | Mapping[str, Any]) -> bool:
        """Validate ``config``, build its client and store it under ``name``.

        The first enabled provider registered becomes the active provider.

        Returns:
            ``True`` on success; ``False`` (logged) on invalid config,
            construction failure or duplicate name.
        """
        if name in self._entries:
            logger.warning(
                "Provider already registered; use update_provider_config",
                extra={"provider": name},
            )
            return False

        try:
            parsed, client = self._build(name, config)
        except (PydanticValidationError, GatewayError, TypeError) as exc:
            logger.error(
                "Provider registration failed",
                extra={"provider": name, "error": str(exc)},
            )
            return False

        entry = RegisteredProvider(config=parsed, client=client, order=next(self._order))
        self._entries = {**self._entries, name: entry}
        if self._active is None and parsed.is_active:
            self._active = name

        logger.info(
            "Registered provider",
            extra={"provider": name, "type": parsed.type.value, "priority": parsed.priority},
        )
        return True

    def update_provider_config(
        self, name: str, new_config: ProviderConfig | Mapping[str, Any]
    ) -> bool:
        """Re-validate and atomically replace ``name``'s config and client.

        The previous client is retired rather than reused; requests already
        holding it finish against the old configuration. Retired clients are
        closed by :meth:`aclose`.
        """
        current = self._entries.get(name)
        if current is None:
            logger.error("Cannot update unknown provider", extra={"provider": name})
            return False

        try:
            parsed, client = self._build(name, new_config)
        except (PydanticValidationError, GatewayError, TypeError) as exc:
            logger.error(
                "Provider config update failed",
                extra={"provider": name, "error": str(exc)},
            )
            return False

        entry = RegisteredProvider(config=parsed, client=client, order=current.order)
        self._entries = {**self._entries, name: entry}
        self._retired.append(current.client)
        logger.info("Updated provider config", extra={"provider": name})
        return True

    def remove_provider(self, name: str) -> bool:
        """Unregister ``name``. Refused for the active provider."""
        entry = self._entries.get(name)
        if entry is None:
            return False
        if name == self._active:
            logger.warning("Refusing to remove the active provider", extra={"provider": name})
            return False

        self._entries = {k: v for k, v in self._entries.items() if k != name}
        self._retired.append(entry.client)
        logger.info("Removed provider", extra={"provider": name})
        return True

    def set_active_provider(self, name: str) -> bool:
        """Make ``name`` the default provider. ``False`` if not registered."""
        if name not in self._entries:
            return False
        self._active = name
        logger.info("Active provider changed", extra={"provider": name})
        return True

    # ── Lookup ──────────────────────────────────────────────────

    @property
    def active_provider(self) -> str | None:
        """Name of the default provider, if any."""
        return self._active

    def get_provider(self, name: str | None = None) -> ProviderClient | None:
        """Return the client for ``name`` (or the active provider), else ``None``."""
        entry = self._entries.get(name or self._active or "")
        return entry.client if entry else None

    def get_provider_config(self, name: str | None = None) -> ProviderConfig | None:
        """Return the defaulted config for ``name`` (or the active provider)."""
        entry = self._entries.get(name or self._active or "")
        return entry.config if entry else None

    def list_providers(self, include_inactive: bool = False) -> list[ProviderConfig]:
        """Provider configs by priority (highest first), then registration order."""
        entries = sorted(self._entries.values(), key=lambda e: (-e.config.priority, e.order))
        return [e.config for e in entries if include_inactive or e.config.is_active]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # ── Operations across providers ─────────────────────────────

    async def test_all_connections(self) -> dict[str, bool]:
        """Run ``test_connection`` on every provider, isolating failures."""
        entries = self._entries
        names = list(entries)
        results = await asyncio.gather(
            *(entries[name].client.test_connection() for name in names),
            return_exceptions=True,
        )

        report: dict[str, bool] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Connection test raised",
                    extra={"provider": name, "error": str(result)},
                )
                report[name] = False
            else:
                report[name] = bool(result)
        return report

    async def sync_provider_models(self, name: str, store: ModelStore) -> list[ModelInfo]:
        """Refresh ``name``'s models from the vendor into ``store``.

        Returns ``[]`` for providers without dynamic model support.

        Raises:
            ProviderNotFoundError: If ``name`` is not registered.
            ProviderError: If the vendor listing fails.
        """
        entry = self._entries.get(name)
        if entry is None:
            raise ProviderNotFoundError(name)

        client = entry.client
        if not entry.config.supports_dynamic_models or not isinstance(client, ModelListingClient):
            logger.debug("Provider has a static model catalog", extra={"provider": name})
            return []

        try:
            listed = await client.list_models()
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(name, f"failed to list models: {exc}", original=exc) from exc

        models = await store.reconcile_provider_models(name, listed)
        logger.info("Synced provider models", extra={"provider": name, "count": len(models)})
        return models

    async def aclose(self) -> None:
        """Close every live and retired client, isolating failures."""
        clients = [e.client for e in self._entries.values()] + self._retired
        self._retired = []
        for client in clients:
            try:
                await client.close()
            except Exception:
                logger.exception(
                    "Error closing provider client",
                    extra={"provider": getattr(client, "name", "?")},
                )
