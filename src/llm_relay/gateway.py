"""Gateway — the single entry point consumers call for completions and embeddings."""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import time
import uuid
from collections.abc import Iterable, Mapping
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from llm_relay.catalog import ModelCatalog
from llm_relay.config import GatewayConfig, ProviderConfig, RateLimitConfig
from llm_relay.exceptions import (
    AllProvidersFailedError,
    GatewayError,
    ProviderError,
    ProviderNotFoundError,
    RateLimitError,
    ValidationError,
)
from llm_relay.observability.logging import configure_logging
from llm_relay.observability.tracing import configure_tracing, traced_gateway_call
from llm_relay.providers.base import ProviderClient
from llm_relay.ratelimit import RateLimiter
from llm_relay.registry import ClientFactory, ProviderRegistry
from llm_relay.store import (
    ConfigStore,
    InMemoryModelStore,
    JsonConfigStore,
    JsonModelStore,
    ModelStore,
)
from llm_relay.types import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    Endpoint,
    ModelInfo,
    ProviderType,
    RateLimitStatus,
    StreamChunk,
    TokenUsage,
    UsageRecord,
)
from llm_relay.usage import JsonlUsageSink, UsageSink, UsageTracker

logger = logging.getLogger(__name__)

# Status recorded when the caller cancels a request mid-flight.
STATUS_CLIENT_CLOSED = 499


@dataclass(frozen=True)
class _Target:
    """A request bound to one provider and one model."""

    provider: str
    model: str
    client: ProviderClient


@dataclass
class _StreamProgress:
    forwarded: bool = False
    usage: TokenUsage | None = None


def _status_of(exc: BaseException) -> int:
    if isinstance(exc, asyncio.CancelledError):
        return STATUS_CLIENT_CLOSED
    if isinstance(exc, GatewayError):
        return exc.status_code
    return 500


class Gateway:
    """Routes chat and embedding requests across registered providers.

    Requests naming a provider and/or model are pinned and dispatched once.
    Unpinned requests walk the active providers in priority order, moving on
    when a provider errors or is rate limited. Every dispatch attempt that
    reaches a provider's rate-limit check produces exactly one usage record.

    Usage:
        registry = ProviderRegistry()
        registry.register_provider("local", {"type": "ollama", "base_url": "http://localhost:11434"})

        async with Gateway(registry) as gateway:
            await gateway.load_models()
            resp = await gateway.create_chat_completion(
                messages=[{"role": "user", "content": "Hello"}],
            )
            print(resp.content, resp.provider, resp.usage.total_tokens)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        catalog: ModelCatalog | None = None,
        rate_limiter: RateLimiter | None = None,
        usage_tracker: UsageTracker | None = None,
    ) -> None:
        self._registry = registry
        self._catalog = catalog or ModelCatalog(registry)
        self._rate_limiter = rate_limiter or RateLimiter()
        self._usage = usage_tracker or UsageTracker()
        self._closed = False

        for config in registry.list_providers(include_inactive=True):
            self._rate_limiter.configure_from(config.name, config.rate_limit)

    @classmethod
    async def from_config(
        cls,
        config: GatewayConfig | None = None,
        *,
        config_store: ConfigStore | None = None,
        model_store: ModelStore | None = None,
        usage_sinks: Iterable[UsageSink] | None = None,
        factories: Mapping[ProviderType, ClientFactory] | None = None,
    ) -> Gateway:
        """Compose a gateway from settings and load its model catalog.

        Providers come from ``config_store`` or, failing that, the
        ``providers_file`` setting. Providers that fail validation are
        logged and skipped.
        """
        config = config or GatewayConfig()

        configure_logging(level=config.log_level, fmt=config.log_format)
        if config.trace_enabled:
            configure_tracing(
                exporter=config.trace_exporter,
                endpoint=config.trace_endpoint,
                service_name=config.trace_service_name,
            )

        if config_store is None and config.providers_file:
            config_store = JsonConfigStore(config.providers_file)
        if model_store is None:
            model_store = (
                JsonModelStore(config.models_file) if config.models_file else InMemoryModelStore()
            )

        sinks = list(usage_sinks or [])
        if config.usage_log_file:
            sinks.append(JsonlUsageSink(config.usage_log_file))

        default_limit = None
        if config.default_rate_limit_requests is not None:
            default_limit = RateLimitConfig(
                requests=config.default_rate_limit_requests,
                window_seconds=config.default_rate_limit_window_seconds,
            )

        registry = ProviderRegistry(factories=factories)
        gateway = cls(
            registry,
            catalog=ModelCatalog(registry, model_store),
            rate_limiter=RateLimiter(default=default_limit),
            usage_tracker=UsageTracker(sinks),
        )

        records = config_store.load_providers() if config_store is not None else []
        for record in records:
            name = record.get("name")
            if not name:
                logger.error("Skipping provider record without a name", extra={"record": record})
                continue
            gateway.register_provider(str(name), record)

        if config.default_provider and not registry.set_active_provider(config.default_provider):
            logger.warning(
                "Configured default provider is not registered",
                extra={"provider": config.default_provider},
            )

        await gateway.load_models()
        return gateway

    # ── Provider management ─────────────────────────────────────

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def catalog(self) -> ModelCatalog:
        return self._catalog

    @property
    def usage(self) -> UsageTracker:
        return self._usage

    def register_provider(self, name: str, config: ProviderConfig | Mapping[str, Any]) -> bool:
        """Register a provider, install its rate-limit window and refresh the catalog."""
        if not self._registry.register_provider(name, config):
            return False
        registered = self._registry.get_provider_config(name)
        assert registered is not None
        self._rate_limiter.configure_from(name, registered.rate_limit)
        self._catalog.refresh()
        return True

    def update_provider_config(
        self, name: str, new_config: ProviderConfig | Mapping[str, Any]
    ) -> bool:
        """Replace a provider's config and refresh the catalog.

        The rate-limit window resets only if the limit changed.
        """
        previous = self._registry.get_provider_config(name)
        if not self._registry.update_provider_config(name, new_config):
            return False
        current = self._registry.get_provider_config(name)
        assert current is not None
        if previous is None or previous.rate_limit != current.rate_limit:
            self._rate_limiter.configure_from(name, current.rate_limit)
        self._catalog.refresh()
        return True

    def remove_provider(self, name: str) -> bool:
        """Unregister a provider, drop its rate-limit window and evict its models."""
        if not self._registry.remove_provider(name):
            return False
        self._rate_limiter.remove(name)
        self._catalog.refresh()
        return True

    async def load_models(self) -> int:
        """Rebuild the model catalog from the store and provider configs."""
        return await self._catalog.load_all()

    # ── Resolution ──────────────────────────────────────────────

    def _client_for(self, provider: str) -> ProviderClient:
        client = self._registry.get_provider(provider)
        if client is None:
            raise ProviderNotFoundError(provider)
        return client

    def _pinned_provider_config(self, provider: str) -> ProviderConfig:
        config = self._registry.get_provider_config(provider)
        if config is None:
            raise ProviderNotFoundError(provider)
        if not config.is_active:
            msg = f"Provider '{provider}' is inactive"
            raise ValidationError(msg)
        return config

    async def _resolve_pinned(
        self, endpoint: Endpoint, model: str | None, provider: str | None
    ) -> _Target:
        if provider is not None:
            config = self._pinned_provider_config(provider)
            if model is None:
                model = (
                    config.embedding_model
                    if endpoint is Endpoint.EMBEDDING
                    else config.default_model
                )
                if model is None:
                    msg = f"Provider '{provider}' has no default {endpoint.value} model"
                    raise ValidationError(msg)

        assert model is not None
        info = await self._catalog.resolve_or_sync(model, provider)
        self._check_capability(endpoint, info)
        return _Target(
            provider=info.provider,
            model=info.model_id,
            client=self._client_for(info.provider),
        )

    @staticmethod
    def _check_capability(endpoint: Endpoint, info: ModelInfo) -> None:
        if endpoint is Endpoint.EMBEDDING and not info.is_embedding_model:
            msg = f"Model '{info.model_id}' on provider '{info.provider}' does not support embeddings"
            raise ValidationError(msg)

    def _failover_targets(self, endpoint: Endpoint) -> list[_Target]:
        targets: list[_Target] = []
        for config in self._registry.list_providers():
            model = config.embedding_model if endpoint is Endpoint.EMBEDDING else config.default_model
            client = self._registry.get_provider(config.name)
            if model is None or client is None:
                continue
            targets.append(_Target(provider=config.name, model=model, client=client))
        return targets

    # ── Usage ───────────────────────────────────────────────────

    def _record(
        self,
        target: _Target,
        endpoint: Endpoint,
        start: float,
        request_id: str,
        *,
        status_code: int = 200,
        usage: TokenUsage | None = None,
        error: BaseException | None = None,
    ) -> UsageRecord:
        usage = usage or TokenUsage()
        record = UsageRecord(
            provider=target.provider,
            model=target.model,
            endpoint=endpoint,
            status_code=status_code,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            latency_ms=(time.monotonic() - start) * 1000,
            error_message=(str(error) or type(error).__name__) if error is not None else None,
            request_id=request_id,
        )
        return self._usage.record_usage(record)

    # ── Chat ────────────────────────────────────────────────────

    async def create_chat_completion(
        self, request: ChatCompletionRequest | None = None, **kwargs: Any
    ) -> ChatCompletionResponse:
        """Run a chat completion, streamed to ``on_chunk`` when ``stream`` is set.

        Accepts either a :class:`ChatCompletionRequest` or its fields as
        keyword arguments.

        Raises:
            ValidationError: Empty messages, unknown or incapable model.
            ProviderNotFoundError: Pinned provider is not registered.
            RateLimitError: Pinned provider's window is exhausted, or every
                failover candidate was rate limited.
            ProviderError: Pinned provider failed, or a stream failed after
                its first chunk was forwarded.
            AllProvidersFailedError: Every failover candidate failed.
        """
        if request is None:
            request = ChatCompletionRequest(**kwargs)
        elif kwargs:
            request = dataclasses.replace(request, **kwargs)

        if not request.messages:
            msg = "messages must contain at least one message"
            raise ValidationError(msg)

        request_id = uuid.uuid4().hex

        if request.is_pinned:
            target = await self._resolve_pinned(Endpoint.CHAT, request.model, request.provider)
            return await self._dispatch_chat(target, request, request_id, _StreamProgress())

        failures: dict[str, str] = {}
        rate_limited: list[RateLimitError] = []
        for target in self._failover_targets(Endpoint.CHAT):
            progress = _StreamProgress()
            try:
                return await self._dispatch_chat(target, request, request_id, progress)
            except RateLimitError as exc:
                rate_limited.append(exc)
                failures[target.provider] = str(exc)
                self._log_failover(target, exc, request_id)
            except ProviderError as exc:
                if progress.forwarded:
                    raise
                failures[target.provider] = str(exc)
                self._log_failover(target, exc, request_id)

        raise self._exhausted(failures, rate_limited)

    async def _dispatch_chat(
        self,
        target: _Target,
        request: ChatCompletionRequest,
        request_id: str,
        progress: _StreamProgress,
    ) -> ChatCompletionResponse:
        start = time.monotonic()
        bound = dataclasses.replace(request, provider=target.provider, model=target.model)

        async with traced_gateway_call("llm.chat", target.provider, target.model) as span_data:
            try:
                self._rate_limiter.reserve(target.provider)
                if request.stream:
                    response = await self._consume_stream(target, bound, progress)
                else:
                    response = await target.client.create_chat_completion(bound)
            except BaseException as exc:
                span_data["usage"] = self._record(
                    target,
                    Endpoint.CHAT,
                    start,
                    request_id,
                    status_code=_status_of(exc),
                    usage=progress.usage,
                    error=exc,
                )
                raise

            span_data["usage"] = self._record(
                target, Endpoint.CHAT, start, request_id, usage=response.usage
            )

        latency_ms = (time.monotonic() - start) * 1000
        logger.info(
            "Chat completion succeeded",
            extra={
                "request_id": request_id,
                "provider": target.provider,
                "model": target.model,
                "streamed": request.stream,
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "latency_ms": round(latency_ms, 1),
            },
        )
        return dataclasses.replace(
            response,
            provider=target.provider,
            latency_ms=latency_ms,
            request_id=request_id,
            metadata={**response.metadata, "provider_request_id": response.request_id},
        )

    async def _consume_stream(
        self,
        target: _Target,
        request: ChatCompletionRequest,
        progress: _StreamProgress,
    ) -> ChatCompletionResponse:
        """Forward chunks to the caller as they arrive and assemble the response."""
        parts: list[str] = []
        finish_reason: str | None = None

        try:
            async with aclosing(target.client.stream_chat_completion(request)) as stream:
                async for chunk in stream:
                    if chunk.usage is not None:
                        progress.usage = chunk.usage
                    if chunk.finish_reason:
                        finish_reason = chunk.finish_reason
                    if chunk.content:
                        parts.append(chunk.content)
                    progress.forwarded = True
                    await self._emit(request, chunk)
                    if chunk.done:
                        break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if progress.forwarded:
                await self._emit_error(request, target, exc)
            raise

        return ChatCompletionResponse(
            content="".join(parts),
            model=request.model or target.model,
            provider=target.provider,
            usage=progress.usage or TokenUsage(),
            finish_reason=finish_reason,
            streamed=True,
        )

    @staticmethod
    async def _emit(request: ChatCompletionRequest, chunk: StreamChunk) -> None:
        if request.on_chunk is None:
            return
        result = request.on_chunk(chunk)
        if inspect.isawaitable(result):
            await result

    async def _emit_error(
        self, request: ChatCompletionRequest, target: _Target, exc: Exception
    ) -> None:
        try:
            await self._emit(request, StreamChunk(done=True, error=str(exc)))
        except Exception:
            logger.exception(
                "Stream callback failed while reporting an error",
                extra={"provider": target.provider},
            )

    # ── Embeddings ──────────────────────────────────────────────

    async def create_embedding(
        self, request: EmbeddingRequest | None = None, **kwargs: Any
    ) -> EmbeddingResponse:
        """Embed one or more texts, one vector per input in input order.

        Raises:
            ValidationError: Empty input, or a pinned model that is unknown
                or cannot embed.
            ProviderNotFoundError: Pinned provider is not registered.
            RateLimitError: As for chat completions.
            ProviderError: Pinned provider failed.
            AllProvidersFailedError: Every failover candidate failed.
        """
        if request is None:
            request = EmbeddingRequest(**kwargs)
        elif kwargs:
            request = dataclasses.replace(request, **kwargs)

        if not request.inputs:
            msg = "input must contain at least one text"
            raise ValidationError(msg)

        request_id = uuid.uuid4().hex

        if request.is_pinned:
            target = await self._resolve_pinned(Endpoint.EMBEDDING, request.model, request.provider)
            return await self._dispatch_embedding(target, request, request_id)

        failures: dict[str, str] = {}
        rate_limited: list[RateLimitError] = []
        for target in self._failover_targets(Endpoint.EMBEDDING):
            try:
                return await self._dispatch_embedding(target, request, request_id)
            except RateLimitError as exc:
                rate_limited.append(exc)
                failures[target.provider] = str(exc)
                self._log_failover(target, exc, request_id)
            except ProviderError as exc:
                failures[target.provider] = str(exc)
                self._log_failover(target, exc, request_id)

        raise self._exhausted(failures, rate_limited)

    async def _dispatch_embedding(
        self, target: _Target, request: EmbeddingRequest, request_id: str
    ) -> EmbeddingResponse:
        start = time.monotonic()
        bound = dataclasses.replace(request, provider=target.provider, model=target.model)

        async with traced_gateway_call("llm.embedding", target.provider, target.model) as span_data:
            try:
                self._rate_limiter.reserve(target.provider)
                response = await target.client.create_embedding(bound)
                if len(response.embeddings) != len(request.inputs):
                    raise ProviderError(
                        target.provider,
                        f"expected {len(request.inputs)} embeddings, got {len(response.embeddings)}",
                    )
            except BaseException as exc:
                span_data["usage"] = self._record(
                    target,
                    Endpoint.EMBEDDING,
                    start,
                    request_id,
                    status_code=_status_of(exc),
                    error=exc,
                )
                raise

            span_data["usage"] = self._record(
                target, Endpoint.EMBEDDING, start, request_id, usage=response.usage
            )

        latency_ms = (time.monotonic() - start) * 1000
        logger.info(
            "Embedding succeeded",
            extra={
                "request_id": request_id,
                "provider": target.provider,
                "model": target.model,
                "inputs": len(request.inputs),
                "latency_ms": round(latency_ms, 1),
            },
        )
        return dataclasses.replace(
            response, provider=target.provider, latency_ms=latency_ms, request_id=request_id
        )

    # ── Failover helpers ────────────────────────────────────────

    @staticmethod
    def _log_failover(target: _Target, exc: GatewayError, request_id: str) -> None:
        logger.warning(
            "Provider attempt failed; trying next provider",
            extra={
                "request_id": request_id,
                "provider": target.provider,
                "model": target.model,
                "error_type": type(exc).__name__,
                "status_code": exc.status_code,
                "error": str(exc),
            },
        )

    @staticmethod
    def _exhausted(
        failures: dict[str, str], rate_limited: list[RateLimitError]
    ) -> GatewayError:
        if rate_limited and len(rate_limited) == len(failures):
            return min(rate_limited, key=lambda exc: exc.reset_at)
        return AllProvidersFailedError(failures)

    # ── Accessors ───────────────────────────────────────────────

    def get_active_providers(self) -> list[ProviderConfig]:
        """Active provider configs in priority order."""
        return self._registry.list_providers()

    def get_active_models(self, provider: str | None = None) -> list[ModelInfo]:
        """Cached active models, optionally for one provider."""
        return self._catalog.models(provider)

    def get_rate_limit_status(self, provider: str) -> RateLimitStatus:
        """Read-only view of ``provider``'s rate-limit window.

        Raises:
            ProviderNotFoundError: If ``provider`` is not registered.
        """
        if provider not in self._registry:
            raise ProviderNotFoundError(provider)
        return self._rate_limiter.check_rate_limit(provider)

    async def sync_provider_models(self, provider: str) -> list[ModelInfo]:
        """Refresh ``provider``'s model list from the vendor."""
        return await self._catalog.sync(provider)

    async def test_connections(self) -> dict[str, bool]:
        """Connection check for every registered provider."""
        return await self._registry.test_all_connections()

    # ── Lifecycle ───────────────────────────────────────────────

    async def aclose(self) -> None:
        """Close every provider client."""
        if not self._closed:
            await self._registry.aclose()
            self._closed = True

    async def __aenter__(self) -> Gateway:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *exc: object) -> None:
        """Async context manager exit — closes provider clients."""
        await self.aclose()
