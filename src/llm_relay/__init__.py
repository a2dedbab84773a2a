"""llm-relay — multi-provider LLM request gateway with failover.

Usage:
    from llm_relay import Gateway, GatewayConfig

    gateway = await Gateway.from_config()  # reads LLM_RELAY_* env vars
    resp = await gateway.create_chat_completion(messages=[{"role": "user", "content": "Hi"}])
"""

from __future__ import annotations

from llm_relay.catalog import ModelCatalog
from llm_relay.config import GatewayConfig, ProviderConfig, RateLimitConfig
from llm_relay.cost import calculate_cost, register_pricing
from llm_relay.exceptions import (
    AllProvidersFailedError,
    ConfigurationError,
    GatewayError,
    ProviderError,
    ProviderInitError,
    ProviderNotFoundError,
    RateLimitError,
    ValidationError,
)
from llm_relay.gateway import Gateway
from llm_relay.providers.base import ModelListingClient, ProviderClient
from llm_relay.ratelimit import RateLimiter
from llm_relay.registry import ProviderRegistry
from llm_relay.store import (
    ConfigStore,
    InMemoryModelStore,
    JsonConfigStore,
    JsonModelStore,
    ModelStore,
    StaticConfigStore,
)
from llm_relay.types import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    CompletionOptions,
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
from llm_relay.usage import InMemoryUsageSink, JsonlUsageSink, UsageSink, UsageTracker

__all__ = [
    # Core
    "Gateway",
    "GatewayConfig",
    "ProviderConfig",
    "RateLimitConfig",
    # Components
    "ProviderRegistry",
    "ModelCatalog",
    "RateLimiter",
    "UsageTracker",
    # Stores and sinks
    "ConfigStore",
    "StaticConfigStore",
    "JsonConfigStore",
    "ModelStore",
    "InMemoryModelStore",
    "JsonModelStore",
    "UsageSink",
    "InMemoryUsageSink",
    "JsonlUsageSink",
    # Types
    "ChatCompletionRequest",
    "ChatCompletionResponse",
    "ChatMessage",
    "CompletionOptions",
    "EmbeddingRequest",
    "EmbeddingResponse",
    "Endpoint",
    "ModelInfo",
    "ProviderType",
    "RateLimitStatus",
    "StreamChunk",
    "TokenUsage",
    "UsageRecord",
    # Provider
    "ProviderClient",
    "ModelListingClient",
    # Cost
    "calculate_cost",
    "register_pricing",
    # Exceptions
    "GatewayError",
    "ValidationError",
    "ProviderNotFoundError",
    "ConfigurationError",
    "ProviderInitError",
    "ProviderError",
    "RateLimitError",
    "AllProvidersFailedError",
]
