"""Core data types for llm-relay."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, TypedDict, Union

from pydantic import BaseModel, ConfigDict


class ProviderType(str, Enum):
    """Closed set of backend kinds a provider can be registered as."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    MISTRAL = "mistral"
    OLLAMA = "ollama"
    GROQ = "groq"
    HUGGINGFACE = "huggingface"


class Endpoint(str, Enum):
    """Gateway endpoint a usage record is attributed to."""

    CHAT = "chat"
    EMBEDDING = "embedding"


class ChatMessage(TypedDict, total=False):
    """A single message in the conversation.

    Compatible with Anthropic, OpenAI and Ollama message formats.
    """

    role: Literal["user", "assistant", "system"]
    content: str


class ModelInfo(BaseModel):
    """Metadata for one model offered by one provider."""

    model_config = ConfigDict(frozen=True)

    model_id: str
    provider: str = ""
    name: str | None = None
    context_length: int = 4096
    max_tokens: int = 2048
    is_chat_model: bool = True
    is_embedding_model: bool = False
    is_default: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported for a single call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens consumed."""
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class CompletionOptions:
    """Per-request sampling overrides. ``None`` means the provider default."""

    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    stop: list[str] | None = None


@dataclass(frozen=True)
class StreamChunk:
    """One incremental piece of a streamed completion.

    The terminal chunk has ``done=True`` and carries the final ``usage``.
    A terminal chunk with ``error`` set signals a stream that failed mid-way.
    """

    content: str = ""
    done: bool = False
    usage: TokenUsage | None = None
    finish_reason: str | None = None
    error: str | None = None


ChunkCallback = Callable[[StreamChunk], Union[None, Awaitable[None]]]


@dataclass
class ChatCompletionRequest:
    """Provider-agnostic chat completion request."""

    messages: list[ChatMessage]
    model: str | None = None
    provider: str | None = None
    options: CompletionOptions = field(default_factory=CompletionOptions)
    stream: bool = False
    on_chunk: ChunkCallback | None = None

    @property
    def is_pinned(self) -> bool:
        """True when the caller chose a provider or model explicitly."""
        return self.provider is not None or self.model is not None


@dataclass
class ChatCompletionResponse:
    """Standardized chat completion response from any provider."""

    content: str
    model: str
    provider: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str | None = None
    latency_ms: float = 0.0
    request_id: str = ""
    streamed: bool = False
    metadata: dict[str, object] = field(default_factory=dict)


@dataclass
class EmbeddingRequest:
    """Provider-agnostic embedding request."""

    input: str | list[str]
    model: str | None = None
    provider: str | None = None

    @property
    def inputs(self) -> list[str]:
        """Input normalized to a list of texts."""
        if isinstance(self.input, str):
            return [self.input]
        return list(self.input)

    @property
    def is_pinned(self) -> bool:
        """True when the caller chose a provider or model explicitly."""
        return self.provider is not None or self.model is not None


@dataclass
class EmbeddingResponse:
    """One vector per input text, in input order."""

    embeddings: list[list[float]]
    model: str
    provider: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    latency_ms: float = 0.0
    request_id: str = ""


@dataclass(frozen=True)
class RateLimitStatus:
    """Snapshot of one provider's rate-limit window.

    ``limit``, ``remaining`` and ``reset_at`` are ``None`` when the provider
    has no configured window.
    """

    limit: int | None = None
    used: int = 0
    remaining: int | None = None
    reset_at: datetime | None = None
    window_seconds: float | None = None

    @property
    def exhausted(self) -> bool:
        """True when no request may be dispatched until ``reset_at``."""
        return self.remaining is not None and self.remaining <= 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UsageRecord:
    """Audit entry for one dispatch attempt."""

    provider: str
    model: str
    endpoint: Endpoint
    status_code: int
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0
    error_message: str | None = None
    cost_usd: float = 0.0
    request_id: str = ""
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def total_tokens(self) -> int:
        """Total tokens consumed by the attempt."""
        return self.prompt_tokens + self.completion_tokens

    @property
    def succeeded(self) -> bool:
        """True when the attempt completed with a 2xx status."""
        return 200 <= self.status_code < 300

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serializable representation."""
        return {
            "provider": self.provider,
            "model": self.model,
            "endpoint": self.endpoint.value,
            "status_code": self.status_code,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "latency_ms": round(self.latency_ms, 1),
            "error_message": self.error_message,
            "cost_usd": self.cost_usd,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat(),
        }
