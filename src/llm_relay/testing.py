"""Testing utilities shipped with llm-relay.

Provides ``FakeProviderClient`` so consumers can exercise a ``Gateway``
without network access or reimplementing the ``ProviderClient`` Protocol.

Usage::

    from llm_relay import Gateway, ProviderRegistry
    from llm_relay.testing import FakeProviderClient, fake_factories

    primary = FakeProviderClient(reply="hello")
    primary.fail_with(500)
    backup = FakeProviderClient(reply="from backup")

    registry = ProviderRegistry(
        factories=fake_factories({"primary": primary, "backup": backup})
    )
    registry.register_provider("primary", {"type": "ollama", "base_url": "http://a", "priority": 10})
    registry.register_provider("backup", {"type": "ollama", "base_url": "http://b"})

    async with Gateway(registry) as gateway:
        resp = await gateway.create_chat_completion(messages=[{"role": "user", "content": "hi"}])
        assert resp.content == "from backup"
        assert primary.call_count == 1
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from dataclasses import dataclass

from llm_relay.config import ProviderConfig
from llm_relay.exceptions import ProviderError
from llm_relay.types import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    ModelInfo,
    ProviderType,
    StreamChunk,
    TokenUsage,
)


@dataclass
class FakeCall:
    """Record of a single call made on a ``FakeProviderClient``."""

    method: str
    request: ChatCompletionRequest | EmbeddingRequest | None
    model: str | None


class FakeProviderClient:
    """Fake provider client for testing. Implements ``ProviderClient`` and
    ``ModelListingClient``.

    Replies are scripted: ``reply`` (or ``response_factory``) for plain
    completions, ``chunks`` for streams. Failures are injected with
    :meth:`fail_with` (before any output) or :meth:`fail_stream_after`
    (mid-stream).
    """

    def __init__(
        self,
        name: str = "fake",
        reply: str = "fake reply",
        chunks: Sequence[str] | None = None,
        prompt_tokens: int = 10,
        completion_tokens: int = 5,
        models: Sequence[ModelInfo] | None = None,
        embedding_dim: int = 3,
        response_factory: Callable[[ChatCompletionRequest], str] | None = None,
        chunk_delay: float = 0.0,
    ) -> None:
        self.name = name
        self.reply = reply
        self.chunks = list(chunks) if chunks is not None else [reply]
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.models = list(models or [])
        self.embedding_dim = embedding_dim
        self.chunk_delay = chunk_delay
        self.connected = True
        self.closed = False
        self.calls: list[FakeCall] = []
        self._response_factory = response_factory
        self._failure: tuple[int, str] | None = None
        self._failures_left: int | None = None
        self._stream_fail_after: int | None = None

    # ── Scripting ───────────────────────────────────────────────

    def fail_with(
        self,
        status_code: int = 500,
        message: str = "injected failure",
        times: int | None = None,
    ) -> None:
        """Make the next ``times`` calls (all calls when ``None``) raise ``ProviderError``."""
        self._failure = (status_code, message)
        self._failures_left = times

    def fail_stream_after(self, chunks: int) -> None:
        """Raise ``ProviderError(502)`` after yielding ``chunks`` content chunks."""
        self._stream_fail_after = chunks

    def reset_failures(self) -> None:
        self._failure = None
        self._failures_left = None
        self._stream_fail_after = None

    def _maybe_fail(self) -> None:
        if self._failure is None:
            return
        if self._failures_left is not None:
            if self._failures_left <= 0:
                return
            self._failures_left -= 1
        status_code, message = self._failure
        raise ProviderError(self.name, message, status_code=status_code)

    def _usage(self) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
        )

    # ── ProviderClient ──────────────────────────────────────────

    async def create_chat_completion(
        self, request: ChatCompletionRequest
    ) -> ChatCompletionResponse:
        """Return the scripted reply."""
        self.calls.append(FakeCall("create_chat_completion", request, request.model))
        self._maybe_fail()
        content = self._response_factory(request) if self._response_factory else self.reply
        return ChatCompletionResponse(
            content=content,
            model=request.model or "fake-model",
            provider=self.name,
            usage=self._usage(),
            finish_reason="stop",
            request_id=f"fake_{len(self.calls)}",
        )

    async def stream_chat_completion(
        self, request: ChatCompletionRequest
    ) -> AsyncIterator[StreamChunk]:
        """Yield the scripted chunks, then a terminal chunk with usage."""
        self.calls.append(FakeCall("stream_chat_completion", request, request.model))
        self._maybe_fail()
        for index, content in enumerate(self.chunks):
            if self._stream_fail_after is not None and index >= self._stream_fail_after:
                raise ProviderError(self.name, "stream interrupted", status_code=502)
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            yield StreamChunk(content=content)
        yield StreamChunk(done=True, usage=self._usage(), finish_reason="stop")

    async def create_embedding(self, request: EmbeddingRequest) -> EmbeddingResponse:
        """Return one deterministic vector per input text."""
        self.calls.append(FakeCall("create_embedding", request, request.model))
        self._maybe_fail()
        embeddings = [
            [float(len(text))] + [float(i) for i in range(1, self.embedding_dim)]
            for text in request.inputs
        ]
        return EmbeddingResponse(
            embeddings=embeddings,
            model=request.model or "fake-embedding",
            provider=self.name,
            usage=TokenUsage(prompt_tokens=self.prompt_tokens),
        )

    async def list_models(self) -> list[ModelInfo]:
        """Return the scripted model list."""
        self.calls.append(FakeCall("list_models", None, None))
        self._maybe_fail()
        return list(self.models)

    async def test_connection(self) -> bool:
        return self.connected

    async def close(self) -> None:
        self.closed = True

    @property
    def call_count(self) -> int:
        """Number of completion and embedding calls recorded."""
        return sum(1 for call in self.calls if call.method != "list_models")

    @classmethod
    def from_config(cls, config: ProviderConfig) -> FakeProviderClient:
        """Factory for the provider registry. Creates a default fake named after the config."""
        return cls(name=config.name)


def fake_factories(
    clients: Mapping[str, FakeProviderClient] | None = None,
) -> dict[ProviderType, Callable[[ProviderConfig], FakeProviderClient]]:
    """Registry factories that hand out fakes for every provider type.

    Providers whose name appears in ``clients`` get that instance (renamed
    to the provider); any other provider gets a fresh default fake.
    """
    prepared = dict(clients or {})

    def _factory(config: ProviderConfig) -> FakeProviderClient:
        client = prepared.get(config.name)
        if client is None:
            return FakeProviderClient.from_config(config)
        client.name = config.name
        return client

    return {provider_type: _factory for provider_type in ProviderType}
