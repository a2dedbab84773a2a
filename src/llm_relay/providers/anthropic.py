"""Anthropic provider — wraps the AsyncAnthropic Messages API."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Sequence
from typing import Any

from anthropic import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncAnthropic,
)
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from llm_relay.config import ProviderConfig
from llm_relay.exceptions import ProviderError, ValidationError
from llm_relay.providers.base import is_transient
from llm_relay.types import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    EmbeddingRequest,
    EmbeddingResponse,
    ModelInfo,
    StreamChunk,
    TokenUsage,
)

logger = logging.getLogger(__name__)


def _split_system(messages: Sequence[ChatMessage]) -> tuple[str | None, list[dict[str, str]]]:
    """Anthropic takes system prompts as a parameter, not as a message."""
    system_parts: list[str] = []
    turns: list[dict[str, str]] = []
    for message in messages:
        role = message.get("role", "user")
        content = message.get("content", "")
        if role == "system":
            system_parts.append(content)
        else:
            turns.append({"role": role, "content": content})
    return ("\n\n".join(system_parts) or None), turns


class AnthropicClient:
    """Provider client backed by the Anthropic API."""

    def __init__(self, config: ProviderConfig) -> None:
        self.name = config.name
        self._config = config
        self._max_retries = config.max_retries or 0
        # Retries are handled here with tenacity, not inside the SDK.
        self._client = AsyncAnthropic(
            api_key=config.get_api_key(),
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    @classmethod
    def from_config(cls, config: ProviderConfig) -> AnthropicClient:
        """Factory method for the provider registry."""
        return cls(config)

    def _to_provider_error(self, exc: Exception) -> ProviderError:
        if isinstance(exc, APITimeoutError):
            return ProviderError(self.name, "request timed out", status_code=504, original=exc)
        if isinstance(exc, APIConnectionError):
            return ProviderError(self.name, str(exc), status_code=503, original=exc)
        if isinstance(exc, APIStatusError):
            return ProviderError(self.name, exc.message, status_code=exc.status_code, original=exc)
        return ProviderError(self.name, str(exc), original=exc)

    def _message_params(self, request: ChatCompletionRequest) -> dict[str, Any]:
        opts = request.options
        system, turns = _split_system(request.messages)
        params: dict[str, Any] = {
            "model": request.model or self._config.default_model,
            "max_tokens": opts.max_tokens or self._config.max_tokens,
            "temperature": (
                opts.temperature if opts.temperature is not None else self._config.temperature
            ),
            "messages": turns,
        }
        if system:
            params["system"] = system
        if opts.top_p is not None:
            params["top_p"] = opts.top_p
        if opts.stop:
            params["stop_sequences"] = opts.stop
        return params

    async def create_chat_completion(
        self, request: ChatCompletionRequest
    ) -> ChatCompletionResponse:
        """Call ``messages.create`` and return the joined text blocks with usage."""
        start = time.monotonic()
        params = self._message_params(request)

        @retry(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception(is_transient),
            reraise=True,
        )
        async def _do_call() -> Any:
            try:
                return await self._client.messages.create(**params)
            except (APIStatusError, APIConnectionError) as exc:
                raise self._to_provider_error(exc) from exc

        result = await _do_call()

        return ChatCompletionResponse(
            content=self._extract_text(result),
            model=getattr(result, "model", None) or params["model"],
            provider=self.name,
            usage=self._extract_usage(result),
            finish_reason=getattr(result, "stop_reason", None),
            latency_ms=(time.monotonic() - start) * 1000,
            request_id=getattr(result, "id", "") or "",
        )

    async def stream_chat_completion(
        self, request: ChatCompletionRequest
    ) -> AsyncIterator[StreamChunk]:
        """Stream text deltas via ``messages.stream``."""
        params = self._message_params(request)
        try:
            async with self._client.messages.stream(**params) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield StreamChunk(content=text)
                final = await stream.get_final_message()
        except (APIStatusError, APIConnectionError) as exc:
            raise self._to_provider_error(exc) from exc

        yield StreamChunk(
            done=True,
            usage=self._extract_usage(final),
            finish_reason=getattr(final, "stop_reason", None) or "end_turn",
        )

    async def create_embedding(self, request: EmbeddingRequest) -> EmbeddingResponse:
        """Anthropic has no embeddings endpoint."""
        msg = f"Provider '{self.name}' (anthropic) does not support embeddings"
        raise ValidationError(msg)

    async def list_models(self) -> list[ModelInfo]:
        """Return the models visible to this API key."""
        known = {info.model_id: info for info in self._config.models}
        try:
            page = await self._client.models.list(limit=100)
        except (APIStatusError, APIConnectionError) as exc:
            raise self._to_provider_error(exc) from exc

        models: list[ModelInfo] = []
        for entry in page.data:
            static = known.get(entry.id)
            if static is not None:
                models.append(static.model_copy(update={"provider": self.name, "is_active": True}))
                continue
            models.append(
                ModelInfo(
                    model_id=entry.id,
                    provider=self.name,
                    name=getattr(entry, "display_name", None) or entry.id,
                    context_length=200_000,
                    max_tokens=self._config.max_tokens or 4096,
                    is_default=entry.id == self._config.default_model,
                )
            )
        return models

    async def test_connection(self) -> bool:
        """Check the API key by listing a single model."""
        try:
            await self._client.models.list(limit=1)
        except (APIStatusError, APIConnectionError) as exc:
            logger.warning(
                "Anthropic connection test failed",
                extra={"provider": self.name, "error": str(exc)},
            )
            return False
        return True

    @staticmethod
    def _extract_text(result: object) -> str:
        blocks = getattr(result, "content", None) or []
        return "".join(
            getattr(block, "text", "") for block in blocks if getattr(block, "type", None) == "text"
        )

    @staticmethod
    def _extract_usage(result: object) -> TokenUsage:
        usage = getattr(result, "usage", None)
        if usage is None:
            return TokenUsage()
        return TokenUsage(
            prompt_tokens=getattr(usage, "input_tokens", 0) or 0,
            completion_tokens=getattr(usage, "output_tokens", 0) or 0,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.close()
