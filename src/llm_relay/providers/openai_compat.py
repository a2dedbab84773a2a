"""OpenAI-compatible provider — OpenAI, Mistral, Groq and Hugging Face router.

All four vendors expose ``/chat/completions``, ``/embeddings`` and
``/models`` with the OpenAI request/response shapes and server-sent events
for streaming.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from typing import Any

from llm_relay.config import ProviderConfig
from llm_relay.exceptions import ProviderError
from llm_relay.providers.base import HTTPProviderClient
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

logger = logging.getLogger(__name__)

_SSE_PREFIX = "data:"
_SSE_DONE = "[DONE]"


def _usage(data: dict[str, Any] | None) -> TokenUsage:
    if not data:
        return TokenUsage()
    return TokenUsage(
        prompt_tokens=data.get("prompt_tokens") or 0,
        completion_tokens=data.get("completion_tokens") or 0,
    )


class OpenAICompatibleClient(HTTPProviderClient):
    """Provider client for vendors speaking the OpenAI HTTP API."""

    @classmethod
    def from_config(cls, config: ProviderConfig) -> OpenAICompatibleClient:
        """Factory method for the provider registry."""
        return cls(config)

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["Authorization"] = f"Bearer {self._config.get_api_key()}"
        return headers

    def _chat_payload(self, request: ChatCompletionRequest, stream: bool) -> dict[str, Any]:
        opts = request.options
        payload: dict[str, Any] = {
            "model": request.model or self._config.default_model,
            "messages": [
                {"role": message.get("role", "user"), "content": message.get("content", "")}
                for message in request.messages
            ],
            "max_tokens": opts.max_tokens or self._config.max_tokens,
            "temperature": (
                opts.temperature if opts.temperature is not None else self._config.temperature
            ),
            "stream": stream,
        }
        if opts.top_p is not None:
            payload["top_p"] = opts.top_p
        if opts.stop:
            payload["stop"] = opts.stop
        if stream and self._config.type is ProviderType.OPENAI:
            payload["stream_options"] = {"include_usage": True}
        return payload

    async def create_chat_completion(
        self, request: ChatCompletionRequest
    ) -> ChatCompletionResponse:
        """Call ``POST /chat/completions``."""
        start = time.monotonic()
        payload = self._chat_payload(request, stream=False)
        data = await self._request_json("POST", "/chat/completions", payload)

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise ProviderError(self.name, "response has no choices", status_code=502)
        choice = choices[0]

        return ChatCompletionResponse(
            content=(choice.get("message") or {}).get("content") or "",
            model=data.get("model") or payload["model"],
            provider=self.name,
            usage=_usage(data.get("usage")),
            finish_reason=choice.get("finish_reason"),
            latency_ms=(time.monotonic() - start) * 1000,
            request_id=data.get("id") or "",
        )

    async def stream_chat_completion(
        self, request: ChatCompletionRequest
    ) -> AsyncIterator[StreamChunk]:
        """Stream ``POST /chat/completions`` server-sent events."""
        payload = self._chat_payload(request, stream=True)
        usage = TokenUsage()
        finish_reason: str | None = None

        async for line in self._stream_lines("/chat/completions", payload):
            if not line.startswith(_SSE_PREFIX):
                continue
            body = line[len(_SSE_PREFIX) :].strip()
            if body == _SSE_DONE:
                break
            data = self._decode_line(body)
            if data.get("usage"):
                usage = _usage(data["usage"])
            for choice in data.get("choices") or []:
                finish_reason = choice.get("finish_reason") or finish_reason
                content = (choice.get("delta") or {}).get("content") or ""
                if content:
                    yield StreamChunk(content=content)

        yield StreamChunk(done=True, usage=usage, finish_reason=finish_reason or "stop")

    async def create_embedding(self, request: EmbeddingRequest) -> EmbeddingResponse:
        """Call ``POST /embeddings`` with every input in one batch."""
        start = time.monotonic()
        model = request.model or self._config.embedding_model or self._config.default_model
        self._check_embedding_model(model)

        data = await self._request_json(
            "POST", "/embeddings", {"model": model, "input": request.inputs}
        )
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list) or len(items) != len(request.inputs):
            raise ProviderError(self.name, "embedding count does not match input", status_code=502)

        ordered = sorted(items, key=lambda item: item.get("index", 0))
        return EmbeddingResponse(
            embeddings=[[float(v) for v in item.get("embedding", [])] for item in ordered],
            model=data.get("model") or model,
            provider=self.name,
            usage=_usage(data.get("usage")),
            latency_ms=(time.monotonic() - start) * 1000,
        )

    async def list_models(self) -> list[ModelInfo]:
        """Return the vendor's model list (``GET /models``)."""
        data = await self._request_json("GET", "/models")
        known = {info.model_id: info for info in self._config.models}
        models: list[ModelInfo] = []
        for entry in data.get("data", []) if isinstance(data, dict) else []:
            model_id = entry.get("id")
            if not model_id:
                continue
            static = known.get(model_id)
            if static is not None:
                models.append(static.model_copy(update={"provider": self.name, "is_active": True}))
                continue
            is_embedding = "embed" in model_id
            models.append(
                ModelInfo(
                    model_id=model_id,
                    provider=self.name,
                    name=model_id,
                    context_length=entry.get("context_window") or 4096,
                    is_chat_model=not is_embedding,
                    is_embedding_model=is_embedding,
                    is_default=model_id == self._config.default_model,
                )
            )
        return models

    async def test_connection(self) -> bool:
        """Check credentials against ``GET /models``."""
        try:
            await self._send_json("GET", "/models")
        except ProviderError as exc:
            logger.warning(
                "Provider connection test failed",
                extra={"provider": self.name, "error": str(exc)},
            )
            return False
        return True
