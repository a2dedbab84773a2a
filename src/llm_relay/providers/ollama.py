"""Ollama provider — talks to a self-hosted Ollama server over its REST API."""

from __future__ import annotations

import logging
import time
import uuid
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
    StreamChunk,
    TokenUsage,
)

logger = logging.getLogger(__name__)


class OllamaClient(HTTPProviderClient):
    """Provider client for the Ollama ``/api`` endpoints.

    Streaming responses are newline-delimited JSON objects; the final object
    has ``done: true`` and carries ``prompt_eval_count``/``eval_count``.
    """

    @classmethod
    def from_config(cls, config: ProviderConfig) -> OllamaClient:
        """Factory method for the provider registry."""
        return cls(config)

    def _chat_payload(self, request: ChatCompletionRequest, stream: bool) -> dict[str, Any]:
        opts = request.options
        options: dict[str, Any] = {
            "num_predict": opts.max_tokens or self._config.max_tokens,
            "temperature": (
                opts.temperature if opts.temperature is not None else self._config.temperature
            ),
        }
        if opts.top_p is not None:
            options["top_p"] = opts.top_p
        if opts.stop:
            options["stop"] = opts.stop
        return {
            "model": request.model or self._config.default_model,
            "messages": [
                {"role": message.get("role", "user"), "content": message.get("content", "")}
                for message in request.messages
            ],
            "options": options,
            "stream": stream,
        }

    @staticmethod
    def _usage(data: dict[str, Any]) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=data.get("prompt_eval_count") or 0,
            completion_tokens=data.get("eval_count") or 0,
        )

    async def create_chat_completion(
        self, request: ChatCompletionRequest
    ) -> ChatCompletionResponse:
        """Call ``POST /api/chat`` with streaming disabled."""
        start = time.monotonic()
        payload = self._chat_payload(request, stream=False)
        data = await self._request_json("POST", "/api/chat", payload)

        message = data.get("message") if isinstance(data, dict) else None
        if not isinstance(message, dict):
            raise ProviderError(self.name, "response has no 'message' object", status_code=502)

        return ChatCompletionResponse(
            content=message.get("content") or "",
            model=data.get("model") or payload["model"],
            provider=self.name,
            usage=self._usage(data),
            finish_reason=data.get("done_reason") or ("stop" if data.get("done") else None),
            latency_ms=(time.monotonic() - start) * 1000,
            request_id=f"ollama_{uuid.uuid4().hex}",
        )

    async def stream_chat_completion(
        self, request: ChatCompletionRequest
    ) -> AsyncIterator[StreamChunk]:
        """Call ``POST /api/chat`` with streaming and yield deltas as they arrive."""
        payload = self._chat_payload(request, stream=True)
        async for line in self._stream_lines("/api/chat", payload):
            data = self._decode_line(line)
            if data.get("error"):
                raise ProviderError(self.name, str(data["error"]), status_code=502)
            if data.get("done"):
                yield StreamChunk(
                    done=True,
                    usage=self._usage(data),
                    finish_reason=data.get("done_reason") or "stop",
                )
                return
            content = (data.get("message") or {}).get("content") or ""
            if content:
                yield StreamChunk(content=content)
        raise ProviderError(self.name, "stream ended before completion", status_code=502)

    async def create_embedding(self, request: EmbeddingRequest) -> EmbeddingResponse:
        """Call ``POST /api/embeddings`` once per input text."""
        start = time.monotonic()
        model = request.model or self._config.embedding_model or self._config.default_model
        self._check_embedding_model(model)

        embeddings: list[list[float]] = []
        for text in request.inputs:
            data = await self._request_json(
                "POST", "/api/embeddings", {"model": model, "prompt": text}
            )
            vector = data.get("embedding") if isinstance(data, dict) else None
            if not isinstance(vector, list):
                raise ProviderError(self.name, "response has no 'embedding' list", status_code=502)
            embeddings.append([float(value) for value in vector])

        return EmbeddingResponse(
            embeddings=embeddings,
            model=model,
            provider=self.name,
            latency_ms=(time.monotonic() - start) * 1000,
            request_id=f"ollama_{uuid.uuid4().hex}",
        )

    async def list_models(self) -> list[ModelInfo]:
        """Return the models installed on the server (``GET /api/tags``)."""
        data = await self._request_json("GET", "/api/tags")
        models: list[ModelInfo] = []
        for entry in data.get("models", []) if isinstance(data, dict) else []:
            model_id = entry.get("name") or entry.get("model")
            if not model_id:
                continue
            embed_only = "embed" in model_id
            models.append(
                ModelInfo(
                    model_id=model_id,
                    provider=self.name,
                    name=model_id,
                    max_tokens=self._config.max_tokens or 2048,
                    is_chat_model=not embed_only,
                    is_embedding_model=True,
                    is_default=model_id == self._config.default_model,
                )
            )
        return models

    async def test_connection(self) -> bool:
        """Check the server answers ``GET /api/tags``."""
        try:
            await self._send_json("GET", "/api/tags")
        except ProviderError as exc:
            logger.warning(
                "Ollama connection test failed",
                extra={"provider": self.name, "error": str(exc)},
            )
            return False
        return True
