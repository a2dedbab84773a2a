"""Tests for OpenAICompatibleClient against a mocked HTTP transport."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest
from tenacity import wait_none

from llm_relay.config import ProviderConfig
from llm_relay.exceptions import ProviderError
from llm_relay.provider_specs import apply_provider_defaults
from llm_relay.providers.base import HTTPProviderClient
from llm_relay.providers.openai_compat import OpenAICompatibleClient
from llm_relay.types import ChatCompletionRequest, EmbeddingRequest

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture(autouse=True)
def _no_retry_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(HTTPProviderClient, "retry_wait", wait_none())


def _client(
    handler: Handler, provider_type: str = "openai", **overrides: object
) -> OpenAICompatibleClient:
    config = apply_provider_defaults(
        ProviderConfig(
            name="oa",
            type=provider_type,  # type: ignore[arg-type]
            api_key="sk-test",
            **overrides,  # type: ignore[arg-type]
        )
    )
    return OpenAICompatibleClient(config, transport=httpx.MockTransport(handler))


def _chat_request(**kwargs: object) -> ChatCompletionRequest:
    return ChatCompletionRequest(
        messages=[{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}],
        **kwargs,  # type: ignore[arg-type]
    )


def _sse(*events: object) -> bytes:
    lines = [f"data: {json.dumps(event)}" for event in events]
    lines.append("data: [DONE]")
    return "\n\n".join(lines).encode()


@pytest.mark.unit
class TestChat:
    @pytest.mark.asyncio
    async def test_chat_completion(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url == "https://api.openai.com/v1/chat/completions"
            assert request.headers["Authorization"] == "Bearer sk-test"
            payload = json.loads(request.content)
            assert payload["model"] == "gpt-4o"
            assert payload["messages"][0]["role"] == "system"
            return httpx.Response(
                200,
                json={
                    "id": "chatcmpl-1",
                    "model": "gpt-4o",
                    "choices": [
                        {"message": {"content": "Hi there"}, "finish_reason": "stop"}
                    ],
                    "usage": {"prompt_tokens": 9, "completion_tokens": 3},
                },
            )

        resp = await _client(handler).create_chat_completion(_chat_request(model="gpt-4o"))

        assert resp.content == "Hi there"
        assert resp.usage.total_tokens == 12
        assert resp.request_id == "chatcmpl-1"
        assert resp.finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_vendor_error_message_surfaces(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "Invalid API key"}})

        with pytest.raises(ProviderError, match="Invalid API key") as excinfo:
            await _client(handler).create_chat_completion(_chat_request())
        assert excinfo.value.status_code == 401

    @pytest.mark.asyncio
    async def test_vendor_429_retried(self) -> None:
        responses = [
            httpx.Response(429, json={"error": {"message": "slow down"}}),
            httpx.Response(
                200,
                json={"choices": [{"message": {"content": "ok"}}], "usage": {}},
            ),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        resp = await _client(handler).create_chat_completion(_chat_request())
        assert resp.content == "ok"

    @pytest.mark.asyncio
    async def test_no_choices(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"choices": []})

        with pytest.raises(ProviderError, match="no choices"):
            await _client(handler).create_chat_completion(_chat_request())

    @pytest.mark.asyncio
    async def test_groq_base_url(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.host == "api.groq.com"
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        resp = await _client(handler, provider_type="groq").create_chat_completion(
            _chat_request()
        )
        assert resp.model == "mixtral-8x7b-32768"


@pytest.mark.unit
class TestStreaming:
    @pytest.mark.asyncio
    async def test_sse_stream(self) -> None:
        body = _sse(
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}, "finish_reason": "stop"}]},
            {"choices": [], "usage": {"prompt_tokens": 4, "completion_tokens": 2}},
        )

        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            assert payload["stream"] is True
            assert payload["stream_options"] == {"include_usage": True}
            return httpx.Response(200, content=body)

        chunks = [c async for c in _client(handler).stream_chat_completion(_chat_request())]

        assert "".join(c.content for c in chunks) == "Hello"
        assert chunks[-1].done
        assert chunks[-1].finish_reason == "stop"
        assert chunks[-1].usage is not None
        assert chunks[-1].usage.total_tokens == 6

    @pytest.mark.asyncio
    async def test_non_openai_vendor_omits_stream_options(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert "stream_options" not in json.loads(request.content)
            return httpx.Response(200, content=_sse({"choices": [{"delta": {"content": "x"}}]}))

        client = _client(handler, provider_type="mistral")
        chunks = [c async for c in client.stream_chat_completion(_chat_request())]
        assert chunks[-1].done

    @pytest.mark.asyncio
    async def test_malformed_event(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"data: {oops\n\n")

        with pytest.raises(ProviderError, match="malformed"):
            async for _ in _client(handler).stream_chat_completion(_chat_request()):
                pass


@pytest.mark.unit
class TestEmbeddingsAndModels:
    @pytest.mark.asyncio
    async def test_embeddings_sorted_by_index(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            assert payload == {"model": "text-embedding-3-small", "input": ["a", "b"]}
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"index": 1, "embedding": [0.2]},
                        {"index": 0, "embedding": [0.1]},
                    ],
                    "usage": {"prompt_tokens": 2},
                },
            )

        resp = await _client(handler).create_embedding(EmbeddingRequest(input=["a", "b"]))

        assert resp.embeddings == [[0.1], [0.2]]
        assert resp.usage.prompt_tokens == 2

    @pytest.mark.asyncio
    async def test_embedding_count_mismatch(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.1]}]})

        with pytest.raises(ProviderError, match="count"):
            await _client(handler).create_embedding(EmbeddingRequest(input=["a", "b"]))

    @pytest.mark.asyncio
    async def test_list_models_merges_static_metadata(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/models")
            return httpx.Response(
                200,
                json={"data": [{"id": "gpt-4o"}, {"id": "text-embedding-3-large"}, {"id": "o1"}]},
            )

        models = {m.model_id: m for m in await _client(handler).list_models()}

        assert models["gpt-4o"].context_length == 128_000
        assert models["text-embedding-3-large"].is_embedding_model
        assert models["o1"].is_chat_model
        assert all(m.provider == "oa" for m in models.values())

    @pytest.mark.asyncio
    async def test_connection_bad_key(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "bad key"}})

        assert await _client(handler).test_connection() is False
