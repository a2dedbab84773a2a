"""Demonstrates plugging a custom client in through registry factories."""

import asyncio
from collections.abc import AsyncIterator

from llm_relay import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    Gateway,
    ProviderConfig,
    ProviderRegistry,
    ProviderType,
    StreamChunk,
    TokenUsage,
    ValidationError,
)


class EchoClient:
    """A demo client that echoes back the last user message."""

    def __init__(self, name: str) -> None:
        self.name = name

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "EchoClient":
        return cls(config.name)

    async def create_chat_completion(
        self, request: ChatCompletionRequest
    ) -> ChatCompletionResponse:
        text = request.messages[-1].get("content", "") if request.messages else ""
        return ChatCompletionResponse(
            content=f"Echo: {text}",
            model=request.model or "echo-1",
            provider=self.name,
            usage=TokenUsage(prompt_tokens=len(text.split()), completion_tokens=1),
        )

    async def stream_chat_completion(
        self, request: ChatCompletionRequest
    ) -> AsyncIterator[StreamChunk]:
        resp = await self.create_chat_completion(request)
        for word in resp.content.split(" "):
            yield StreamChunk(content=word + " ")
        yield StreamChunk(done=True, usage=resp.usage, finish_reason="stop")

    async def create_embedding(self, request: EmbeddingRequest) -> EmbeddingResponse:
        raise ValidationError("echo cannot embed")

    async def test_connection(self) -> bool:
        return True

    async def close(self) -> None:
        pass


async def main() -> None:
    # Route the "ollama" type to the echo client
    registry = ProviderRegistry(factories={ProviderType.OLLAMA: EchoClient.from_config})
    registry.register_provider("echo", {"type": "ollama", "base_url": "http://unused"})

    async with Gateway(registry) as gateway:
        resp = await gateway.create_chat_completion(
            messages=[{"role": "user", "content": "Hello, world!"}],
        )
        print(f"Provider: {resp.provider}")
        print(f"Response: {resp.content}")


if __name__ == "__main__":
    asyncio.run(main())
