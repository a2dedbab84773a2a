"""Basic usage of llm-relay against a local Ollama server."""

import asyncio

from llm_relay import Gateway, GatewayConfig, StaticConfigStore


async def main() -> None:
    """Demonstrate a plain and a streamed chat completion."""
    store = StaticConfigStore(
        [{"name": "local", "type": "ollama", "base_url": "http://localhost:11434"}]
    )
    gateway = await Gateway.from_config(GatewayConfig(log_format="console"), config_store=store)

    async with gateway:
        resp = await gateway.create_chat_completion(
            messages=[{"role": "user", "content": "What is the capital of France?"}],
        )
        print(f"Answer: {resp.content}")
        print(f"Provider: {resp.provider} / {resp.model}")
        print(f"Tokens: {resp.usage.total_tokens}")
        print(f"Latency: {resp.latency_ms:.0f}ms")

        await gateway.create_chat_completion(
            messages=[{"role": "user", "content": "Count to five."}],
            stream=True,
            on_chunk=lambda chunk: print(chunk.content, end="", flush=True),
        )
        print()


if __name__ == "__main__":
    asyncio.run(main())
