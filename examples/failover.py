"""Demonstrates priority failover and rate limiting.

Providers are read from a JSON file named by LLM_RELAY_PROVIDERS_FILE:

  [
    {"name": "openai", "type": "openai", "priority": 10,
     "rate_limit": {"requests": 3, "window_seconds": 60}},
    {"name": "local", "type": "ollama", "base_url": "http://localhost:11434"}
  ]

The code below is IDENTICAL regardless of which providers are configured.
"""

import asyncio

from llm_relay import AllProvidersFailedError, Gateway, RateLimitError


async def main() -> None:
    async with await Gateway.from_config() as gateway:
        for provider in gateway.get_active_providers():
            status = gateway.get_rate_limit_status(provider.name)
            print(f"{provider.name}: priority={provider.priority} remaining={status.remaining}")

        for i in range(5):
            try:
                resp = await gateway.create_chat_completion(
                    messages=[{"role": "user", "content": f"Give me fact #{i} about owls."}],
                )
            except RateLimitError as exc:
                print(f"Call {i}: rate limited until {exc.reset_at}")
            except AllProvidersFailedError as exc:
                print(f"Call {i}: every provider failed: {exc.failures}")
            else:
                print(f"Call {i}: served by {resp.provider}")


if __name__ == "__main__":
    asyncio.run(main())
