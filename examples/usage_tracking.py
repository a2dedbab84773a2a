"""Demonstrates usage records, cost accounting and a JSONL audit log."""

import asyncio

from llm_relay import Gateway, GatewayConfig, InMemoryUsageSink, register_pricing


async def main() -> None:
    """Run a few calls and print what was recorded."""
    # Local models are free unless priced explicitly.
    register_pricing("llama2", input_per_1m=0.05, output_per_1m=0.10)

    sink = InMemoryUsageSink()
    config = GatewayConfig(usage_log_file="usage.jsonl")
    gateway = await Gateway.from_config(config, usage_sinks=[sink])

    async with gateway:
        for topic in ("tides", "volcanoes", "comets"):
            await gateway.create_chat_completion(
                messages=[{"role": "user", "content": f"Summarize {topic} in one line."}],
            )

        for record in sink.records:
            print(
                f"{record.provider}/{record.model} {record.status_code} "
                f"tokens={record.total_tokens} cost=${record.cost_usd:.6f}"
            )
        print(f"\nSummary: {gateway.usage.summary()}")


if __name__ == "__main__":
    asyncio.run(main())
