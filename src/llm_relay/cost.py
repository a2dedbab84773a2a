"""Token pricing registry used to annotate usage records with cost."""

from __future__ import annotations

# ── Pricing Registry (USD per 1 million tokens) ────────────────
_PRICING: dict[str, dict[str, float]] = {
    # OpenAI
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "gpt-4": {"input": 30.00, "output": 60.00},
    "gpt-3.5-turbo": {"input": 0.50, "output": 1.50},
    "text-embedding-3-small": {"input": 0.02, "output": 0.0},
    "text-embedding-3-large": {"input": 0.13, "output": 0.0},
    "text-embedding-ada-002": {"input": 0.10, "output": 0.0},
    # Anthropic
    "claude-3-opus-20240229": {"input": 15.00, "output": 75.00},
    "claude-3-sonnet-20240229": {"input": 3.00, "output": 15.00},
    "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},
    # Mistral
    "mistral-large-latest": {"input": 2.00, "output": 6.00},
    "mistral-embed": {"input": 0.10, "output": 0.0},
    # Groq
    "mixtral-8x7b-32768": {"input": 0.24, "output": 0.24},
}


def register_pricing(model: str, input_per_1m: float, output_per_1m: float) -> None:
    """Register or update pricing for a model.

    Args:
        model: Model identifier string.
        input_per_1m: Cost in USD per 1M prompt tokens.
        output_per_1m: Cost in USD per 1M completion tokens.
    """
    _PRICING[model] = {"input": input_per_1m, "output": output_per_1m}


def get_pricing(model: str) -> dict[str, float] | None:
    """Return pricing dict for a model, or None if unknown."""
    return _PRICING.get(model)


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Calculate the USD cost of a call.

    Returns:
        Total cost in USD; 0.0 if the model has no registered pricing
        (self-hosted models, for instance).
    """
    pricing = _PRICING.get(model)
    if pricing is None:
        return 0.0
    input_cost = prompt_tokens * pricing["input"] / 1_000_000
    output_cost = completion_tokens * pricing["output"] / 1_000_000
    return input_cost + output_cost
