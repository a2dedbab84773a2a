"""Per-provider-type defaults and required fields.

Adding a provider type means adding one ``ProviderSpec`` row here and one
client factory in :mod:`llm_relay.registry`; both tables are checked for
exhaustiveness over :class:`~llm_relay.types.ProviderType` at import time.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from llm_relay.config import ProviderConfig
from llm_relay.exceptions import ConfigurationError
from llm_relay.types import ModelInfo, ProviderType


def _chat(model_id: str, name: str, context_length: int, max_tokens: int) -> ModelInfo:
    return ModelInfo(
        model_id=model_id,
        name=name,
        context_length=context_length,
        max_tokens=max_tokens,
    )


def _embedding(model_id: str, name: str, context_length: int) -> ModelInfo:
    return ModelInfo(
        model_id=model_id,
        name=name,
        context_length=context_length,
        max_tokens=0,
        is_chat_model=False,
        is_embedding_model=True,
    )


@dataclass(frozen=True)
class ProviderSpec:
    """Validation rules and documented defaults for one provider type."""

    required_fields: frozenset[str]
    base_url: str | None
    default_model: str
    embedding_model: str | None = None
    max_tokens: int = 2048
    temperature: float = 0.7
    timeout_ms: int = 30_000
    max_retries: int = 3
    supports_dynamic_models: bool = False
    models: tuple[ModelInfo, ...] = field(default_factory=tuple)


PROVIDER_SPECS: dict[ProviderType, ProviderSpec] = {
    ProviderType.OPENAI: ProviderSpec(
        required_fields=frozenset({"api_key"}),
        base_url="https://api.openai.com/v1",
        default_model="gpt-4-turbo",
        embedding_model="text-embedding-3-small",
        supports_dynamic_models=True,
        models=(
            _chat("gpt-4o", "GPT-4o", 128_000, 4096),
            _chat("gpt-4-turbo", "GPT-4 Turbo", 128_000, 4096),
            _chat("gpt-4", "GPT-4", 8192, 4096),
            _chat("gpt-3.5-turbo", "GPT-3.5 Turbo", 16_385, 4096),
            _embedding("text-embedding-3-large", "Text Embedding 3 Large", 8191),
            _embedding("text-embedding-3-small", "Text Embedding 3 Small", 8191),
            _embedding("text-embedding-ada-002", "Text Embedding Ada 002", 8191),
        ),
    ),
    ProviderType.ANTHROPIC: ProviderSpec(
        required_fields=frozenset({"api_key"}),
        base_url="https://api.anthropic.com",
        default_model="claude-3-opus-20240229",
        max_tokens=4096,
        supports_dynamic_models=True,
        models=(
            _chat("claude-3-opus-20240229", "Claude 3 Opus", 200_000, 4096),
            _chat("claude-3-sonnet-20240229", "Claude 3 Sonnet", 200_000, 4096),
            _chat("claude-3-haiku-20240307", "Claude 3 Haiku", 200_000, 4096),
        ),
    ),
    ProviderType.MISTRAL: ProviderSpec(
        required_fields=frozenset({"api_key"}),
        base_url="https://api.mistral.ai/v1",
        default_model="mistral-large-latest",
        embedding_model="mistral-embed",
        supports_dynamic_models=True,
        models=(
            _chat("mistral-large-latest", "Mistral Large", 32_768, 4096),
            _chat("mistral-medium", "Mistral Medium", 32_768, 4096),
            _chat("mistral-small", "Mistral Small", 32_768, 4096),
            _embedding("mistral-embed", "Mistral Embed", 8192),
        ),
    ),
    ProviderType.OLLAMA: ProviderSpec(
        required_fields=frozenset({"base_url"}),
        base_url=None,
        default_model="llama2",
        embedding_model="llama2",
        timeout_ms=60_000,
        supports_dynamic_models=True,
        models=(
            ModelInfo(
                model_id="llama2",
                name="LLaMA 2",
                context_length=4096,
                max_tokens=2048,
                is_embedding_model=True,
            ),
            _chat("mistral", "Mistral", 8192, 2048),
            _chat("codellama", "Code LLaMA", 16_384, 4096),
        ),
    ),
    ProviderType.GROQ: ProviderSpec(
        required_fields=frozenset({"api_key"}),
        base_url="https://api.groq.com/openai/v1",
        default_model="mixtral-8x7b-32768",
        supports_dynamic_models=True,
        models=(
            _chat("mixtral-8x7b-32768", "Mixtral 8x7B", 32_768, 4096),
            _chat("llama2-70b-4096", "LLaMA 2 70B", 4096, 4096),
            _chat("gemma-7b-it", "Gemma 7B", 8192, 2048),
        ),
    ),
    ProviderType.HUGGINGFACE: ProviderSpec(
        required_fields=frozenset({"api_key"}),
        base_url="https://router.huggingface.co/v1",
        default_model="meta-llama/Llama-2-7b-chat-hf",
        max_tokens=1024,
        models=(
            _chat("meta-llama/Llama-2-7b-chat-hf", "LLaMA 2 7B Chat", 4096, 1024),
            _chat("mistralai/Mistral-7B-Instruct-v0.1", "Mistral 7B Instruct", 8192, 2048),
            _chat("google/gemma-7b-it", "Gemma 7B", 8192, 2048),
        ),
    ),
}

_missing_specs = set(ProviderType) - set(PROVIDER_SPECS)
if _missing_specs:  # pragma: no cover - guards new enum members
    msg = f"No ProviderSpec for provider types: {sorted(t.value for t in _missing_specs)}"
    raise RuntimeError(msg)


def get_spec(provider_type: ProviderType) -> ProviderSpec:
    """Return the spec row for a provider type."""
    return PROVIDER_SPECS[provider_type]


def validate_provider_config(config: ProviderConfig) -> None:
    """Check that every field the provider type requires is set.

    Raises:
        ConfigurationError: Listing the missing fields.
    """
    spec = PROVIDER_SPECS[config.type]
    missing = sorted(name for name in spec.required_fields if getattr(config, name) in (None, ""))
    if missing:
        msg = (
            f"Provider '{config.name}' ({config.type.value}) is missing "
            f"required field(s): {', '.join(missing)}"
        )
        raise ConfigurationError(msg)


def apply_provider_defaults(config: ProviderConfig) -> ProviderConfig:
    """Return a copy of ``config`` with unset fields filled from its type's spec.

    Static models fall back to the spec's model table and are stamped with
    the provider name; the default model is flagged ``is_default``.
    """
    spec = PROVIDER_SPECS[config.type]
    default_model = config.default_model or spec.default_model
    source_models = config.models or list(spec.models)
    models = [
        model.model_copy(
            update={
                "provider": config.name,
                "is_default": model.is_default or model.model_id == default_model,
            }
        )
        for model in source_models
    ]
    dynamic = config.supports_dynamic_models
    return config.model_copy(
        update={
            "base_url": config.base_url or spec.base_url,
            "default_model": default_model,
            "embedding_model": config.embedding_model or spec.embedding_model,
            "max_tokens": config.max_tokens or spec.max_tokens,
            "temperature": spec.temperature if config.temperature is None else config.temperature,
            "timeout_ms": config.timeout_ms or spec.timeout_ms,
            "max_retries": spec.max_retries if config.max_retries is None else config.max_retries,
            "supports_dynamic_models": spec.supports_dynamic_models if dynamic is None else dynamic,
            "models": models,
        }
    )
