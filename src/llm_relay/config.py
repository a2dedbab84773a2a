"""Gateway and provider configuration."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings

from llm_relay.types import ModelInfo, ProviderType

# Vendor env vars consulted when a provider config carries no api_key.
API_KEY_ENV_VARS: dict[ProviderType, str] = {
    ProviderType.OPENAI: "OPENAI_API_KEY",
    ProviderType.ANTHROPIC: "ANTHROPIC_API_KEY",
    ProviderType.MISTRAL: "MISTRAL_API_KEY",
    ProviderType.GROQ: "GROQ_API_KEY",
    ProviderType.HUGGINGFACE: "HF_API_TOKEN",
}


class RateLimitConfig(BaseModel):
    """Requests allowed per rolling window for one provider."""

    model_config = ConfigDict(frozen=True)

    requests: int = Field(ge=1)
    window_seconds: float = Field(default=60.0, gt=0)


class ProviderConfig(BaseModel):
    """Configuration for one registered provider.

    Fields left as ``None`` are filled from the per-type defaults in
    :mod:`llm_relay.provider_specs` at registration time.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str = Field(min_length=1)
    type: ProviderType

    # ── Connection ──────────────────────────────────────────────
    api_key: SecretStr | None = None
    base_url: str | None = None
    timeout_ms: int | None = Field(default=None, ge=1)
    max_retries: int | None = Field(default=None, ge=0)

    # ── Request defaults ────────────────────────────────────────
    default_model: str | None = None
    embedding_model: str | None = None
    max_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)

    # ── Registry metadata ───────────────────────────────────────
    priority: int = 0
    is_active: bool = True
    supports_dynamic_models: bool | None = None
    models: list[ModelInfo] = Field(default_factory=list)
    rate_limit: RateLimitConfig | None = None

    @model_validator(mode="before")
    @classmethod
    def _resolve_api_key(cls, data: Any) -> Any:
        """Fall back to the vendor env var if api_key is unset."""
        if not isinstance(data, dict) or data.get("api_key") is not None:
            return data
        provider_type = data.get("type")
        if not isinstance(provider_type, str):
            return data
        env_var = API_KEY_ENV_VARS.get(provider_type)  # type: ignore[call-overload]
        if env_var:
            value = os.environ.get(env_var)
            if value:
                data = {**data, "api_key": value}
        return data

    def get_api_key(self) -> str:
        """Return the resolved API key as a plain string.

        Raises:
            ValueError: If no API key is configured.
        """
        if self.api_key is None:
            msg = f"No API key configured for provider '{self.name}'."
            raise ValueError(msg)
        return self.api_key.get_secret_value()

    @property
    def timeout_seconds(self) -> float:
        """Client timeout in seconds."""
        return (self.timeout_ms or 30_000) / 1000


class GatewayConfig(BaseSettings):
    """Gateway-wide configuration.

    All fields are read from environment variables with the ``LLM_RELAY_``
    prefix. Example: ``LLM_RELAY_DEFAULT_PROVIDER=local`` sets
    ``default_provider="local"``.
    """

    model_config = {"env_prefix": "LLM_RELAY_", "env_file": ".env", "extra": "ignore"}

    # ── Providers ───────────────────────────────────────────────
    default_provider: str | None = Field(
        default=None,
        description="Name of the provider made active after loading. "
        "Defaults to the first provider registered.",
    )
    providers_file: str | None = Field(
        default=None,
        description="JSON file listing provider configurations.",
    )
    models_file: str | None = Field(
        default=None,
        description="JSON file persisting synced model catalogs. None = in-memory.",
    )

    # ── Rate limiting ───────────────────────────────────────────
    default_rate_limit_requests: int | None = Field(
        default=None,
        ge=1,
        description="Requests per window for providers without their own limit.",
    )
    default_rate_limit_window_seconds: float = Field(default=60.0, gt=0)

    # ── Usage ───────────────────────────────────────────────────
    usage_log_file: str | None = Field(
        default=None,
        description="Append usage records as JSON lines to this file.",
    )

    # ── Observability ───────────────────────────────────────────
    trace_enabled: bool = Field(default=False)
    trace_exporter: str = Field(
        default="none",
        description="Trace exporter: 'none', 'console', 'otlp'.",
    )
    trace_endpoint: str = Field(default="http://localhost:4317")
    trace_service_name: str = Field(default="llm-relay")

    log_level: str = Field(default="INFO")
    log_format: str = Field(
        default="json",
        description="Log format: 'json' or 'console'.",
    )
