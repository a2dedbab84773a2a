"""Tests for per-type provider defaults and validation."""

from __future__ import annotations

import pytest

from llm_relay.config import ProviderConfig
from llm_relay.exceptions import ConfigurationError
from llm_relay.provider_specs import (
    PROVIDER_SPECS,
    apply_provider_defaults,
    get_spec,
    validate_provider_config,
)
from llm_relay.types import ModelInfo, ProviderType


@pytest.mark.unit
class TestProviderSpecs:
    def test_every_type_has_a_spec(self) -> None:
        assert set(PROVIDER_SPECS) == set(ProviderType)

    def test_ollama_requires_base_url(self) -> None:
        assert get_spec(ProviderType.OLLAMA).required_fields == frozenset({"base_url"})

    @pytest.mark.parametrize(
        "provider_type",
        [t for t in ProviderType if t is not ProviderType.OLLAMA],
    )
    def test_hosted_types_require_api_key(self, provider_type: ProviderType) -> None:
        assert "api_key" in get_spec(provider_type).required_fields


@pytest.mark.unit
class TestValidateProviderConfig:
    def test_missing_base_url(self) -> None:
        config = ProviderConfig(name="local", type="ollama")
        with pytest.raises(ConfigurationError, match="base_url"):
            validate_provider_config(config)

    def test_missing_api_key(self) -> None:
        config = ProviderConfig(name="oa", type="openai")
        with pytest.raises(ConfigurationError, match="api_key"):
            validate_provider_config(config)

    def test_valid_config_passes(self) -> None:
        validate_provider_config(
            ProviderConfig(name="local", type="ollama", base_url="http://localhost:11434")
        )


@pytest.mark.unit
class TestApplyProviderDefaults:
    def test_ollama_defaults(self) -> None:
        config = apply_provider_defaults(
            ProviderConfig(name="local", type="ollama", base_url="http://localhost:11434")
        )
        assert config.default_model == "llama2"
        assert config.embedding_model == "llama2"
        assert config.timeout_ms == 60_000
        assert config.max_retries == 3
        assert config.temperature == 0.7
        assert config.supports_dynamic_models is True

    def test_base_url_default(self) -> None:
        config = apply_provider_defaults(ProviderConfig(name="oa", type="openai", api_key="k"))
        assert config.base_url == "https://api.openai.com/v1"

    def test_explicit_values_kept(self) -> None:
        config = apply_provider_defaults(
            ProviderConfig(
                name="oa",
                type="openai",
                api_key="k",
                default_model="gpt-4o",
                temperature=0.0,
                max_retries=0,
                supports_dynamic_models=False,
            )
        )
        assert config.default_model == "gpt-4o"
        assert config.temperature == 0.0
        assert config.max_retries == 0
        assert config.supports_dynamic_models is False

    def test_static_models_stamped_with_provider(self) -> None:
        config = apply_provider_defaults(
            ProviderConfig(name="local", type="ollama", base_url="http://localhost:11434")
        )
        assert {m.provider for m in config.models} == {"local"}
        defaults = [m.model_id for m in config.models if m.is_default]
        assert defaults == ["llama2"]

    def test_configured_models_replace_spec_table(self) -> None:
        config = apply_provider_defaults(
            ProviderConfig(
                name="local",
                type="ollama",
                base_url="http://localhost:11434",
                default_model="phi3",
                models=[ModelInfo(model_id="phi3")],
            )
        )
        assert [m.model_id for m in config.models] == ["phi3"]
        assert config.models[0].is_default

    def test_huggingface_is_static(self) -> None:
        config = apply_provider_defaults(
            ProviderConfig(name="hf", type="huggingface", api_key="hf")
        )
        assert config.supports_dynamic_models is False
