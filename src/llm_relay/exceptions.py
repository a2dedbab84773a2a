"""Exception hierarchy for llm-relay."""

from __future__ import annotations

from datetime import datetime


class GatewayError(Exception):
    """Base exception for all llm-relay errors."""

    status_code: int = 500


class ValidationError(GatewayError):
    """Raised for malformed caller input. Never retried, never failed over."""

    status_code = 400


class ProviderNotFoundError(ValidationError):
    """Raised when the requested provider is not registered."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(
            f"Provider '{provider}' is not registered. "
            f"Check the providers file or register it explicitly."
        )


class ConfigurationError(GatewayError):
    """Raised when a provider configuration is invalid."""

    status_code = 500


class ProviderInitError(ConfigurationError):
    """Raised when a provider client fails to initialize."""

    def __init__(self, provider: str, reason: str) -> None:
        self.provider = provider
        super().__init__(f"Failed to initialize provider '{provider}': {reason}")


class ProviderError(GatewayError):
    """Raised when a backend call fails (HTTP error, timeout, bad payload).

    Eligible for cross-provider failover when the caller did not pin a
    provider or model.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int = 502,
        original: Exception | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.original = original
        super().__init__(f"Provider '{provider}' error ({status_code}): {message}")


class RateLimitError(GatewayError):
    """Raised when a provider's local rate-limit window is exhausted."""

    status_code = 429

    def __init__(self, provider: str, reset_at: datetime) -> None:
        self.provider = provider
        self.reset_at = reset_at
        super().__init__(
            f"Rate limit exceeded for provider '{provider}'. "
            f"Try again after {reset_at.isoformat()}"
        )


class AllProvidersFailedError(GatewayError):
    """Raised when every candidate provider failed an unpinned request."""

    status_code = 503

    def __init__(self, failures: dict[str, str]) -> None:
        self.failures = dict(failures)
        if failures:
            detail = "; ".join(f"{name}: {reason}" for name, reason in failures.items())
        else:
            detail = "no providers available"
        super().__init__(f"All providers failed: {detail}")
