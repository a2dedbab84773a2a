"""Provider client protocol — the contract every backend must satisfy."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, ClassVar, Protocol, runtime_checkable

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from llm_relay.config import ProviderConfig
from llm_relay.exceptions import ProviderError, ValidationError
from llm_relay.types import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    ModelInfo,
    StreamChunk,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ProviderClient(Protocol):
    """Protocol that all provider clients must implement.

    Clients own their network session and nothing else. Vendor failures,
    including client-enforced timeouts, surface as ``ProviderError``.
    """

    name: str

    async def create_chat_completion(
        self, request: ChatCompletionRequest
    ) -> ChatCompletionResponse:
        """Return a complete (non-streamed) chat response with token usage."""
        ...

    def stream_chat_completion(
        self, request: ChatCompletionRequest
    ) -> AsyncIterator[StreamChunk]:
        """Yield incremental chunks; the last one has ``done=True`` and usage."""
        ...

    async def create_embedding(self, request: EmbeddingRequest) -> EmbeddingResponse:
        """Return one vector per input text plus token usage.

        Raises:
            ValidationError: If the model cannot produce embeddings.
        """
        ...

    async def test_connection(self) -> bool:
        """Cheap reachability/auth check. Never raises."""
        ...

    async def close(self) -> None:
        """Clean up provider resources (HTTP sessions, etc.)."""
        ...


@runtime_checkable
class ModelListingClient(Protocol):
    """Optional capability: clients whose vendor can enumerate live models."""

    async def list_models(self) -> list[ModelInfo]:
        """Return the vendor's currently available models."""
        ...


def is_transient(exc: BaseException) -> bool:
    """True for failures worth retrying against the same provider."""
    if not isinstance(exc, ProviderError):
        return False
    return exc.status_code >= 500 or exc.status_code in (408, 429)


def _error_message(response: httpx.Response) -> str:
    """Extract the vendor's error message from an error response."""
    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        error = data.get("error", data.get("message"))
        if isinstance(error, dict):
            return str(error.get("message", error))
        if error:
            return str(error)
    return str(data)


class HTTPProviderClient:
    """Shared plumbing for providers spoken to over plain HTTP/JSON.

    Owns one ``httpx.AsyncClient``; non-2xx responses and transport failures
    are mapped to ``ProviderError`` and transient ones retried with tenacity.
    """

    # Seconds between retries: exponential backoff capped at 10s.
    retry_wait: ClassVar[Any] = wait_exponential(multiplier=0.5, min=0.5, max=10)

    def __init__(
        self,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = config.name
        self._config = config
        self._max_retries = config.max_retries or 0
        self._client = httpx.AsyncClient(
            base_url=config.base_url or "",
            headers=self._headers(),
            timeout=httpx.Timeout(config.timeout_seconds),
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: ProviderConfig) -> HTTPProviderClient:
        """Factory method for the provider registry."""
        return cls(config)

    @property
    def config(self) -> ProviderConfig:
        """The (defaulted) configuration this client was built from."""
        return self._config

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "Accept": "application/json"}

    # ── Errors ──────────────────────────────────────────────────

    def _error_from_response(self, response: httpx.Response) -> ProviderError:
        return ProviderError(self.name, _error_message(response), status_code=response.status_code)

    def _error_from_transport(self, exc: httpx.HTTPError) -> ProviderError:
        if isinstance(exc, httpx.TimeoutException):
            return ProviderError(
                self.name,
                f"timed out after {self._config.timeout_seconds:g}s",
                status_code=504,
                original=exc,
            )
        return ProviderError(self.name, str(exc) or type(exc).__name__, status_code=503, original=exc)

    def _check_embedding_model(self, model: str) -> None:
        """Reject models the static catalog knows cannot embed."""
        for info in self._config.models:
            if info.model_id == model and not info.is_embedding_model:
                msg = f"Model '{model}' on provider '{self.name}' does not support embeddings"
                raise ValidationError(msg)

    # ── Requests ────────────────────────────────────────────────

    async def _send_json(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body."""
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.HTTPError as exc:
            raise self._error_from_transport(exc) from exc

        if response.status_code >= 400:
            raise self._error_from_response(response)

        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise ProviderError(
                self.name, "malformed JSON in response", status_code=502, original=exc
            ) from exc

    async def _request_json(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        """Like ``_send_json`` but retries transient failures."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=self.retry_wait,
            retry=retry_if_exception(is_transient),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.debug(
                        "Retrying provider request",
                        extra={
                            "provider": self.name,
                            "path": path,
                            "attempt": attempt.retry_state.attempt_number,
                        },
                    )
                return await self._send_json(method, path, payload)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _stream_lines(self, path: str, payload: dict[str, Any]) -> AsyncIterator[str]:
        """POST ``payload`` and yield non-empty response lines as they arrive."""
        try:
            async with self._client.stream("POST", path, json=payload) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise self._error_from_response(response)
                async for line in response.aiter_lines():
                    if line.strip():
                        yield line
        except httpx.HTTPError as exc:
            raise self._error_from_transport(exc) from exc

    def _decode_line(self, line: str) -> dict[str, Any]:
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ProviderError(
                self.name, "malformed JSON in stream", status_code=502, original=exc
            ) from exc
        if not isinstance(data, dict):
            raise ProviderError(self.name, "unexpected stream payload", status_code=502)
        return data

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
