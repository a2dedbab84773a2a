"""OpenTelemetry tracing for gateway dispatch attempts."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from llm_relay.types import UsageRecord

logger = logging.getLogger(__name__)

# ── Optional OTEL imports ───────────────────────────────────────
try:
    from opentelemetry import trace
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        ConsoleSpanExporter,
        SimpleSpanProcessor,
    )

    HAS_OTEL = True
except ImportError:
    HAS_OTEL = False

try:
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
        OTLPSpanExporter,
    )

    HAS_OTLP = True
except ImportError:
    HAS_OTLP = False


# Module-level tracer (None when OTEL is not installed or not configured)
_tracer: Any = None


def configure_tracing(
    exporter: str = "none",
    endpoint: str = "http://localhost:4317",
    service_name: str = "llm-relay",
) -> None:
    """Configure OpenTelemetry tracing.

    Args:
        exporter: One of "none", "console", "otlp".
        endpoint: OTLP collector endpoint (only used when exporter="otlp").
        service_name: Service name for spans.
    """
    global _tracer

    if exporter == "none" or not HAS_OTEL:
        _tracer = None
        return

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    if exporter == "console":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    elif exporter == "otlp":
        if not HAS_OTLP:
            logger.warning("OTLP exporter requested but opentelemetry-exporter-otlp not installed")
            _tracer = None
            return
        provider.add_span_processor(
            SimpleSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
        )

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer("llm_relay")
    logger.info("OTEL tracing configured: exporter=%s, service=%s", exporter, service_name)


def get_tracer() -> Any:
    """Return the configured tracer, or None if tracing is disabled."""
    return _tracer


def disable_tracing() -> None:
    """Disable tracing (useful for tests)."""
    global _tracer
    _tracer = None


def _set_usage_attributes(span: Any, record: UsageRecord) -> None:
    span.set_attribute("llm.endpoint", record.endpoint.value)
    span.set_attribute("llm.status_code", record.status_code)
    span.set_attribute("llm.prompt_tokens", record.prompt_tokens)
    span.set_attribute("llm.completion_tokens", record.completion_tokens)
    span.set_attribute("llm.total_tokens", record.total_tokens)
    span.set_attribute("llm.cost_usd", record.cost_usd)
    span.set_attribute("llm.latency_ms", record.latency_ms)


@asynccontextmanager
async def traced_gateway_call(
    operation: str,
    provider: str,
    model: str | None,
) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that creates an OTEL span for one dispatch attempt.

    Usage:
        async with traced_gateway_call("llm.chat", "local", "llama2") as span_data:
            ...
            span_data["usage"] = usage_record  # set once the attempt settles

    The span records llm.provider and llm.model up front, then endpoint,
    status code, token counts, cost and latency from the ``UsageRecord``
    (also on failure), and error status if an exception escapes.
    """
    span_data: dict[str, Any] = {}

    if _tracer is None:
        yield span_data
        return

    with _tracer.start_as_current_span(operation) as span:
        span.set_attribute("llm.provider", provider)
        span.set_attribute("llm.model", model or "provider-default")

        try:
            yield span_data
        except BaseException as exc:
            span.set_status(trace.StatusCode.ERROR, str(exc) or type(exc).__name__)
            span.record_exception(exc)
            raise
        finally:
            record = span_data.get("usage")
            if isinstance(record, UsageRecord):
                _set_usage_attributes(span, record)
