"""Usage tracking — one append-only record per dispatch attempt."""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from llm_relay.cost import calculate_cost
from llm_relay.types import UsageRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class UsageSink(Protocol):
    """Destination for usage records (database table, log file, queue...)."""

    def write(self, record: UsageRecord) -> None:
        """Persist one record. May raise; the tracker isolates failures."""
        ...


class InMemoryUsageSink:
    """Keeps records in a list. Useful for tests and short-lived processes."""

    def __init__(self) -> None:
        self.records: list[UsageRecord] = []

    def write(self, record: UsageRecord) -> None:
        self.records.append(record)


class JsonlUsageSink:
    """Appends one JSON object per line to a file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def write(self, record: UsageRecord) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")


@dataclasses.dataclass
class _ProviderTotals:
    calls: int = 0
    failures: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0


class UsageTracker:
    """Fans usage records out to sinks and keeps running totals.

    ``record_usage`` never raises: a failing sink is logged and skipped so
    that telemetry problems cannot fail a caller's completion.
    """

    def __init__(self, sinks: Iterable[UsageSink] | None = None) -> None:
        self._sinks: list[UsageSink] = list(sinks or [])
        self._totals: dict[str, _ProviderTotals] = {}

    def add_sink(self, sink: UsageSink) -> None:
        """Attach another destination for future records."""
        self._sinks.append(sink)

    def record_usage(self, record: UsageRecord) -> UsageRecord:
        """Annotate ``record`` with cost, update totals and write it to every sink.

        Returns:
            The record as written (with ``cost_usd`` filled in when known).
        """
        try:
            if not record.cost_usd and record.succeeded:
                cost = calculate_cost(record.model, record.prompt_tokens, record.completion_tokens)
                if cost:
                    record = dataclasses.replace(record, cost_usd=cost)
            self._accumulate(record)
        except Exception:
            logger.exception("Failed to account usage record", extra={"provider": record.provider})

        for sink in self._sinks:
            try:
                sink.write(record)
            except Exception:
                logger.exception(
                    "Usage sink failed",
                    extra={"provider": record.provider, "sink": type(sink).__name__},
                )

        logger.debug(
            "Recorded usage",
            extra={
                "provider": record.provider,
                "model": record.model,
                "endpoint": record.endpoint.value,
                "status_code": record.status_code,
                "total_tokens": record.total_tokens,
                "latency_ms": round(record.latency_ms, 1),
            },
        )
        return record

    def _accumulate(self, record: UsageRecord) -> None:
        totals = self._totals.setdefault(record.provider, _ProviderTotals())
        totals.calls += 1
        if not record.succeeded:
            totals.failures += 1
        totals.prompt_tokens += record.prompt_tokens
        totals.completion_tokens += record.completion_tokens
        totals.cost_usd += record.cost_usd

    @property
    def call_count(self) -> int:
        """Number of records seen."""
        return sum(t.calls for t in self._totals.values())

    @property
    def total_tokens(self) -> int:
        """Cumulative tokens across all providers."""
        return sum(t.prompt_tokens + t.completion_tokens for t in self._totals.values())

    @property
    def total_cost_usd(self) -> float:
        """Cumulative cost in USD across all providers."""
        return sum(t.cost_usd for t in self._totals.values())

    def summary(self) -> dict[str, Any]:
        """Return a summary dict suitable for logging or span attributes."""
        return {
            "call_count": self.call_count,
            "total_tokens": self.total_tokens,
            "total_cost_usd": round(self.total_cost_usd, 6),
            "providers": {
                name: {
                    "calls": t.calls,
                    "failures": t.failures,
                    "prompt_tokens": t.prompt_tokens,
                    "completion_tokens": t.completion_tokens,
                    "cost_usd": round(t.cost_usd, 6),
                }
                for name, t in self._totals.items()
            },
        }

    def reset(self) -> None:
        """Reset all accumulators. Sinks are untouched."""
        self._totals = {}
