"""Per-turn tracing: routing attempts, latency and token accounting."""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from aether_pipeline.types import RoutingAttempt

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(slots=True)
class TurnTrace:
    trace_id: str
    timestamp_utc: str
    persona: str
    explicit_model: str | None
    provider_display: str | None
    attempts: list[RoutingAttempt]
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    latency_ms: float
    taxonomy_applied: bool
    error_category: str | None

    @property
    def fallbacks(self) -> int:
        """Attempts that failed before the final one."""
        return max(0, len(self.attempts) - 1)


@dataclass(slots=True)
class CostModel:
    """Simple token pricing model (USD per 1K tokens).

    Every attempted call is assumed billed for the prompt, which is why
    the cascade never races providers.
    """

    input_per_1k: float = 0.005
    output_per_1k: float = 0.015

    def estimate_cost(self, input_tokens: int, output_tokens: int, attempts: int = 1) -> float:
        return (input_tokens / 1000.0) * self.input_per_1k * max(attempts, 1) + (
            output_tokens / 1000.0
        ) * self.output_per_1k


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, *, cost_model: CostModel | None = None) -> None:
        self._records: dict[str, TurnTrace] = {}
        self._cost_model = cost_model or CostModel()

    def create_record(
        self,
        *,
        persona: str,
        explicit_model: str | None,
        provider_display: str | None,
        attempts: list[RoutingAttempt],
        input_tokens: int,
        output_tokens: int,
        latency_ms: float,
        taxonomy_applied: bool,
        error_category: str | None,
    ) -> TurnTrace:
        trace_id = str(uuid.uuid4())
        record = TurnTrace(
            trace_id=trace_id,
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            persona=persona,
            explicit_model=explicit_model,
            provider_display=provider_display,
            attempts=attempts,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=self._cost_model.estimate_cost(
                input_tokens, output_tokens, attempts=len(attempts)
            ),
            latency_ms=latency_ms,
            taxonomy_applied=taxonomy_applied,
            error_category=error_category,
        )
        self._records[trace_id] = record
        return record

    def get(self, trace_id: str) -> TurnTrace:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TurnTrace]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate core observability metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_turns": 0,
                "failed_turns": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_attempts": 0,
                "total_fallbacks": 0,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
                "total_estimated_cost_usd": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))

        return {
            "total_turns": total,
            "failed_turns": sum(1 for record in records if record.error_category is not None),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "total_attempts": sum(len(record.attempts) for record in records),
            "total_fallbacks": sum(record.fallbacks for record in records),
            "total_input_tokens": sum(record.input_tokens for record in records),
            "total_output_tokens": sum(record.output_tokens for record in records),
            "total_estimated_cost_usd": sum(record.estimated_cost_usd for record in records),
        }


class Timer:
    """Simple context timer used by the orchestrator."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
