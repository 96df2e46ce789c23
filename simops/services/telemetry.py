from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Capture provider call latency and outcomes.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def get_counter(name: str) -> int:
    return _counters.get(name, 0)


def external_call_stats(window_s: int) -> dict[str, dict[str, float | int | None]]:
    # Summarize call volume, error rate and p95 latency per integration.
    cutoff = time.time() - window_s
    grouped: dict[str, list[ExternalCallSample]] = defaultdict(list)
    for sample in _external_samples:
        if sample.ts >= cutoff:
            grouped[sample.integration].append(sample)
    stats: dict[str, dict[str, float | int | None]] = {}
    for integration, samples in grouped.items():
        latencies = sorted(sample.latency_ms for sample in samples)
        failures = sum(1 for sample in samples if not sample.success)
        index = max(0, int(round(0.95 * len(latencies))) - 1)
        stats[integration] = {
            "count": len(samples),
            "error_rate": failures / len(samples),
            "p95_ms": latencies[index] if latencies else None,
        }
    return stats


def reset_telemetry() -> None:
    _external_samples.clear()
    _counters.clear()
