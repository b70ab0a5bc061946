from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class RequestSample:
    ts: float
    path: str
    status_code: int
    latency_ms: float


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_request_samples: Deque[RequestSample] = deque(maxlen=20000)
_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def record_request(*, path: str, status_code: int, latency_ms: float) -> None:
    _request_samples.append(
        RequestSample(ts=time.time(), path=path, status_code=status_code, latency_ms=latency_ms)
    )


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Capture forwarding peer latency and outcomes.
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


def _p95(values: list[float]) -> float:
    values.sort()
    return values[max(0, math.ceil(0.95 * len(values)) - 1)]


def request_latency_by_path(window_s: int) -> dict[str, dict[str, float]]:
    # Aggregate p95/max per route path over the window.
    cutoff = time.time() - window_s
    grouped: dict[str, list[float]] = defaultdict(list)
    for sample in _request_samples:
        if sample.ts >= cutoff:
            grouped[sample.path].append(sample.latency_ms)
    return {
        path: {"count": float(len(latencies)), "p95": _p95(latencies), "max": max(latencies)}
        for path, latencies in grouped.items()
    }


def external_latency_by_integration(window_s: int) -> dict[str, dict[str, float]]:
    cutoff = time.time() - window_s
    grouped: dict[str, list[ExternalCallSample]] = defaultdict(list)
    for sample in _external_samples:
        if sample.ts >= cutoff:
            grouped[sample.integration].append(sample)
    result: dict[str, dict[str, float]] = {}
    for integration, samples in grouped.items():
        latencies = [sample.latency_ms for sample in samples]
        failures = sum(1 for sample in samples if not sample.success)
        result[integration] = {
            "count": float(len(samples)),
            "failures": float(failures),
            "p95": _p95(latencies),
            "max": max(latencies),
        }
    return result


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def reset() -> None:
    # Test hook; production code never clears telemetry.
    _request_samples.clear()
    _external_samples.clear()
    _counters.clear()
