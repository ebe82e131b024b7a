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
    route_class: str
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


def record_request(*, path: str, route_class: str, status_code: int, latency_ms: float) -> None:
    _request_samples.append(
        RequestSample(
            ts=time.time(),
            path=path,
            route_class=route_class,
            status_code=status_code,
            latency_ms=latency_ms,
        )
    )


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Integrations: llm, client_db, embedder, vector_store.
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


def _percentile(latencies: list[float], fraction: float) -> float:
    idx = max(0, math.ceil(fraction * len(latencies)) - 1)
    return latencies[idx]


def request_latency_by_class(window_s: int) -> dict[str, dict[str, dict[str, float]]]:
    # Aggregate p50/p95/max by route class and status family.
    cutoff = time.time() - window_s
    grouped: dict[tuple[str, str], list[float]] = defaultdict(list)
    for sample in _request_samples:
        if sample.ts < cutoff:
            continue
        grouped[(sample.route_class, f"{sample.status_code // 100}xx")].append(sample.latency_ms)
    result: dict[str, dict[str, dict[str, float]]] = {}
    for (route_class, status_family), latencies in grouped.items():
        latencies.sort()
        result.setdefault(route_class, {})[status_family] = {
            "p50": _percentile(latencies, 0.5),
            "p95": _percentile(latencies, 0.95),
            "max": latencies[-1],
        }
    return result


def external_call_stats(window_s: int) -> dict[str, dict[str, float | int]]:
    cutoff = time.time() - window_s
    grouped: dict[str, list[ExternalCallSample]] = defaultdict(list)
    for sample in _external_samples:
        if sample.ts >= cutoff:
            grouped[sample.integration].append(sample)
    result: dict[str, dict[str, float | int]] = {}
    for integration, samples in grouped.items():
        latencies = sorted(sample.latency_ms for sample in samples)
        result[integration] = {
            "calls": len(samples),
            "failures": sum(1 for sample in samples if not sample.success),
            "p95": _percentile(latencies, 0.95),
            "max": latencies[-1],
        }
    return result


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def reset() -> None:
    # Test helper; module state is process-wide.
    _request_samples.clear()
    _external_samples.clear()
    _counters.clear()
