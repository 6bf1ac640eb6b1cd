from __future__ import annotations

import math
from collections import Counter
from datetime import datetime
from typing import Iterable, Sequence

import numpy as np

from httppal.config import ExecutionParameters, RequestDescriptor
from httppal.metrics.models import (
    AggregateResult,
    CallFailure,
    CallOutcome,
    CallSuccess,
    ErrorKind,
    ResponseTimeStats,
    ThroughputStats,
)


def percentile(sorted_ms: np.ndarray, p: float) -> float:
    """Nearest-rank selection: index ``floor(p * n)`` clamped to ``[0, n - 1]``."""
    n = len(sorted_ms)
    if n == 0:
        return 0.0
    idx = min(max(int(math.floor(p * n)), 0), n - 1)
    return float(sorted_ms[idx])


def response_time_stats(successes: Sequence[CallSuccess]) -> ResponseTimeStats:
    if not successes:
        return ResponseTimeStats()
    latencies = np.sort(np.fromiter((s.response_time_ms for s in successes), dtype=float))
    return ResponseTimeStats(
        min=float(latencies[0]),
        max=float(latencies[-1]),
        average=float(latencies.mean()),
        median=percentile(latencies, 0.50),
        p95=percentile(latencies, 0.95),
        p99=percentile(latencies, 0.99),
    )


def throughput_stats(
    successes: Sequence[CallSuccess],
    total_requests: int,
    elapsed_sec: float,
) -> ThroughputStats:
    total_bytes = sum(s.body_size for s in successes)
    if elapsed_sec > 0:
        rps = total_requests / elapsed_sec
        bps = total_bytes / elapsed_sec
    else:
        rps = bps = 0.0
    return ThroughputStats(
        requests_per_second=rps,
        bytes_per_second=bps,
        total_bytes=total_bytes,
        average_response_size=total_bytes // len(successes) if successes else 0,
    )


def status_code_distribution(successes: Iterable[CallSuccess]) -> dict[int, int]:
    return dict(sorted(Counter(s.status_code for s in successes).items()))


def error_distribution(failures: Iterable[CallFailure]) -> dict[str, int]:
    return dict(Counter(f.error.message for f in failures))


def error_breakdown(failures: Iterable[CallFailure]) -> dict[ErrorKind, int]:
    counts = {kind: 0 for kind in ErrorKind}
    for failure in failures:
        counts[failure.error.kind] += 1
    return counts


def split_outcomes(outcomes: Iterable[CallOutcome]) -> tuple[list[CallSuccess], list[CallFailure]]:
    successes: list[CallSuccess] = []
    failures: list[CallFailure] = []
    for outcome in outcomes:
        if isinstance(outcome, CallSuccess):
            successes.append(outcome)
        else:
            failures.append(outcome)
    return successes, failures


def aggregate(
    descriptor: RequestDescriptor,
    parameters: ExecutionParameters,
    outcomes: Iterable[CallOutcome],
    start_time: datetime,
    end_time: datetime,
    cancelled: bool = False,
) -> AggregateResult:
    successes, failures = split_outcomes(outcomes)
    total = len(successes) + len(failures)
    # Calls overlap in time, so throughput comes from wall-clock elapsed time.
    elapsed_sec = max(0.0, (end_time - start_time).total_seconds())
    return AggregateResult(
        descriptor=descriptor,
        parameters=parameters,
        total_requests=total,
        successful_requests=len(successes),
        failed_requests=len(failures),
        successes=tuple(successes),
        failures=tuple(failures),
        start_time=start_time,
        end_time=end_time,
        response_time_stats=response_time_stats(successes),
        throughput_stats=throughput_stats(successes, total, elapsed_sec),
        status_code_distribution=status_code_distribution(successes),
        error_distribution=error_distribution(failures),
        error_breakdown=error_breakdown(failures),
        cancelled=cancelled,
    )
