from __future__ import annotations

import pandas as pd

from httppal.metrics.models import AggregateResult, CallSuccess

_TIMELINE_COLUMNS = [
    "second",
    "completed",
    "successes",
    "failures",
    "p50_ms",
    "p95_ms",
    "p99_ms",
    "error_rate",
]


def outcomes_frame(result: AggregateResult) -> pd.DataFrame:
    rows = [
        {
            "call_index": s.call_index,
            "offset_sec": (s.timestamp - result.start_time).total_seconds(),
            "status_code": s.status_code,
            "response_time_ms": s.response_time_ms,
            "body_size": s.body_size,
            "error_kind": None,
            "error_message": None,
        }
        for s in result.successes
    ]
    rows.extend(
        {
            "call_index": f.call_index,
            "offset_sec": (f.timestamp - result.start_time).total_seconds(),
            "status_code": None,
            "response_time_ms": None,
            "body_size": 0,
            "error_kind": f.error.kind.value,
            "error_message": f.error.message,
        }
        for f in result.failures
    )
    frame = pd.DataFrame(
        rows,
        columns=[
            "call_index",
            "offset_sec",
            "status_code",
            "response_time_ms",
            "body_size",
            "error_kind",
            "error_message",
        ],
    )
    return frame.sort_values("call_index", ignore_index=True)


def per_second_frame(result: AggregateResult) -> pd.DataFrame:
    """Bucket outcomes by completion second relative to the run start."""
    outcomes = outcomes_frame(result)
    if outcomes.empty:
        return pd.DataFrame(columns=_TIMELINE_COLUMNS)
    outcomes["second"] = outcomes["offset_sec"].clip(lower=0).astype(int)
    outcomes["is_success"] = outcomes["error_kind"].isna()

    rows = []
    duration = int(outcomes["second"].max()) + 1
    for second in range(duration):
        bucket = outcomes[outcomes["second"] == second]
        completed = len(bucket)
        successes = int(bucket["is_success"].sum())
        latencies = bucket.loc[bucket["is_success"], "response_time_ms"].astype(float)
        if latencies.empty:
            p50 = p95 = p99 = 0.0
        else:
            p50 = float(latencies.quantile(0.50))
            p95 = float(latencies.quantile(0.95))
            p99 = float(latencies.quantile(0.99))
        rows.append(
            {
                "second": second,
                "completed": completed,
                "successes": successes,
                "failures": completed - successes,
                "p50_ms": p50,
                "p95_ms": p95,
                "p99_ms": p99,
                "error_rate": (completed - successes) / max(1, completed),
            }
        )
    return pd.DataFrame(rows, columns=_TIMELINE_COLUMNS)


def slowest_calls(result: AggregateResult, limit: int = 10) -> list[CallSuccess]:
    return sorted(result.successes, key=lambda s: s.response_time_ms, reverse=True)[:limit]
