from __future__ import annotations

from httppal.metrics.aggregator import aggregate, percentile
from httppal.metrics.models import (
    AggregateResult,
    CallFailure,
    CallOutcome,
    CallSuccess,
    ErrorKind,
    ExecutionError,
    ExecutionProgress,
    ResponseTimeStats,
    ThroughputStats,
)
from httppal.metrics.timeline import outcomes_frame, per_second_frame, slowest_calls

__all__ = [
    "AggregateResult",
    "CallFailure",
    "CallOutcome",
    "CallSuccess",
    "ErrorKind",
    "ExecutionError",
    "ExecutionProgress",
    "ResponseTimeStats",
    "ThroughputStats",
    "aggregate",
    "outcomes_frame",
    "per_second_frame",
    "percentile",
    "slowest_calls",
]
