from __future__ import annotations

import threading

from httppal.metrics import CallOutcome, CallSuccess, ExecutionProgress


class ResultSink:
    """Append-only outcome store guarded by a single mutex.

    Running counters are updated under the same lock, so the snapshot that
    ``append`` returns always matches the stored outcomes.
    """

    def __init__(self, total_requests: int) -> None:
        self._total = total_requests
        self._lock = threading.Lock()
        self._outcomes: list[CallOutcome] = []
        self._successes = 0
        self._failures = 0
        self._latency_sum_ms = 0.0

    def append(self, outcome: CallOutcome) -> ExecutionProgress:
        with self._lock:
            self._outcomes.append(outcome)
            if isinstance(outcome, CallSuccess):
                self._successes += 1
                self._latency_sum_ms += outcome.response_time_ms
            else:
                self._failures += 1
            return self._progress()

    def snapshot(self) -> ExecutionProgress:
        with self._lock:
            return self._progress()

    def outcomes(self) -> list[CallOutcome]:
        with self._lock:
            return sorted(self._outcomes, key=lambda o: o.call_index)

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)

    def _progress(self) -> ExecutionProgress:
        average = self._latency_sum_ms / self._successes if self._successes else None
        return ExecutionProgress(
            total_requests=self._total,
            completed_requests=self._successes + self._failures,
            successful_requests=self._successes,
            failed_requests=self._failures,
            average_response_time_ms=average,
        )
