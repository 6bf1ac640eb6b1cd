from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping, Sequence, Union

from httppal.config import ExecutionParameters, RequestDescriptor


class ErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ExecutionError:
    message: str
    cause: str | None
    call_index: int | None
    timestamp: datetime
    kind: ErrorKind = ErrorKind.UNKNOWN

    def display_summary(self) -> str:
        if self.call_index is None:
            return self.message
        return f"{self.message} (Request #{self.call_index})"


@dataclass(frozen=True, slots=True)
class CallSuccess:
    """A completed HTTP exchange, whatever its status code."""

    call_index: int
    status_code: int
    status_text: str
    headers: Mapping[str, list[str]]
    body: str
    response_time_ms: float
    timestamp: datetime
    body_size: int

    def is_successful(self) -> bool:
        return 200 <= self.status_code <= 299

    def is_redirection(self) -> bool:
        return 300 <= self.status_code <= 399

    def is_client_error(self) -> bool:
        return 400 <= self.status_code <= 499

    def is_server_error(self) -> bool:
        return 500 <= self.status_code <= 599

    def status_category(self) -> str:
        if self.is_successful():
            return "Success"
        if self.is_client_error():
            return "Client Error"
        if self.is_server_error():
            return "Server Error"
        if self.is_redirection():
            return "Redirection"
        return "Informational"

    def content_type(self) -> str | None:
        for name, values in self.headers.items():
            if name.lower() == "content-type" and values:
                return values[0]
        return None


@dataclass(frozen=True, slots=True)
class CallFailure:
    error: ExecutionError

    @property
    def call_index(self) -> int:
        return self.error.call_index if self.error.call_index is not None else -1

    @property
    def timestamp(self) -> datetime:
        return self.error.timestamp


CallOutcome = Union[CallSuccess, CallFailure]


@dataclass(frozen=True, slots=True)
class ResponseTimeStats:
    min: float = 0.0
    max: float = 0.0
    average: float = 0.0
    median: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


@dataclass(frozen=True, slots=True)
class ThroughputStats:
    requests_per_second: float = 0.0
    bytes_per_second: float = 0.0
    total_bytes: int = 0
    average_response_size: int = 0


@dataclass(frozen=True, slots=True)
class ExecutionProgress:
    total_requests: int
    completed_requests: int
    successful_requests: int
    failed_requests: int
    average_response_time_ms: float | None = None

    def fraction(self) -> float:
        if self.total_requests <= 0:
            return 0.0
        return min(1.0, self.completed_requests / self.total_requests)


@dataclass(frozen=True, slots=True)
class AggregateResult:
    """Statistical summary of one run, built once after every worker stopped."""

    descriptor: RequestDescriptor
    parameters: ExecutionParameters
    total_requests: int
    successful_requests: int
    failed_requests: int
    successes: Sequence[CallSuccess]
    failures: Sequence[CallFailure]
    start_time: datetime
    end_time: datetime
    response_time_stats: ResponseTimeStats
    throughput_stats: ThroughputStats
    status_code_distribution: Mapping[int, int]
    error_distribution: Mapping[str, int]
    error_breakdown: Mapping[ErrorKind, int]
    cancelled: bool = False

    @property
    def thread_count(self) -> int:
        return self.parameters.thread_count

    @property
    def errors(self) -> list[ExecutionError]:
        return [f.error for f in self.failures]

    def total_duration(self) -> timedelta:
        return self.end_time - self.start_time

    def success_rate(self) -> float:
        if self.total_requests <= 0:
            return 0.0
        return self.successful_requests / self.total_requests * 100.0

    def failure_rate(self) -> float:
        if self.total_requests <= 0:
            return 0.0
        return self.failed_requests / self.total_requests * 100.0

    def actual_requests_per_second(self) -> float:
        return self.throughput_stats.requests_per_second

    def summary(self) -> str:
        line = (
            f"Total: {self.total_requests} | Success: {self.success_rate():.1f}% | "
            f"Avg Time: {self.response_time_stats.average:.0f}ms | "
            f"RPS: {self.actual_requests_per_second():.1f} | "
            f"P50: {self.response_time_stats.median:.0f}ms | "
            f"P95: {self.response_time_stats.p95:.0f}ms | "
            f"P99: {self.response_time_stats.p99:.0f}ms"
        )
        if self.cancelled:
            line += " | cancelled"
        return line

    def validate(self) -> list[str]:
        errors: list[str] = []
        if self.total_requests < 0:
            errors.append("Total requests cannot be negative")
        if self.successful_requests < 0:
            errors.append("Successful requests cannot be negative")
        if self.failed_requests < 0:
            errors.append("Failed requests cannot be negative")
        if self.successful_requests + self.failed_requests != self.total_requests:
            errors.append("Sum of successful and failed requests must equal total requests")
        if self.total_requests > self.parameters.total_calls:
            errors.append("Total requests cannot exceed thread count x iterations")
        if not self.cancelled and self.total_requests != self.parameters.total_calls:
            errors.append("A completed run must resolve every scheduled call")
        if self.thread_count < 1:
            errors.append("Thread count must be at least 1")
        if self.end_time < self.start_time:
            errors.append("End time cannot be before start time")
        return errors

    def to_metadata(self) -> Mapping[str, Any]:
        rt = self.response_time_stats
        tp = self.throughput_stats
        return {
            "request": dict(self.descriptor.to_metadata()),
            "parameters": dict(self.parameters.to_metadata()),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_sec": self.total_duration().total_seconds(),
            "cancelled": self.cancelled,
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "success_rate": self.success_rate(),
            "response_time_ms": {
                "min": rt.min,
                "max": rt.max,
                "average": rt.average,
                "median": rt.median,
                "p95": rt.p95,
                "p99": rt.p99,
            },
            "throughput": {
                "requests_per_second": tp.requests_per_second,
                "bytes_per_second": tp.bytes_per_second,
                "total_bytes": tp.total_bytes,
                "average_response_size": tp.average_response_size,
            },
            "status_codes": {str(code): count for code, count in self.status_code_distribution.items()},
            "errors": dict(self.error_distribution),
            "error_kinds": {kind.value: count for kind, count in self.error_breakdown.items()},
        }
