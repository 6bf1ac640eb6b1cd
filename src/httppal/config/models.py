from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

import httpx

_PLACEHOLDER = re.compile(r"\{([^}]+)\}")
_MAX_TIMEOUT_SEC = 300.0


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


@dataclass(frozen=True, slots=True)
class RequestDescriptor:
    """A fully resolved request, shared read-only by every worker of a run.

    Environment base URL and global headers are merged upstream; ``headers``
    already holds the request-level values on top of them.
    """

    url: str
    method: HttpMethod = HttpMethod.GET
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str | None = None
    timeout_sec: float = 30.0
    follow_redirects: bool = True
    query_params: Mapping[str, str] = field(default_factory=dict)
    path_params: Mapping[str, str] = field(default_factory=dict)

    def resolved_url(self) -> str:
        url = self.url
        for key, value in self.path_params.items():
            url = url.replace("{" + key + "}", value)
        return url

    def has_body(self) -> bool:
        return self.body is not None and self.body.strip() != ""

    def content_type(self) -> str | None:
        for name, value in self.headers.items():
            if name.lower() == "content-type":
                return value
        return None

    def display_name(self) -> str:
        return f"{self.method.value} {self.url}"

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not self.url.strip():
            errors.append("URL cannot be empty")
        elif not _is_valid_url(_PLACEHOLDER.sub("placeholder", self.url)):
            errors.append("URL format is invalid")
        if self.timeout_sec <= 0:
            errors.append("Timeout must be positive")
        elif self.timeout_sec > _MAX_TIMEOUT_SEC:
            errors.append("Timeout cannot exceed 5 minutes")
        for name in self.headers:
            if not name.strip():
                errors.append("Header name cannot be empty")
            elif any(ch in name for ch in (":", "\n", "\r")):
                errors.append(f"Header name '{name}' contains invalid characters")
        if any(not name.strip() for name in self.query_params):
            errors.append("Query parameter name cannot be empty")
        if any(not name.strip() for name in self.path_params):
            errors.append("Path parameter name cannot be empty")
        missing = sorted(set(_PLACEHOLDER.findall(self.url)) - set(self.path_params))
        if missing:
            errors.append(f"Missing path parameters: {', '.join(missing)}")
        return errors

    def to_metadata(self) -> Mapping[str, Any]:
        return {
            "method": self.method.value,
            "url": self.url,
            "resolved_url": self.resolved_url(),
            "headers": dict(self.headers),
            "body": self.body,
            "timeout_sec": self.timeout_sec,
            "follow_redirects": self.follow_redirects,
            "query_params": dict(self.query_params),
            "path_params": dict(self.path_params),
        }


@dataclass(frozen=True, slots=True)
class EngineSettings:
    max_threads: int = 100
    max_iterations: int = 10_000
    max_total_calls: int = 1_000_000
    progress_interval_sec: float = 0.25
    run_timeout_sec: float | None = None
    join_grace_sec: float = 5.0

    def to_metadata(self) -> Mapping[str, Any]:
        return {
            "max_threads": self.max_threads,
            "max_iterations": self.max_iterations,
            "max_total_calls": self.max_total_calls,
            "progress_interval_sec": self.progress_interval_sec,
            "run_timeout_sec": self.run_timeout_sec,
            "join_grace_sec": self.join_grace_sec,
        }


@dataclass(frozen=True, slots=True)
class ExecutionParameters:
    thread_count: int = 1
    iterations: int = 1

    @property
    def total_calls(self) -> int:
        return self.thread_count * self.iterations

    def validate(self, settings: EngineSettings | None = None) -> list[str]:
        limits = settings or EngineSettings()
        errors: list[str] = []
        if self.thread_count < 1:
            errors.append("Thread count must be at least 1")
        elif self.thread_count > limits.max_threads:
            errors.append(
                f"Thread count cannot exceed {limits.max_threads} (provided: {self.thread_count})"
            )
        if self.iterations < 1:
            errors.append("Iterations must be at least 1")
        elif self.iterations > limits.max_iterations:
            errors.append(
                f"Iterations cannot exceed {limits.max_iterations} (provided: {self.iterations})"
            )
        if not errors and self.total_calls > limits.max_total_calls:
            errors.append(
                f"Total requests (threadCount x iterations = {self.total_calls}) "
                f"exceeds maximum of {limits.max_total_calls}"
            )
        return errors

    def to_metadata(self) -> Mapping[str, Any]:
        return {
            "thread_count": self.thread_count,
            "iterations": self.iterations,
            "total_calls": self.total_calls,
        }


def _is_valid_url(url: str) -> bool:
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)
