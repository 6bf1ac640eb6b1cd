from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx

from httppal.config import RequestDescriptor
from httppal.errors import CallAborted
from httppal.loadgen.cancellation import CancellationToken
from httppal.loadgen.transport import TransportResponse
from httppal.metrics import CallFailure, CallSuccess, ErrorKind, ExecutionError

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def success(index: int, ms: float, status: int = 200, size: int = 2, offset_sec: float = 0.0) -> CallSuccess:
    return CallSuccess(
        call_index=index,
        status_code=status,
        status_text="OK",
        headers={"content-type": ["text/plain"]},
        body="x" * size,
        response_time_ms=ms,
        timestamp=T0 + timedelta(seconds=offset_sec),
        body_size=size,
    )


def failure(
    index: int,
    kind: ErrorKind = ErrorKind.TIMEOUT,
    message: str = "timed out",
    offset_sec: float = 0.0,
) -> CallFailure:
    return CallFailure(
        ExecutionError(
            message=message,
            cause="ReadTimeout: timed out",
            call_index=index,
            timestamp=T0 + timedelta(seconds=offset_sec),
            kind=kind,
        )
    )


@dataclass
class ScriptedTransport:
    """Answers every call with the same response after ``delay_sec``.

    When ``fail_every`` is set, every n-th dispatched call raises ``error()``.
    """

    status_code: int = 200
    body: bytes = b"ok"
    delay_sec: float = 0.0
    elapsed_ms: float | None = None
    encoding: str | None = "utf-8"
    fail_every: int = 0
    error: Callable[[], Exception] = lambda: httpx.ReadTimeout("timed out")
    calls: int = 0
    in_flight: int = 0
    max_in_flight: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def send(self, descriptor: RequestDescriptor, token: CancellationToken) -> TransportResponse:
        with self._lock:
            self.calls += 1
            n = self.calls
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        start = time.perf_counter()
        try:
            if self.delay_sec:
                time.sleep(self.delay_sec)
            if self.fail_every and n % self.fail_every == 0:
                raise self.error()
        finally:
            with self._lock:
                self.in_flight -= 1
        measured = (time.perf_counter() - start) * 1000.0
        return TransportResponse(
            status_code=self.status_code,
            reason="OK" if self.status_code < 400 else "Error",
            headers={"content-type": ["text/plain"]},
            body=self.body,
            elapsed_ms=self.elapsed_ms if self.elapsed_ms is not None else measured,
            encoding=self.encoding,
        )


@dataclass
class BlockingTransport:
    """Holds every call until cancellation (at most ``hold_sec``), then aborts it."""

    started: threading.Event = field(default_factory=threading.Event)
    calls: int = 0
    hold_sec: float = 5.0

    def send(self, descriptor: RequestDescriptor, token: CancellationToken) -> TransportResponse:
        self.calls += 1
        self.started.set()
        deadline = time.monotonic() + self.hold_sec
        while not token.cancelled and time.monotonic() < deadline:
            time.sleep(0.005)
        raise CallAborted("cancelled")
