from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from httppal.config import EngineSettings, ExecutionParameters, RequestDescriptor
from httppal.errors import FatalSchedulingError, RequestValidationError
from httppal.loadgen.cancellation import CancellationToken
from httppal.loadgen.pool import ExecutorFactory, WorkerPool
from httppal.loadgen.sink import ResultSink
from httppal.loadgen.transport import HttpTransport
from httppal.metrics import AggregateResult, ExecutionProgress, aggregate

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ExecutionProgress], None]
ResultCallback = Callable[[AggregateResult], None]
ErrorCallback = Callable[[FatalSchedulingError], None]


class ExecutionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FATAL_ERROR = "fatal_error"


_TERMINAL = (ExecutionState.COMPLETED, ExecutionState.CANCELLED, ExecutionState.FATAL_ERROR)


class ProgressNotifier:
    """Ordered, deduplicated delivery of progress snapshots.

    Only the coordinator thread offers snapshots, so a slow callback delays
    the next poll and never a worker.
    """

    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback
        self._last_completed = 0

    def offer(self, progress: ExecutionProgress) -> None:
        if self._callback is None or progress.completed_requests <= self._last_completed:
            return
        self._last_completed = progress.completed_requests
        try:
            self._callback(progress)
        except Exception:
            logger.exception("Progress callback failed")


class ExecutionHandle:
    """One run's state machine and cancellation handle.

    ``IDLE -> RUNNING -> COMPLETED | CANCELLED | FATAL_ERROR``. Completion
    callbacks run on the coordinator thread before ``wait`` returns.
    """

    def __init__(
        self,
        transport: HttpTransport,
        descriptor: RequestDescriptor,
        parameters: ExecutionParameters,
        settings: EngineSettings,
        on_progress: ProgressCallback | None = None,
        on_complete: ResultCallback | None = None,
        on_cancelled: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
        executor_factory: ExecutorFactory | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.parameters = parameters
        self.settings = settings
        self.token = CancellationToken()
        self._transport = transport
        self._executor_factory = executor_factory
        self._notifier = ProgressNotifier(on_progress)
        self._on_complete = on_complete
        self._on_cancelled = on_cancelled
        self._on_error = on_error
        self._state = ExecutionState.IDLE
        self._state_lock = threading.Lock()
        self._done = threading.Event()
        self._result: AggregateResult | None = None
        self._error: FatalSchedulingError | None = None
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> ExecutionState:
        with self._state_lock:
            return self._state

    @property
    def result(self) -> AggregateResult | None:
        return self._result

    @property
    def error(self) -> FatalSchedulingError | None:
        return self._error

    def done(self) -> bool:
        return self._done.is_set()

    def cancel(self) -> bool:
        """Request cancellation; a no-op once the run has finished."""
        with self._state_lock:
            if self._state in _TERMINAL:
                return False
            requested = self.token.cancel()
        if requested:
            logger.info("Cancellation requested for %s", self.descriptor.display_name())
        return requested

    def wait(self, timeout: float | None = None) -> AggregateResult | None:
        """Block until the run ends; ``None`` if ``timeout`` expired first."""
        if not self._done.wait(timeout):
            return None
        if self._error is not None:
            raise self._error
        return self._result

    def launch(self) -> None:
        with self._state_lock:
            if self._state is not ExecutionState.IDLE:
                msg = f"Run already {self._state.value}"
                raise RuntimeError(msg)
            self._state = ExecutionState.RUNNING
        start_time = datetime.now(timezone.utc)
        start_mono = time.perf_counter()
        sink = ResultSink(self.parameters.total_calls)
        pool = WorkerPool(
            self._transport,
            self.descriptor,
            self.parameters,
            sink,
            self.token,
            executor_factory=self._executor_factory,
        )
        logger.info(
            "Starting concurrent execution of %s: %d threads x %d iterations = %d calls",
            self.descriptor.display_name(),
            self.parameters.thread_count,
            self.parameters.iterations,
            self.parameters.total_calls,
        )
        try:
            pool.start()
            self._thread = threading.Thread(
                target=self._supervise,
                args=(pool, sink, start_time, start_mono),
                name="httppal-coordinator",
                daemon=True,
            )
            self._thread.start()
        except FatalSchedulingError as exc:
            self._fail(exc)
        except RuntimeError as exc:
            self.token.cancel("coordinator could not be started")
            pool.shutdown(wait=False)
            self._fail(FatalSchedulingError(f"Unable to start coordinator: {exc}"))

    def _await_workers(
        self,
        pool: WorkerPool,
        sink: ResultSink,
        timeout: float | None,
        stop_on_cancel: bool,
    ) -> bool:
        """Join the pool in ``progress_interval_sec`` steps, publishing progress after each."""
        deadline = None if timeout is None else time.monotonic() + timeout
        step = max(0.01, self.settings.progress_interval_sec)
        while True:
            if deadline is not None:
                step = min(step, deadline - time.monotonic())
                if step <= 0:
                    return pool.join(timeout=0)
            if pool.join(timeout=step):
                return True
            self._notifier.offer(sink.snapshot())
            if stop_on_cancel and self.token.cancelled:
                return False

    def _supervise(
        self,
        pool: WorkerPool,
        sink: ResultSink,
        start_time: datetime,
        start_mono: float,
    ) -> None:
        finished = self._await_workers(pool, sink, self.settings.run_timeout_sec, stop_on_cancel=True)
        if not finished and not self.token.cancelled:
            logger.warning("Run exceeded its %ss budget, cancelling", self.settings.run_timeout_sec)
            self.token.cancel("run timeout budget exhausted")
        if not finished:
            # In-flight calls are bounded by their own timeout.
            grace = self.descriptor.timeout_sec + self.settings.join_grace_sec
            if not self._await_workers(pool, sink, grace, stop_on_cancel=False):
                logger.warning(
                    "%d of %d workers still running %.1fs after cancellation; calls they finish later are dropped",
                    pool.running_workers(),
                    self.parameters.thread_count,
                    grace,
                )
        try:
            pool.check_workers()
        except FatalSchedulingError as exc:
            logger.exception("Concurrent execution failed")
            pool.shutdown(wait=False)
            self._fail(exc)
            return
        pool.shutdown(wait=not self.token.cancelled)

        stopped = pool.finished_at()
        if stopped is None:
            stopped = time.perf_counter()
        end_time = start_time + timedelta(seconds=max(0.0, stopped - start_mono))
        outcomes = sink.outcomes()
        cancelled = self.token.cancelled and len(outcomes) < self.parameters.total_calls
        result = aggregate(self.descriptor, self.parameters, outcomes, start_time, end_time, cancelled)
        self._notifier.offer(sink.snapshot())
        if cancelled:
            logger.info(
                "Concurrent execution cancelled: %d of %d calls resolved (%d ok, %d failed)",
                result.total_requests,
                self.parameters.total_calls,
                result.successful_requests,
                result.failed_requests,
            )
            self._finish(result, ExecutionState.CANCELLED, self._on_cancelled)
        else:
            logger.info("Concurrent execution completed: %s", result.summary())
            self._finish(result, ExecutionState.COMPLETED, self._on_complete)

    def _finish(
        self,
        result: AggregateResult,
        state: ExecutionState,
        callback: ResultCallback | None,
    ) -> None:
        with self._state_lock:
            self._result = result
            self._state = state
        try:
            if callback is not None:
                callback(result)
        except Exception:
            logger.exception("Completion callback failed")
        finally:
            self._done.set()

    def _fail(self, error: FatalSchedulingError) -> None:
        logger.error("Concurrent execution aborted: %s", error)
        with self._state_lock:
            self._error = error
            self._state = ExecutionState.FATAL_ERROR
        try:
            if self._on_error is not None:
                self._on_error(error)
        except Exception:
            logger.exception("Error callback failed")
        finally:
            self._done.set()


class ExecutionEngine:
    """Entry point: validates a run, then drives it on a worker pool."""

    def __init__(
        self,
        transport: HttpTransport,
        settings: EngineSettings | None = None,
        executor_factory: ExecutorFactory | None = None,
    ) -> None:
        self.transport = transport
        self.settings = settings or EngineSettings()
        self._executor_factory = executor_factory

    def validate(self, descriptor: RequestDescriptor, parameters: ExecutionParameters) -> None:
        errors = parameters.validate(self.settings) + descriptor.validate()
        if errors:
            logger.warning("Rejected run of %s: %s", descriptor.display_name(), "; ".join(errors))
            raise RequestValidationError(errors)

    def start(
        self,
        descriptor: RequestDescriptor,
        parameters: ExecutionParameters,
        on_progress: ProgressCallback | None = None,
        on_complete: ResultCallback | None = None,
        on_cancelled: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> ExecutionHandle:
        self.validate(descriptor, parameters)
        handle = ExecutionHandle(
            self.transport,
            descriptor,
            parameters,
            self.settings,
            on_progress=on_progress,
            on_complete=on_complete,
            on_cancelled=on_cancelled,
            on_error=on_error,
            executor_factory=self._executor_factory,
        )
        handle.launch()
        return handle

    def run(
        self,
        descriptor: RequestDescriptor,
        parameters: ExecutionParameters,
        on_progress: ProgressCallback | None = None,
    ) -> AggregateResult:
        handle = self.start(descriptor, parameters, on_progress=on_progress)
        try:
            result = handle.wait()
        except KeyboardInterrupt:
            handle.cancel()
            result = handle.wait()
        if result is None:
            msg = "Run ended without a result"
            raise FatalSchedulingError(msg)
        return result
