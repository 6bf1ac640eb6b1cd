from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Callable

from httppal.config import ExecutionParameters, RequestDescriptor
from httppal.errors import CallAborted, FatalSchedulingError
from httppal.loadgen.cancellation import CancellationToken
from httppal.loadgen.client import execute_call
from httppal.loadgen.sink import ResultSink
from httppal.loadgen.transport import HttpTransport

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[int], Executor]


def default_executor_factory(thread_count: int) -> Executor:
    return ThreadPoolExecutor(max_workers=thread_count, thread_name_prefix="httppal-worker")


class WorkerPool:
    """Runs ``thread_count`` workers, each doing ``iterations`` sequential calls.

    Parallelism is bounded by the number of workers; there is no shared call
    queue. A failed call never stops its worker. Workers touch no shared state
    besides the call counter and the sink.
    """

    def __init__(
        self,
        transport: HttpTransport,
        descriptor: RequestDescriptor,
        parameters: ExecutionParameters,
        sink: ResultSink,
        token: CancellationToken,
        executor_factory: ExecutorFactory | None = None,
    ) -> None:
        self.transport = transport
        self.descriptor = descriptor
        self.parameters = parameters
        self.sink = sink
        self.token = token
        self._executor_factory = executor_factory or default_executor_factory
        self._executor: Executor | None = None
        self._futures: list[Future[int]] = []
        self._index_lock = threading.Lock()
        self._indices = itertools.count()
        self._last_stop: float | None = None

    def start(self) -> None:
        try:
            self._executor = self._executor_factory(self.parameters.thread_count)
            for worker_id in range(self.parameters.thread_count):
                self._futures.append(self._executor.submit(self._worker, worker_id))
        except Exception as exc:
            self.token.cancel("worker pool could not be started")
            self.shutdown(wait=True)
            msg = f"Unable to start {self.parameters.thread_count} workers: {exc}"
            raise FatalSchedulingError(msg) from exc
        logger.debug("Started %d workers", len(self._futures))

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the workers; True once all of them have stopped."""
        if not self._futures:
            return True
        _, not_done = wait(self._futures, timeout=timeout)
        return not not_done

    def check_workers(self) -> None:
        for future in self._futures:
            if future.done() and not future.cancelled() and future.exception() is not None:
                msg = f"Worker crashed: {future.exception()}"
                raise FatalSchedulingError(msg) from future.exception()

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=True)

    def running_workers(self) -> int:
        return sum(1 for future in self._futures if not future.done())

    def finished_at(self) -> float | None:
        """``perf_counter`` reading when the last worker stopped, or None while any runs."""
        with self._index_lock:
            if self.running_workers():
                return None
            return self._last_stop

    def _next_index(self) -> int:
        with self._index_lock:
            return next(self._indices)

    def _mark_stopped(self) -> None:
        now = time.perf_counter()
        with self._index_lock:
            if self._last_stop is None or now > self._last_stop:
                self._last_stop = now

    def _worker(self, worker_id: int) -> int:
        completed = 0
        try:
            for _ in range(self.parameters.iterations):
                if self.token.cancelled:
                    logger.debug("Worker %d stopping after %d calls: %s", worker_id, completed, self.token.reason)
                    break
                call_index = self._next_index()
                try:
                    outcome = execute_call(self.transport, self.descriptor, call_index, self.token)
                except CallAborted:
                    logger.debug("Worker %d aborted in-flight call %d", worker_id, call_index)
                    break
                self.sink.append(outcome)
                completed += 1
        finally:
            self._mark_stopped()
        return completed
