"""
Bounded Worker Pool

Fixed set of daemon worker threads consuming a bounded task queue.
Backs asynchronous dispatch on a DispatchBus.

Overflow policies:
- BLOCK: submitter waits for queue space (optionally bounded by put_timeout)
- DROP_OLDEST: the oldest queued task is cancelled to make room
"""

from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional
import logging
import queue
import threading
import time


logger = logging.getLogger(__name__)


class OverflowPolicy(Enum):
    """Behaviour of submit() when the task queue is full."""
    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"


@dataclass
class PoolStats:
    """Worker pool counters."""
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    dropped: int = 0


_SHUTDOWN = object()


class WorkerPool:
    """
    Thread pool with a bounded queue and a configurable overflow policy.

    Tasks are started in submission order. With more than one worker they
    may finish in any order.
    """

    def __init__(self, name: str, max_workers: int = 4, max_queue: int = 1024,
                 policy: OverflowPolicy = OverflowPolicy.BLOCK,
                 put_timeout: Optional[float] = None):
        if max_workers <= 0:
            raise ValueError(f"max_workers must be positive, got {max_workers}")
        if max_queue <= 0:
            raise ValueError(f"max_queue must be positive, got {max_queue}")

        self.name = name
        self.policy = policy
        self._put_timeout = put_timeout
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue)
        self._lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats = PoolStats()
        self._shutdown = False

        self._workers: List[threading.Thread] = []
        for i in range(max_workers):
            worker = threading.Thread(
                target=self._worker_loop,
                name=f"{name}-worker-{i}",
                daemon=True
            )
            worker.start()
            self._workers.append(worker)

        logger.debug(f"Worker pool '{name}' started: {max_workers} workers, "
                     f"queue {max_queue}, policy {policy.value}")

    @property
    def stats(self) -> PoolStats:
        with self._stats_lock:
            return PoolStats(**vars(self._stats))

    @property
    def max_workers(self) -> int:
        return len(self._workers)

    @property
    def queued(self) -> int:
        """Approximate number of tasks waiting for a worker."""
        return self._queue.qsize()

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """
        Schedule fn(*args) on a worker.

        Returns:
            Future resolving to the call's result

        Raises:
            RuntimeError: If the pool has been shut down
            queue.Full: If the policy is BLOCK and put_timeout elapsed
        """
        future: Future = Future()
        task = (future, fn, args)

        with self._lock:
            if self._shutdown:
                raise RuntimeError(f"Worker pool '{self.name}' is shut down")

            if self.policy == OverflowPolicy.DROP_OLDEST:
                self._put_dropping_oldest(task)
            else:
                self._queue.put(task, timeout=self._put_timeout)

        with self._stats_lock:
            self._stats.submitted += 1
        return future

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop accepting work and let queued tasks drain.

        Args:
            wait: Join the worker threads before returning
            timeout: Overall bound on the join, None to wait indefinitely
        """
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            for _ in self._workers:
                self._queue.put(_SHUTDOWN)

        if wait:
            deadline = None if timeout is None else time.monotonic() + timeout
            for worker in self._workers:
                if worker is threading.current_thread():
                    continue
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                worker.join(remaining)
                if worker.is_alive():
                    logger.warning(f"Worker {worker.name} did not stop within {timeout}s")

        logger.debug(f"Worker pool '{self.name}' shut down")

    def _put_dropping_oldest(self, task) -> None:
        while True:
            try:
                self._queue.put_nowait(task)
                return
            except queue.Full:
                pass

            try:
                oldest = self._queue.get_nowait()
            except queue.Empty:
                continue

            oldest_future = oldest[0]
            oldest_future.cancel()
            with self._stats_lock:
                self._stats.dropped += 1
            logger.debug(f"Worker pool '{self.name}' full, dropped oldest task")

    def _worker_loop(self) -> None:
        while True:
            task = self._queue.get()
            if task is _SHUTDOWN:
                return

            future, fn, args = task
            if not future.set_running_or_notify_cancel():
                continue

            try:
                result = fn(*args)
            except Exception as e:
                logger.error(f"Task {getattr(fn, '__name__', fn)} failed in pool '{self.name}': {e}")
                with self._stats_lock:
                    self._stats.failed += 1
                future.set_exception(e)
            else:
                with self._stats_lock:
                    self._stats.completed += 1
                future.set_result(result)
