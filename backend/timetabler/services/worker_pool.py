from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
import logging
from threading import Lock
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SchedulingWorkerPool:
    """Runs generation and reconciliation work off the request thread."""

    def __init__(self, max_workers: int = 2) -> None:
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="timetabler")
        self._lock = Lock()
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def submit(self, fn: Callable[..., T], /, *args, **kwargs) -> Future[T]:
        def _done(_: Future) -> None:
            with self._lock:
                self._in_flight -= 1

        # Raises RuntimeError after shutdown, before anything is counted.
        future = self._executor.submit(fn, *args, **kwargs)
        with self._lock:
            self._in_flight += 1
        future.add_done_callback(_done)
        return future

    def run(self, fn: Callable[..., T], /, *args, **kwargs) -> T:
        """Submit and wait; exceptions raised by the work propagate to the caller."""
        return self.submit(fn, *args, **kwargs).result()

    def shutdown(self, wait: bool = True) -> None:
        logger.info("Shutting down scheduling worker pool workers=%s", self.max_workers)
        self._executor.shutdown(wait=wait)
