"""
BlobDB Worker Pools
===================
Fixed-size thread pools for asynchronous index work.

Two pools per store:
  maintenance  one task per document write; decouples the writer from
               index convergence
  fanout       per-field reconciliation and per-document backfill work

  Backend request concurrency is bounded by
  maintenance.max_workers * fanout.max_workers.

Fanout tasks never wait on other pool tasks, so a maintenance task
waiting on its fanout batch cannot deadlock either pool.

Lifetime: created with the store, never resized, shut down on close.
Thread safety: pending set guarded by a Condition.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable, List, Optional, Set


logger = logging.getLogger(__name__)


class PoolClosedError(RuntimeError):
    """Work submitted to a pool that has been shut down."""
    pass


class WorkerPool:

    def __init__(self, name: str, max_workers: int):
        if max_workers < 1:
            raise ValueError(f"{name} pool needs at least 1 worker, got {max_workers}")
        self.name = name
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=f"blobdb-{name}"
        )
        self._pending: Set[Future] = set()
        self._idle = threading.Condition()
        self._closed = False

    @property
    def pending_count(self) -> int:
        with self._idle:
            return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        with self._idle:
            if self._closed:
                raise PoolClosedError(f"{self.name} pool is shut down")
            future = self._executor.submit(fn, *args, **kwargs)
            self._pending.add(future)
        # Registered outside the lock: a finished future runs the callback inline.
        future.add_done_callback(self._finished)
        return future

    def _finished(self, future: Future) -> None:
        with self._idle:
            self._pending.discard(future)
            if not self._pending:
                self._idle.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no submitted task is pending. False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._pending, timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._idle:
            if self._closed:
                return
            self._closed = True
        logger.debug("shutting down %s pool", self.name)
        self._executor.shutdown(wait=wait)


def run_all(pool: WorkerPool, calls: Iterable[Callable[[], object]],
            timeout: Optional[float] = None) -> List[Future]:
    """
    Submit a batch of zero-argument calls and wait for all of them.
    Returns the futures in submission order. If timeout expires first,
    the unfinished ones come back with done() == False.
    """
    futures = [pool.submit(call) for call in calls]
    if futures:
        wait(futures, timeout=timeout)
    return futures
