"""
WatchExecutor - Runs retryable checks and owns retry policy

Implements two executors:
- NoopWatchExecutor: Discards work (disabled watchers, no-op setups)
- ThreadWatchExecutor: Delayed execution on a thread pool with
  exponential backoff after every RETRY

Design principles:
- execute() never blocks the caller
- A task is re-queued only after its previous run returned, so runs of
  one task never overlap
- Different tasks are independent and may run on different threads
"""

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .task import Result, Retryable

logger = logging.getLogger(__name__)


class WatchExecutor(ABC):
    """Accepts retryable work and decides when it runs."""

    @abstractmethod
    def execute(self, retryable: Retryable) -> None:
        """Schedule retryable. Must return without running it inline."""
        pass

    def shutdown(self, wait: bool = True) -> None:
        """Release resources. Pending work may be dropped."""


class NoopWatchExecutor(WatchExecutor):
    """Drops everything it is given."""

    def execute(self, retryable: Retryable) -> None:
        pass


@dataclass
class ExecutorStats:
    """Statistics for executor observability."""
    scheduled: int = 0
    runs: int = 0
    retries: int = 0
    done: int = 0
    failed: int = 0
    pending: int = 0
    active: int = 0

    def to_dict(self) -> dict:
        return {
            "scheduled": self.scheduled,
            "runs": self.runs,
            "retries": self.retries,
            "done": self.done,
            "failed": self.failed,
            "pending": self.pending,
            "active": self.active,
        }


_Entry = Tuple[float, int, Retryable, int]


class ThreadWatchExecutor(WatchExecutor):
    """
    Delayed, retrying executor backed by a ThreadPoolExecutor.

    First run happens initial_delay seconds after execute(). After the
    n-th consecutive RETRY the next run waits
    initial_delay * min(2 ** n, max_backoff_factor).

    Thread-safe.
    """

    def __init__(self, initial_delay: float = 5.0, max_backoff_factor: int = 32, max_workers: int = 1):
        if initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if max_backoff_factor < 1:
            raise ValueError("max_backoff_factor must be >= 1")

        self.initial_delay = initial_delay
        self.max_backoff_factor = max_backoff_factor

        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="refwatch-watch-"
        )

        # Delay heap, ordered by due time then submission order
        self._heap: List[_Entry] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()

        self._stats = ExecutorStats()
        self._active = 0
        self._shutdown = False
        self._dispatcher: Optional[threading.Thread] = None

    def execute(self, retryable: Retryable) -> None:
        """
        Schedule a retryable for its first run.

        Raises:
            RuntimeError: If the executor is shut down
        """
        with self._cond:
            if self._shutdown:
                raise RuntimeError("Executor is shut down")
            self._stats.scheduled += 1
            self._ensure_dispatcher()
            self._push(retryable, 0)

    def delay_for(self, failed_attempts: int) -> float:
        """Seconds to wait before the run following failed_attempts RETRYs."""
        factor = min(2 ** min(failed_attempts, 63), self.max_backoff_factor)
        return self.initial_delay * factor

    def stats(self) -> ExecutorStats:
        with self._cond:
            return ExecutorStats(
                scheduled=self._stats.scheduled,
                runs=self._stats.runs,
                retries=self._stats.retries,
                done=self._stats.done,
                failed=self._stats.failed,
                pending=len(self._heap),
                active=self._active,
            )

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until nothing is pending or running.

        Returns False on timeout.
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._heap and self._active == 0,
                timeout=timeout
            )

    def shutdown(self, wait: bool = True) -> None:
        """Stop dispatching. Delayed work that has not started is dropped."""
        with self._cond:
            if self._shutdown:
                return
            self._shutdown = True
            dropped = len(self._heap)
            self._heap.clear()
            self._cond.notify_all()

        if dropped:
            logger.debug("Dropped %d pending watch checks on shutdown", dropped)

        self._pool.shutdown(wait=wait)
        if wait and self._dispatcher is not None:
            self._dispatcher.join()

    # Internals. Methods named _push/_ensure_dispatcher expect the lock held.

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is None:
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop,
                name="refwatch-dispatcher",
                daemon=True
            )
            self._dispatcher.start()

    def _push(self, retryable: Retryable, failed_attempts: int) -> None:
        due = time.monotonic() + self.delay_for(failed_attempts)
        heapq.heappush(self._heap, (due, next(self._seq), retryable, failed_attempts))
        self._cond.notify_all()

    def _dispatch_loop(self) -> None:
        with self._cond:
            while not self._shutdown:
                if not self._heap:
                    self._cond.wait()
                    continue

                remaining = self._heap[0][0] - time.monotonic()
                if remaining > 0:
                    self._cond.wait(remaining)
                    continue

                _, _, retryable, failed_attempts = heapq.heappop(self._heap)
                self._active += 1
                self._pool.submit(self._run, retryable, failed_attempts)

    def _run(self, retryable: Retryable, failed_attempts: int) -> None:
        failed = False
        try:
            result = retryable()
        except Exception:
            logger.exception("Watch check raised, retrying it with backoff")
            failed = True
            result = Result.RETRY

        with self._cond:
            self._stats.runs += 1
            self._active -= 1
            if failed:
                self._stats.failed += 1

            if result is Result.RETRY:
                self._stats.retries += 1
                if self._shutdown:
                    logger.debug("Executor shut down, not retrying")
                else:
                    logger.debug("Retrying watch check, attempt %d", failed_attempts + 2)
                    self._push(retryable, failed_attempts + 1)
            else:
                self._stats.done += 1

            self._cond.notify_all()
