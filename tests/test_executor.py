"""
Tests for WatchExecutor implementations

Tests verify:
- execute() returns before the work runs
- RETRY re-runs the task with exponential backoff
- Runs of one task never overlap
- A raising task is retried like RETRY
- Shutdown stops scheduling
"""

import threading
import time

import pytest

from refwatch import NoopWatchExecutor, Result, ThreadWatchExecutor
from tests.factories import ManualWatchExecutor


class Countdown:
    """Returns RETRY a number of times, then DONE."""

    def __init__(self, retries: int, pause: float = 0.0):
        self.retries = retries
        self.pause = pause
        self.calls = 0
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()

    def __call__(self) -> Result:
        with self._lock:
            self.calls += 1
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        if self.pause:
            time.sleep(self.pause)
        with self._lock:
            self.running -= 1
            if self.calls > self.retries:
                return Result.DONE
        return Result.RETRY


@pytest.fixture
def thread_executor():
    executor = ThreadWatchExecutor(initial_delay=0.0, max_workers=4)
    yield executor
    executor.shutdown(wait=True)


class TestBackoff:
    """Retry delay policy."""

    def test_delay_doubles_until_capped(self):
        executor = ThreadWatchExecutor(initial_delay=1.0, max_backoff_factor=8)
        assert executor.delay_for(0) == 1.0
        assert executor.delay_for(1) == 2.0
        assert executor.delay_for(2) == 4.0
        assert executor.delay_for(3) == 8.0
        assert executor.delay_for(10) == 8.0
        assert executor.delay_for(10_000) == 8.0
        executor.shutdown()

    def test_invalid_settings_rejected(self):
        with pytest.raises(ValueError):
            ThreadWatchExecutor(initial_delay=-1)
        with pytest.raises(ValueError):
            ThreadWatchExecutor(max_backoff_factor=0)


class TestThreadWatchExecutor:
    """Delayed, retrying execution."""

    def test_execute_does_not_block(self):
        """The first run waits for the initial delay."""
        executor = ThreadWatchExecutor(initial_delay=0.5)
        task = Countdown(retries=0)

        start = time.monotonic()
        executor.execute(task)
        elapsed = time.monotonic() - start

        assert elapsed < 0.1
        assert task.calls == 0
        executor.shutdown(wait=True)

    def test_retries_until_done(self, thread_executor):
        task = Countdown(retries=3)
        thread_executor.execute(task)

        assert thread_executor.wait_until_idle(timeout=5.0)
        assert task.calls == 4

        stats = thread_executor.stats()
        assert stats.retries == 3
        assert stats.done == 1
        assert stats.runs == 4
        assert stats.pending == 0

    def test_runs_of_one_task_never_overlap(self, thread_executor):
        """Sequential retries even with several workers."""
        task = Countdown(retries=5, pause=0.01)
        thread_executor.execute(task)

        assert thread_executor.wait_until_idle(timeout=5.0)
        assert task.max_running == 1

    def test_independent_tasks_run_in_parallel(self, thread_executor):
        tasks = [Countdown(retries=0, pause=0.1) for _ in range(4)]

        start = time.monotonic()
        for task in tasks:
            thread_executor.execute(task)
        assert thread_executor.wait_until_idle(timeout=5.0)
        elapsed = time.monotonic() - start

        assert all(t.calls == 1 for t in tasks)
        assert elapsed < 0.35, f"Tasks serialized! Took {elapsed:.2f}s"

    def test_raising_task_retried_with_backoff(self, thread_executor):
        """A raise counts as a failed run and the task is scheduled again."""
        calls = []

        def explode_once():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return Result.DONE

        thread_executor.execute(explode_once)

        assert thread_executor.wait_until_idle(timeout=5.0)
        assert calls == [1, 1]

        stats = thread_executor.stats()
        assert stats.failed == 1
        assert stats.retries == 1
        assert stats.done == 1

    def test_execute_after_shutdown_fails(self):
        executor = ThreadWatchExecutor(initial_delay=0.0)
        executor.shutdown()

        with pytest.raises(RuntimeError):
            executor.execute(Countdown(retries=0))

    def test_shutdown_drops_delayed_work(self):
        executor = ThreadWatchExecutor(initial_delay=10.0)
        task = Countdown(retries=0)
        executor.execute(task)
        assert executor.stats().pending == 1

        executor.shutdown(wait=True)

        assert executor.stats().pending == 0
        assert task.calls == 0

    def test_stats_to_dict(self, thread_executor):
        data = thread_executor.stats().to_dict()
        assert set(data) == {"scheduled", "runs", "retries", "done", "failed", "pending", "active"}


class TestOtherExecutors:
    """No-op and manual executors."""

    def test_noop_discards(self):
        task = Countdown(retries=0)
        executor = NoopWatchExecutor()
        executor.execute(task)
        executor.shutdown()
        assert task.calls == 0

    def test_manual_executor_reruns_retries(self):
        task = Countdown(retries=2)
        executor = ManualWatchExecutor()
        executor.execute(task)

        assert executor.run_until_done() == [Result.RETRY, Result.RETRY, Result.DONE]
        assert executor.pending == []
