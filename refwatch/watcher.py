"""
RefWatcher - Confirms that watched objects actually go away

watch() registers an object and schedules ensure_gone() on the
WatchExecutor. ensure_gone() walks one reference through:

    debugger check -> drain + check -> force GC -> drain + check
        -> dump heap -> hand HeapDump to the listener

Each step either finishes (DONE), gives up for now (RETRY) or falls
through. Membership is always re-checked right after a drain.

Thread Safety:
- watch() may be called from any thread and never blocks
- Shared state (retained keys, reclamation queue) guards itself
- No lock spans a whole ensure_gone() run
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

from .collaborators import (
    RETRY_LATER,
    DebuggerControl,
    GcTrigger,
    HeapDumper,
    HeapDumpListener,
    NoopHeapDumper,
    NoopHeapDumpListener,
)
from .executor import NoopWatchExecutor, WatchExecutor
from .heapdump import HeapDump
from .registry import KeyedWeakReference, ReclamationQueue, RetainedKeys, generate_key
from .task import Result

logger = logging.getLogger(__name__)


@dataclass
class WatcherStats:
    """Counters for watcher observability."""
    watched: int = 0
    reclaimed: int = 0
    leaks: int = 0
    retries: int = 0
    retained: int = 0

    def to_dict(self) -> dict:
        return {
            "watched": self.watched,
            "reclaimed": self.reclaimed,
            "leaks": self.leaks,
            "retries": self.retries,
            "retained": self.retained,
        }


class _NeverAttached(DebuggerControl):
    def is_debugger_attached(self) -> bool:
        return False


class _NoGc(GcTrigger):
    def run_gc(self) -> None:
        pass


def _ms_between(start_ns: int, end_ns: int) -> int:
    return (end_ns - start_ns) // 1_000_000


class RefWatcher:
    """
    Watches references that should become unreachable.

    When a watched object is still around after a forced collection,
    the heap is dumped and handed to the HeapDumpListener.

    A watcher built with enabled=False (see disabled()) does nothing at
    all: every public method returns before touching shared state.
    """

    def __init__(
        self,
        watch_executor: WatchExecutor,
        debugger_control: DebuggerControl,
        gc_trigger: GcTrigger,
        heap_dumper: HeapDumper,
        heap_dump_listener: HeapDumpListener,
        excluded_refs: Any = None,
        enabled: bool = True
    ):
        self._watch_executor = _require(watch_executor, "watch_executor")
        self._debugger_control = _require(debugger_control, "debugger_control")
        self._gc_trigger = _require(gc_trigger, "gc_trigger")
        self._heap_dumper = _require(heap_dumper, "heap_dumper")
        self._heap_dump_listener = _require(heap_dump_listener, "heap_dump_listener")
        self._excluded_refs = excluded_refs
        self._enabled = enabled

        self._retained_keys = RetainedKeys()
        self._queue = ReclamationQueue()

        self._stats = WatcherStats()
        self._stats_lock = threading.Lock()

    @classmethod
    def disabled(cls) -> 'RefWatcher':
        """A watcher whose watch() is always a no-op."""
        return cls(
            watch_executor=NoopWatchExecutor(),
            debugger_control=_NeverAttached(),
            gc_trigger=_NoGc(),
            heap_dumper=NoopHeapDumper(),
            heap_dump_listener=NoopHeapDumpListener(),
            enabled=False
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def watch_executor(self) -> WatchExecutor:
        return self._watch_executor

    def watch(self, watched_reference: Any, label: str = "") -> None:
        """
        Watch an object that is expected to become unreachable.

        Non-blocking: the check runs later on the WatchExecutor.

        Args:
            watched_reference: Object to watch (must support weak references)
            label: Free-form name shown with any resulting heap dump

        Raises:
            ValueError: If watched_reference or label is None
            TypeError: If watched_reference cannot be weakly referenced
            RuntimeError: If the executor is shut down (nothing stays registered)
        """
        if not self._enabled:
            return

        if watched_reference is None:
            raise ValueError("watched_reference must not be None")
        if label is None:
            raise ValueError("label must not be None")

        watch_start_ns = time.monotonic_ns()
        reference = KeyedWeakReference(
            watched_reference, generate_key(), label, self._queue,
            watch_start_ns=watch_start_ns
        )
        self._retained_keys.add(reference.key)

        try:
            self._ensure_gone_async(reference)
        except Exception:
            # Unscheduled keys would never be resolved
            self._retained_keys.remove(reference.key)
            raise

        with self._stats_lock:
            self._stats.watched += 1

    def _ensure_gone_async(self, reference: KeyedWeakReference) -> None:
        self._watch_executor.execute(lambda: self.ensure_gone(reference))

    def ensure_gone(self, reference: KeyedWeakReference) -> Result:
        """
        Decide, once, whether reference has been reclaimed.

        Returns:
            DONE when reclaimed or after a heap dump was handed off,
            RETRY when a debugger is attached or the dump failed
        """
        if not self._enabled:
            return Result.DONE

        # A debugger can hold references that look like leaks
        if self._debugger_control.is_debugger_attached():
            logger.debug("Debugger attached, deferring check of %s", reference.key)
            return self._retry()

        gc_start_ns = time.monotonic_ns()
        watch_duration_ms = _ms_between(reference.watch_start_ns, gc_start_ns)

        if self._drain_and_check_gone(reference):
            return Result.DONE

        self._gc_trigger.run_gc()

        if self._drain_and_check_gone(reference):
            return Result.DONE

        start_dump_ns = time.monotonic_ns()
        gc_duration_ms = _ms_between(gc_start_ns, start_dump_ns)

        logger.info(
            "Reference %s (%r) retained after GC, dumping heap",
            reference.key, reference.label
        )
        heap_dump_file = self._heap_dumper.dump_heap()
        if heap_dump_file is RETRY_LATER:
            logger.debug("Heap dump not available, will retry %s", reference.key)
            return self._retry()

        heap_dump_duration_ms = _ms_between(start_dump_ns, time.monotonic_ns())

        heap_dump = HeapDump(
            heap_dump_file=heap_dump_file,
            key=reference.key,
            label=reference.label,
            excluded_refs=self._excluded_refs,
            watch_duration_ms=watch_duration_ms,
            gc_duration_ms=gc_duration_ms,
            heap_dump_duration_ms=heap_dump_duration_ms,
        )
        try:
            self._heap_dump_listener.analyze(heap_dump)
        except Exception:
            logger.exception("Heap dump listener failed for %s", reference.key)

        self._retained_keys.remove(reference.key)
        with self._stats_lock:
            self._stats.leaks += 1

        return Result.DONE

    def _drain_and_check_gone(self, reference: KeyedWeakReference) -> bool:
        self._queue.drain_into(self._retained_keys)
        if self._retained_keys.contains(reference.key):
            return False

        logger.debug("Reference %s (%r) reclaimed", reference.key, reference.label)
        with self._stats_lock:
            self._stats.reclaimed += 1
        return True

    def _retry(self) -> Result:
        with self._stats_lock:
            self._stats.retries += 1
        return Result.RETRY

    def is_retained(self, key: str) -> bool:
        """Whether key is still waiting to be seen reclaimed."""
        if not self._enabled:
            return False
        return self._retained_keys.contains(key)

    def is_empty(self) -> bool:
        """True when no watched reference is retained."""
        if not self._enabled:
            return True
        self._queue.drain_into(self._retained_keys)
        return len(self._retained_keys) == 0

    def stats(self) -> WatcherStats:
        if not self._enabled:
            return WatcherStats()
        with self._stats_lock:
            return WatcherStats(
                watched=self._stats.watched,
                reclaimed=self._stats.reclaimed,
                leaks=self._stats.leaks,
                retries=self._stats.retries,
                retained=len(self._retained_keys),
            )

    def shutdown(self, wait: bool = True) -> None:
        """Shut down the watch executor."""
        if not self._enabled:
            return
        self._watch_executor.shutdown(wait=wait)


def _require(value: Optional[Any], name: str) -> Any:
    if value is None:
        raise ValueError(f"{name} must not be None")
    return value
