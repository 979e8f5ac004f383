"""
Test doubles for refwatch collaborators

Every fake records how it was called so tests can assert on the
decision engine's path without touching real debuggers or dumps.

Usage:
    executor = ManualWatchExecutor()
    watcher = make_watcher(executor=executor)
    watcher.watch(obj, "view")
    result = executor.run_next()
"""

import gc
import threading
import time
from pathlib import Path
from typing import Any, List, Optional

from refwatch import (
    DebuggerControl,
    GcTrigger,
    HeapDump,
    HeapDumper,
    HeapDumpListener,
    RefWatcher,
    Result,
    WatchExecutor,
)


class Target:
    """Something that can be weakly referenced."""

    def __init__(self, name: str = "target"):
        self.name = name


class Holder:
    """Keeps a Target strongly reachable."""

    def __init__(self, child: Optional[Any] = None):
        self.child = child


class ManualWatchExecutor(WatchExecutor):
    """Captures retryables; tests run them explicitly in the test thread."""

    def __init__(self):
        self.pending: List = []
        self.results: List[Result] = []
        self._lock = threading.Lock()

    def execute(self, retryable) -> None:
        with self._lock:
            self.pending.append(retryable)

    def run_next(self) -> Result:
        with self._lock:
            retryable = self.pending.pop(0)
        result = retryable()
        self.results.append(result)
        if result is Result.RETRY:
            with self._lock:
                self.pending.append(retryable)
        return result

    def run_until_done(self, max_runs: int = 10) -> List[Result]:
        runs = []
        while self.pending and len(runs) < max_runs:
            runs.append(self.run_next())
        return runs


class FakeDebuggerControl(DebuggerControl):
    def __init__(self, attached: bool = False):
        self.attached = attached
        self.calls = 0

    def is_debugger_attached(self) -> bool:
        self.calls += 1
        return self.attached


class RecordingGcTrigger(GcTrigger):
    """Runs a real collection, optionally pausing, and counts calls."""

    def __init__(self, pause: float = 0.0):
        self.pause = pause
        self.calls = 0

    def run_gc(self) -> None:
        self.calls += 1
        gc.collect()
        if self.pause:
            time.sleep(self.pause)


class RecordingHeapDumper(HeapDumper):
    """Returns queued outcomes in order, then a fixed path."""

    def __init__(self, outcomes: Optional[List[Any]] = None, path: str = "heap.tracemalloc"):
        self.outcomes = list(outcomes or [])
        self.path = Path(path)
        self.calls = 0

    def dump_heap(self) -> Any:
        self.calls += 1
        if self.outcomes:
            return self.outcomes.pop(0)
        return self.path


class RecordingListener(HeapDumpListener):
    def __init__(self):
        self.heap_dumps: List[HeapDump] = []
        self.done = threading.Event()

    def analyze(self, heap_dump: HeapDump) -> None:
        self.heap_dumps.append(heap_dump)
        self.done.set()


class ExplodingListener(HeapDumpListener):
    def __init__(self):
        self.calls = 0

    def analyze(self, heap_dump: HeapDump) -> None:
        self.calls += 1
        raise RuntimeError("analysis crashed")


def make_watcher(
    executor: Optional[WatchExecutor] = None,
    debugger: Optional[DebuggerControl] = None,
    gc_trigger: Optional[GcTrigger] = None,
    dumper: Optional[HeapDumper] = None,
    listener: Optional[HeapDumpListener] = None,
    excluded_refs: Any = None,
    enabled: bool = True
) -> RefWatcher:
    return RefWatcher(
        watch_executor=executor or ManualWatchExecutor(),
        debugger_control=debugger or FakeDebuggerControl(),
        gc_trigger=gc_trigger or RecordingGcTrigger(),
        heap_dumper=dumper or RecordingHeapDumper(),
        heap_dump_listener=listener or RecordingListener(),
        excluded_refs=excluded_refs,
        enabled=enabled,
    )
