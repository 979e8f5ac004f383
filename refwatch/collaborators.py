"""
Collaborators - Narrow contracts the watcher calls into

The watcher only knows these single-method interfaces:
- GcTrigger: Offer the runtime a chance to collect
- DebuggerControl: Is a debugger attached right now?
- HeapDumper: Capture the heap, or say RETRY_LATER
- HeapDumpListener: Receive a captured HeapDump
- ExcludedRefs: Opaque value forwarded to the listener

Default implementations for a plain CPython process live here too.
"""

import bdb
import gc
import logging
import sys
import threading
import time
import tracemalloc
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .heapdump import HeapDump

logger = logging.getLogger(__name__)


class _RetryLater:
    """Sentinel type for a heap dump that could not be taken."""

    def __repr__(self) -> str:
        return "RETRY_LATER"

    def __bool__(self) -> bool:
        return False


RETRY_LATER = _RetryLater()


# =============================================================================
# Contracts
# =============================================================================

class GcTrigger(ABC):
    """Best-effort hint that now is a good time to collect."""

    @abstractmethod
    def run_gc(self) -> None:
        pass


class DebuggerControl(ABC):
    """Cheap, side-effect-free debugger probe."""

    @abstractmethod
    def is_debugger_attached(self) -> bool:
        pass


class HeapDumper(ABC):
    """Captures the heap for a leak candidate."""

    @abstractmethod
    def dump_heap(self) -> Any:
        """
        Capture a heap snapshot.

        Returns:
            The snapshot artifact, or RETRY_LATER if it could not be taken.
            Transient failures are signaled this way, never raised.
        """
        pass


class HeapDumpListener(ABC):
    """Receives captured heap dumps. Owns them from then on."""

    @abstractmethod
    def analyze(self, heap_dump: HeapDump) -> None:
        pass


# =============================================================================
# Excluded references
# =============================================================================

@dataclass(frozen=True)
class ExcludedRefs:
    """
    Known-safe reference patterns, mapped name -> reason.

    Never interpreted by the watcher. Whoever analyzes the dump decides
    what these mean.
    """
    fields: Dict[str, str] = field(default_factory=dict)
    static_fields: Dict[str, str] = field(default_factory=dict)
    threads: Dict[str, str] = field(default_factory=dict)
    classes: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def builder(cls) -> "ExcludedRefsBuilder":
        return ExcludedRefsBuilder()

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        return {
            "fields": dict(self.fields),
            "static_fields": dict(self.static_fields),
            "threads": dict(self.threads),
            "classes": dict(self.classes),
        }


class ExcludedRefsBuilder:
    """Fluent builder for ExcludedRefs."""

    def __init__(self):
        self._fields: Dict[str, str] = {}
        self._static_fields: Dict[str, str] = {}
        self._threads: Dict[str, str] = {}
        self._classes: Dict[str, str] = {}

    def instance_field(self, class_name: str, field_name: str, reason: str = "") -> "ExcludedRefsBuilder":
        self._fields[f"{class_name}.{field_name}"] = reason
        return self

    def static_field(self, class_name: str, field_name: str, reason: str = "") -> "ExcludedRefsBuilder":
        self._static_fields[f"{class_name}.{field_name}"] = reason
        return self

    def thread(self, thread_name: str, reason: str = "") -> "ExcludedRefsBuilder":
        self._threads[thread_name] = reason
        return self

    def clazz(self, class_name: str, reason: str = "") -> "ExcludedRefsBuilder":
        self._classes[class_name] = reason
        return self

    def build(self) -> ExcludedRefs:
        return ExcludedRefs(
            fields=dict(self._fields),
            static_fields=dict(self._static_fields),
            threads=dict(self._threads),
            classes=dict(self._classes),
        )


# =============================================================================
# Defaults
# =============================================================================

class DefaultGcTrigger(GcTrigger):
    """
    Collect, give weakref callbacks a moment to land, collect again.

    Nothing guarantees the referent is gone afterwards; it only gets
    the opportunity.
    """

    def __init__(self, enqueue_wait: float = 0.1):
        self.enqueue_wait = enqueue_wait

    def run_gc(self) -> None:
        gc.collect()
        if self.enqueue_wait > 0:
            time.sleep(self.enqueue_wait)
        gc.collect()


class DefaultDebuggerControl(DebuggerControl):
    """
    Detects pdb, pydevd-based IDEs and sys.monitoring debuggers.

    A bare trace function (coverage, profilers) is not a debugger.
    """

    def is_debugger_attached(self) -> bool:
        pydevd = sys.modules.get("pydevd")
        if pydevd is not None:
            # The module outlives a detached IDE session
            get_debugger = (
                getattr(pydevd, "get_global_debugger", None)
                or getattr(pydevd, "GetGlobalDebugger", None)
            )
            if get_debugger is not None and get_debugger() is not None:
                return True

        tracer = sys.gettrace()
        if tracer is not None and isinstance(getattr(tracer, "__self__", None), bdb.Bdb):
            return True

        monitoring = getattr(sys, "monitoring", None)
        if monitoring is not None and monitoring.get_tool(monitoring.DEBUGGER_ID) is not None:
            return True

        return False


class NoopHeapDumper(HeapDumper):
    """Never captures anything."""

    def dump_heap(self) -> Any:
        return RETRY_LATER


class TracemallocHeapDumper(HeapDumper):
    """
    Writes tracemalloc snapshots to a directory.

    Starts tracemalloc on construction when it is not already tracing.
    Allocations made before tracing started are absent from snapshots.
    """

    SUFFIX = ".tracemalloc"

    def __init__(self, directory: Union[str, Path], frames: int = 25, start_tracing: bool = True):
        self.directory = Path(directory).expanduser()
        self.frames = frames
        self._lock = threading.Lock()
        self._count = 0

        if start_tracing and not tracemalloc.is_tracing():
            tracemalloc.start(frames)
            logger.debug("Started tracemalloc with %d frames", frames)

    def dump_heap(self) -> Any:
        if not tracemalloc.is_tracing():
            logger.warning("tracemalloc is not tracing, cannot dump heap")
            return RETRY_LATER

        path = self._next_path()
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tracemalloc.take_snapshot().dump(str(path))
        except OSError as e:
            logger.warning("Could not write heap dump %s: %s", path, e)
            return RETRY_LATER

        return path

    def _next_path(self) -> Path:
        with self._lock:
            self._count += 1
            count = self._count
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        return self.directory / f"{stamp}-{count}{self.SUFFIX}"


class NoopHeapDumpListener(HeapDumpListener):
    def analyze(self, heap_dump: HeapDump) -> None:
        pass


class LoggingHeapDumpListener(HeapDumpListener):
    """Reports each heap dump as one JSON warning line."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logger

    def analyze(self, heap_dump: HeapDump) -> None:
        self._log.warning("Leak suspected: %s", heap_dump.to_json())


class BackgroundHeapDumpListener(HeapDumpListener):
    """
    Runs another listener on its own thread.

    analyze() returns immediately; delegate failures are logged there.
    """

    def __init__(self, delegate: HeapDumpListener):
        self._delegate = delegate
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="refwatch-analyze-"
        )

    def analyze(self, heap_dump: HeapDump) -> None:
        self._executor.submit(self._run, heap_dump)

    def _run(self, heap_dump: HeapDump) -> None:
        try:
            self._delegate.analyze(heap_dump)
        except Exception:
            logger.exception("Heap dump listener failed for %s", heap_dump.key)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
