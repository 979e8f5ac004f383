"""
RefWatcherBuilder - Wires a RefWatcher from collaborators and config

Anything not set explicitly falls back to a default driven by
WatcherConfig:
- watch executor: ThreadWatchExecutor(watch_delay, max_backoff_factor, workers)
- debugger control: DefaultDebuggerControl
- GC trigger: DefaultGcTrigger(gc_enqueue_wait)
- heap dumper: TracemallocHeapDumper(heap_dump_dir, tracemalloc_frames)
- listener: LoggingHeapDumpListener
- excluded refs: empty ExcludedRefs

Usage:
    watcher = (
        RefWatcherBuilder()
        .watch_delay(2.0)
        .heap_dump_listener(MyListener())
        .build()
    )
"""

from pathlib import Path
from typing import Any, Optional, Union

from .collaborators import (
    DebuggerControl,
    DefaultDebuggerControl,
    DefaultGcTrigger,
    ExcludedRefs,
    GcTrigger,
    HeapDumper,
    HeapDumpListener,
    LoggingHeapDumpListener,
    TracemallocHeapDumper,
)
from .config import WatcherConfig
from .executor import ThreadWatchExecutor, WatchExecutor
from .watcher import RefWatcher


class RefWatcherBuilder:
    """Fluent builder. Each setter returns the builder."""

    def __init__(self, config: Optional[WatcherConfig] = None):
        self._config = config or WatcherConfig()
        self._config.validate()

        self._watch_executor: Optional[WatchExecutor] = None
        self._debugger_control: Optional[DebuggerControl] = None
        self._gc_trigger: Optional[GcTrigger] = None
        self._heap_dumper: Optional[HeapDumper] = None
        self._heap_dump_listener: Optional[HeapDumpListener] = None
        self._excluded_refs: Any = None

    @classmethod
    def from_config(cls, config: WatcherConfig) -> 'RefWatcherBuilder':
        return cls(config)

    @property
    def config(self) -> WatcherConfig:
        return self._config

    def watch_executor(self, watch_executor: WatchExecutor) -> 'RefWatcherBuilder':
        self._watch_executor = watch_executor
        return self

    def watch_delay(self, seconds: float) -> 'RefWatcherBuilder':
        """Check references this long after watch(). Replaces the executor."""
        return self.watch_executor(ThreadWatchExecutor(
            initial_delay=seconds,
            max_backoff_factor=self._config.max_backoff_factor,
            max_workers=self._config.workers
        ))

    def debugger_control(self, debugger_control: DebuggerControl) -> 'RefWatcherBuilder':
        self._debugger_control = debugger_control
        return self

    def gc_trigger(self, gc_trigger: GcTrigger) -> 'RefWatcherBuilder':
        self._gc_trigger = gc_trigger
        return self

    def heap_dumper(self, heap_dumper: HeapDumper) -> 'RefWatcherBuilder':
        self._heap_dumper = heap_dumper
        return self

    def heap_dump_directory(self, directory: Union[str, Path]) -> 'RefWatcherBuilder':
        """Write tracemalloc heap dumps to directory. Replaces the heap dumper."""
        return self.heap_dumper(TracemallocHeapDumper(
            directory, frames=self._config.tracemalloc_frames
        ))

    def heap_dump_listener(self, heap_dump_listener: HeapDumpListener) -> 'RefWatcherBuilder':
        self._heap_dump_listener = heap_dump_listener
        return self

    def excluded_refs(self, excluded_refs: Any) -> 'RefWatcherBuilder':
        self._excluded_refs = excluded_refs
        return self

    def is_disabled(self) -> bool:
        return not self._config.enabled

    def build(self) -> RefWatcher:
        """
        Create the RefWatcher.

        Returns RefWatcher.disabled() when configuration disables watching;
        no default collaborator (threads, tracemalloc) is created then.
        """
        if self.is_disabled():
            return RefWatcher.disabled()

        return RefWatcher(
            watch_executor=self._watch_executor or self._default_watch_executor(),
            debugger_control=self._debugger_control or DefaultDebuggerControl(),
            gc_trigger=self._gc_trigger or DefaultGcTrigger(self._config.gc_enqueue_wait),
            heap_dumper=self._heap_dumper or self._default_heap_dumper(),
            heap_dump_listener=self._heap_dump_listener or LoggingHeapDumpListener(),
            excluded_refs=self._excluded_refs if self._excluded_refs is not None else ExcludedRefs(),
        )

    def _default_watch_executor(self) -> WatchExecutor:
        return ThreadWatchExecutor(
            initial_delay=self._config.watch_delay,
            max_backoff_factor=self._config.max_backoff_factor,
            max_workers=self._config.workers
        )

    def _default_heap_dumper(self) -> HeapDumper:
        return TracemallocHeapDumper(
            self._config.heap_dump_dir,
            frames=self._config.tracemalloc_frames
        )
