"""
refwatch - Leak confirmation for long-running Python processes

Answers one question about an object: should it be gone by now, and if
it is not, what does the heap look like?

Usage:
    import refwatch

    watcher = refwatch.install()

    def on_close(view):
        watcher.watch(view, "view")

    # Custom wiring
    from refwatch import RefWatcherBuilder
    watcher = (
        RefWatcherBuilder()
        .watch_delay(1.0)
        .heap_dump_directory("/tmp/heapdumps")
        .build()
    )

Configuration via environment variables:
    REFWATCH_ENABLED=true          # false gives a no-op watcher
    REFWATCH_WATCH_DELAY=5         # Seconds before the first check
    REFWATCH_HEAP_DUMP_DIR=...     # Where tracemalloc dumps are written
    REFWATCH_LOG_LEVEL=WARNING     # Used by install() for console logging
"""

import logging
import threading
from pathlib import Path
from typing import Optional, Union

from .builder import RefWatcherBuilder
from .collaborators import (
    RETRY_LATER,
    BackgroundHeapDumpListener,
    DebuggerControl,
    DefaultDebuggerControl,
    DefaultGcTrigger,
    ExcludedRefs,
    GcTrigger,
    HeapDumper,
    HeapDumpListener,
    LoggingHeapDumpListener,
    NoopHeapDumper,
    NoopHeapDumpListener,
    TracemallocHeapDumper,
)
from .config import WatcherConfig
from .executor import ExecutorStats, NoopWatchExecutor, ThreadWatchExecutor, WatchExecutor
from .heapdump import HeapDump
from .logging_config import setup_logging
from .registry import KeyedWeakReference, ReclamationQueue, RetainedKeys
from .task import Result, Retryable
from .watcher import RefWatcher, WatcherStats

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())


# Process-wide watcher
_ref_watcher: Optional[RefWatcher] = None
_ref_watcher_lock = threading.Lock()


def install(
    config: Optional[WatcherConfig] = None,
    config_path: Optional[Union[str, Path]] = None
) -> RefWatcher:
    """
    Build and install the process-wide RefWatcher.

    Returns the already installed watcher if there is one.

    Args:
        config: Configuration. If None, loads from environment (and config_path)
        config_path: Optional YAML file layered over the environment
    """
    global _ref_watcher

    with _ref_watcher_lock:
        if _ref_watcher is None:
            config = config or WatcherConfig.load(config_path)
            builder = RefWatcherBuilder.from_config(config)
            if not builder.is_disabled():
                setup_logging(config.log_level)
            _ref_watcher = builder.build()

    return _ref_watcher


def get_ref_watcher() -> RefWatcher:
    """Get the process-wide watcher, installing one from the environment if needed."""
    if _ref_watcher is None:
        return install()
    return _ref_watcher


def reset_ref_watcher() -> None:
    """
    Shut down and forget the process-wide watcher.

    Useful for testing or reconfiguration.
    """
    global _ref_watcher

    with _ref_watcher_lock:
        if _ref_watcher is not None:
            _ref_watcher.shutdown(wait=True)
            _ref_watcher = None


__all__ = [
    # Main class
    "RefWatcher",
    "RefWatcherBuilder",
    "WatcherStats",

    # Retry contract
    "Result",
    "Retryable",
    "WatchExecutor",
    "NoopWatchExecutor",
    "ThreadWatchExecutor",
    "ExecutorStats",

    # Collaborators
    "GcTrigger",
    "DebuggerControl",
    "HeapDumper",
    "HeapDumpListener",
    "RETRY_LATER",
    "ExcludedRefs",
    "DefaultGcTrigger",
    "DefaultDebuggerControl",
    "NoopHeapDumper",
    "TracemallocHeapDumper",
    "NoopHeapDumpListener",
    "LoggingHeapDumpListener",
    "BackgroundHeapDumpListener",
    "HeapDump",

    # Registry
    "KeyedWeakReference",
    "RetainedKeys",
    "ReclamationQueue",

    # Configuration
    "WatcherConfig",
    "setup_logging",

    # Global instance
    "install",
    "get_ref_watcher",
    "reset_ref_watcher",
]
