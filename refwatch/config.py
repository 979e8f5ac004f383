"""
WatcherConfig - Configuration for reference watching

Loads settings from environment variables and, optionally, a YAML file.
Provides defaults that work in any long-running process.

Priority (highest to lowest):
  1. Config file (watcher: section, or top level)
  2. Environment variables
  3. Defaults

Environment variables:
- REFWATCH_ENABLED: Enable/disable leak detection (default: true)
- REFWATCH_WATCH_DELAY: Seconds before the first check (default: 5)
- REFWATCH_MAX_BACKOFF_FACTOR: Cap on the retry delay multiplier (default: 32)
- REFWATCH_WORKERS: Threads running checks (default: 1)
- REFWATCH_GC_ENQUEUE_WAIT: Seconds to wait between forced collections (default: 0.1)
- REFWATCH_HEAP_DUMP_DIR: Where heap dumps are written (default: ~/.refwatch/heapdumps)
- REFWATCH_TRACEMALLOC_FRAMES: Frames kept per allocation trace (default: 25)
- REFWATCH_LOG_LEVEL: Log level for setup_logging (default: WARNING)
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml


DEFAULT_HEAP_DUMP_DIR = str(Path.home() / ".refwatch" / "heapdumps")


@dataclass
class WatcherConfig:
    """
    Configuration for the reference watcher.

    Loaded from environment variables with sensible defaults.
    """

    # Feature toggle
    enabled: bool = True

    # Scheduling
    watch_delay: float = 5.0               # First check delay (seconds)
    max_backoff_factor: int = 32           # Retry delay <= watch_delay * factor
    workers: int = 1                       # Threads running checks

    # Collection
    gc_enqueue_wait: float = 0.1           # Pause between forced collections

    # Heap dumps
    heap_dump_dir: str = DEFAULT_HEAP_DUMP_DIR
    tracemalloc_frames: int = 25

    # Logging
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> 'WatcherConfig':
        """Load configuration from environment variables."""
        return cls(
            enabled=_get_bool_env("REFWATCH_ENABLED", True),
            watch_delay=_get_float_env("REFWATCH_WATCH_DELAY", 5.0),
            max_backoff_factor=_get_int_env("REFWATCH_MAX_BACKOFF_FACTOR", 32),
            workers=_get_int_env("REFWATCH_WORKERS", 1),
            gc_enqueue_wait=_get_float_env("REFWATCH_GC_ENQUEUE_WAIT", 0.1),
            heap_dump_dir=os.environ.get("REFWATCH_HEAP_DUMP_DIR") or DEFAULT_HEAP_DUMP_DIR,
            tracemalloc_frames=_get_int_env("REFWATCH_TRACEMALLOC_FRAMES", 25),
            log_level=os.environ.get("REFWATCH_LOG_LEVEL") or "WARNING",
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional['WatcherConfig'] = None) -> 'WatcherConfig':
        """
        Overlay known keys from data onto base (or defaults).

        Unknown keys are ignored.
        """
        values = (base or cls()).to_dict()
        known = {f.name for f in fields(cls)}
        for key, value in data.items():
            if key in known and value is not None:
                values[key] = value
        return cls(**values)

    @classmethod
    def from_file(cls, path: Union[str, Path], base: Optional['WatcherConfig'] = None) -> 'WatcherConfig':
        """
        Load configuration from a YAML file.

        Settings may sit under a `watcher:` section or at the top level.
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")

        section = data.get("watcher", data)
        if not isinstance(section, dict):
            raise ValueError(f"'watcher' section in {path} must be a mapping")

        return cls.from_dict(section, base=base)

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> 'WatcherConfig':
        """Environment, then file on top when a path is given."""
        config = cls.from_env()
        if path is not None:
            config = cls.from_file(path, base=config)
        return config

    def validate(self) -> None:
        """Validate configuration values."""
        if self.watch_delay < 0:
            raise ValueError("REFWATCH_WATCH_DELAY must be >= 0")
        if self.max_backoff_factor < 1:
            raise ValueError("REFWATCH_MAX_BACKOFF_FACTOR must be >= 1")
        if self.workers < 1:
            raise ValueError("REFWATCH_WORKERS must be >= 1")
        if self.gc_enqueue_wait < 0:
            raise ValueError("REFWATCH_GC_ENQUEUE_WAIT must be >= 0")
        if self.tracemalloc_frames < 1:
            raise ValueError("REFWATCH_TRACEMALLOC_FRAMES must be >= 1")
        if not isinstance(logging.getLevelName(str(self.log_level).upper()), int):
            raise ValueError(f"REFWATCH_LOG_LEVEL is not a log level: {self.log_level}")

    def to_dict(self) -> dict:
        """Serialize for display/logging."""
        return {
            "enabled": self.enabled,
            "watch_delay": self.watch_delay,
            "max_backoff_factor": self.max_backoff_factor,
            "workers": self.workers,
            "gc_enqueue_wait": self.gc_enqueue_wait,
            "heap_dump_dir": self.heap_dump_dir,
            "tracemalloc_frames": self.tracemalloc_frames,
            "log_level": self.log_level,
        }


def _get_bool_env(key: str, default: bool) -> bool:
    """Get boolean from environment variable."""
    value = os.environ.get(key, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_int_env(key: str, default: int) -> int:
    """Get integer from environment variable."""
    value = os.environ.get(key, "")
    if value:
        try:
            return int(value)
        except ValueError:
            pass
    return default


def _get_float_env(key: str, default: float) -> float:
    """Get float from environment variable."""
    value = os.environ.get(key, "")
    if value:
        try:
            return float(value)
        except ValueError:
            pass
    return default
