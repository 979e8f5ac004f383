"""
HeapDump - Payload handed to the heap dump listener

Built only for leak candidates whose heap was captured. The watcher
hands it off and forgets it; the listener owns it afterwards.
"""

from dataclasses import dataclass
from typing import Any, Dict

import orjson


@dataclass(frozen=True)
class HeapDump:
    """
    A captured heap snapshot plus the reference that triggered it.

    Immutable. excluded_refs is passed through exactly as configured.
    """
    heap_dump_file: Any
    key: str
    label: str
    excluded_refs: Any

    # Timing (diagnostic only)
    watch_duration_ms: int
    gc_duration_ms: int
    heap_dump_duration_ms: int

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging or writing next to the dump."""
        excluded = self.excluded_refs
        if hasattr(excluded, "to_dict"):
            excluded = excluded.to_dict()
        elif excluded is not None:
            excluded = str(excluded)

        return {
            "heap_dump_file": str(self.heap_dump_file),
            "key": self.key,
            "label": self.label,
            "excluded_refs": excluded,
            "watch_duration_ms": self.watch_duration_ms,
            "gc_duration_ms": self.gc_duration_ms,
            "heap_dump_duration_ms": self.heap_dump_duration_ms,
        }

    def to_json(self) -> str:
        return orjson.dumps(self.to_dict()).decode()
