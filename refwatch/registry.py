"""
Registry - Retained keys and reclamation notifications

Three pieces:
- KeyedWeakReference: Weak reference carrying the watch key and label
- RetainedKeys: Thread-safe set of keys not yet seen as reclaimed
- ReclamationQueue: Channel fed by weakref callbacks, drained on demand

A key in RetainedKeys means "not yet observed as reclaimed". That is a
lower bound: the referent may already be dead with its callback pending.
"""

import itertools
import os
import queue
import threading
import time
import weakref
from typing import Optional

import xxhash


_key_counter = itertools.count()


def generate_key() -> str:
    """
    Generate a process-unique watch key.

    The counter keeps keys unique within the process; pid and clock
    keep keys from separate runs apart when dumps outlive the process.
    """
    seed = f"{os.getpid()}:{time.monotonic_ns()}:{next(_key_counter)}"
    return xxhash.xxh128(seed.encode()).hexdigest()


class KeyedWeakReference(weakref.ref):
    """
    Weak reference to a watched object.

    Immutable after creation. When the referent is reclaimed the
    reference itself is put on the queue it was created with.
    """

    __slots__ = ("key", "label", "watch_start_ns")

    def __new__(cls, referent, key: str, label: str, reclamation_queue: "ReclamationQueue",
                watch_start_ns: Optional[int] = None):
        self = super().__new__(cls, referent, reclamation_queue.enqueue)
        self.key = key
        self.label = label
        self.watch_start_ns = time.monotonic_ns() if watch_start_ns is None else watch_start_ns
        return self

    def __init__(self, referent, key: str, label: str, reclamation_queue: "ReclamationQueue",
                 watch_start_ns: Optional[int] = None):
        super().__init__(referent, reclamation_queue.enqueue)

    def __repr__(self) -> str:
        return f"<KeyedWeakReference key={self.key} label={self.label!r}>"


class RetainedKeys:
    """
    Keys of watched references that have not been seen reclaimed.

    Thread-safe. Pure membership: no ordering, no iteration.
    """

    def __init__(self):
        self._keys = set()
        self._lock = threading.Lock()

    def add(self, key: str) -> None:
        """
        Insert a key.

        Raises:
            ValueError: If the key is already present
        """
        with self._lock:
            if key in self._keys:
                raise ValueError(f"Duplicate watch key: {key}")
            self._keys.add(key)

    def remove(self, key: str) -> None:
        """Remove a key. Absent keys are ignored."""
        with self._lock:
            self._keys.discard(key)

    def contains(self, key: str) -> bool:
        """Point-in-time membership check."""
        with self._lock:
            return key in self._keys

    def __contains__(self, key: str) -> bool:
        return self.contains(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)


class ReclamationQueue:
    """
    Reclamation notifications waiting to be drained.

    enqueue() runs as a weakref callback, possibly inside the collector
    on any thread, so it only touches a SimpleQueue.
    """

    def __init__(self):
        self._queue: queue.SimpleQueue = queue.SimpleQueue()

    def enqueue(self, reference: KeyedWeakReference) -> None:
        self._queue.put(reference)

    def poll(self) -> Optional[KeyedWeakReference]:
        """Return the next reclaimed reference, or None if there is none."""
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def drain_into(self, retained_keys: RetainedKeys) -> int:
        """
        Remove every reclaimed reference's key from retained_keys.

        Non-blocking. Notifications landing mid-drain are either taken
        now or left for the next drain.

        Returns:
            Number of notifications consumed
        """
        drained = 0
        while True:
            reference = self.poll()
            if reference is None:
                return drained
            retained_keys.remove(reference.key)
            drained += 1

    def empty(self) -> bool:
        return self._queue.empty()
