"""
In-process mutual exclusion keyed by arbitrary hashable values.

A DuckDB database file can only be opened for writing by one process, so a
lock held here covers every writer of that file.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class KeyedLock:
    """
    Hands out one ``threading.Lock`` per key.

    Each entry counts the threads holding or waiting on it and is dropped
    when the count returns to zero, so the map only holds keys in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, List] = {}

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._entries[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self._checkout(key)
        try:
            with lock:
                yield
        finally:
            self._checkin(key)

    def try_hold(self, key: Hashable) -> bool:
        """Acquire without blocking; the caller must ``release`` on success"""
        lock = self._checkout(key)
        if lock.acquire(blocking=False):
            return True
        self._checkin(key)
        return False

    def release(self, key: Hashable) -> None:
        with self._guard:
            entry = self._entries.get(key)
        if entry is None:
            raise RuntimeError(f"Lock for {key!r} is not held")
        entry[0].release()
        self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


# Shared by every DuckDBStorage in the process
submission_locks = KeyedLock()
rating_locks = KeyedLock()
