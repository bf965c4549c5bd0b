"""Per-key mutual exclusion.

A KeyedLock hands out one lock per key and forgets it once no thread holds
or waits for it, so the registry of locks stays proportional to in-flight work.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLock:
    """Registry of reentrant locks keyed by an arbitrary hashable value.

    Example:
        locks = KeyedLock()
        with locks.hold(("apple", "2000000123")):
            ...
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold the lock for key for the duration of the with-block."""
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.users += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]

    def active_keys(self) -> int:
        """Number of keys currently held or awaited."""
        with self._guard:
            return len(self._entries)

    def __repr__(self) -> str:
        return f"KeyedLock(active_keys={self.active_keys()})"
