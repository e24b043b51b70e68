"""Per-key in-process locks.

Each challenge is an independently lockable resource: work on two
different challenges never contends, work on the same challenge is
serialized. Locks are reference-counted and dropped from the registry
once no thread holds or waits on them.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLockRegistry:
    """Registry of re-entrant locks keyed by resource id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._refs: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
                self._refs[key] = 0
            self._refs[key] += 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._refs[key] -= 1
                if self._refs[key] == 0:
                    del self._refs[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
