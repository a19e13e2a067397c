"""
Per-Key Lock Registry

Serializes stage advances for the same case inside one process. Locks are
created on demand and dropped once no thread holds or waits on them.
Cross-process safety comes from the compare-and-set status update and the
completed-stage unique index, not from these locks.
"""
import threading
from contextlib import contextmanager
from typing import Dict, List


# Key held while linking reports to scammer profiles
SCAMMER_RESOLUTION_KEY = "__scammer_resolution__"


class KeyedLockRegistry:

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # key -> [lock, holders+waiters]

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            slot = self._locks.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1
        slot[0].acquire()
        try:
            yield
        finally:
            slot[0].release()
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[key]

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)


# Process-wide registry shared by every CaseService instance
case_locks = KeyedLockRegistry()
