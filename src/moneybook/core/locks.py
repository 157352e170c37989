"""
Keyed locks - one critical section per logical key.

The envelope engine locks per (category, month) and the lot ledger per
ticker, so reads never observe half of a fund/move or buy/sell while
unrelated keys proceed independently.
"""

from contextlib import contextmanager
from typing import Dict, Hashable, Iterable
import threading


class KeyedLocks:
    """
    Registry of re-entrant locks created on first use.

    Usage:
        locks = KeyedLocks()
        with locks.hold(("Groceries", "2025-08")):
            ...
        with locks.hold_many([key_a, key_b]):   # sorted to avoid deadlock
            ...
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.RLock] = {}

    def _get(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable):
        lock = self._get(key)
        with lock:
            yield

    @contextmanager
    def hold_many(self, keys: Iterable[Hashable]):
        """Acquire several keys in a stable (sorted, de-duplicated) order."""
        ordered = sorted(set(keys), key=repr)
        acquired = []
        try:
            for key in ordered:
                lock = self._get(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def __len__(self) -> int:
        return len(self._locks)
