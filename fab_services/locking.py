"""
Per-key mutual exclusion for the stock ledger.

Consumption of one stock key must read, plan and write without another
consumer of the same key interleaving; different keys proceed in parallel.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterable, Iterator
from contextlib import ExitStack, contextmanager


class KeyedLocks:
    """
    One re-entrant lock per key, created on first use.

    Locks are kept for the life of the registry; the number of distinct
    stock keys is small and bounded by the catalogue.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.RLock] = {}

    def lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self.lock_for(key):
            yield

    @contextmanager
    def hold_all(self, keys: Iterable[Hashable]) -> Iterator[None]:
        """Hold several keys at once, acquired in a stable order."""
        with ExitStack() as stack:
            for key in sorted(set(keys), key=repr):
                stack.enter_context(self.lock_for(key))
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
