"""
Per-account lock arena.

Writes for one account are mutually exclusive; accounts never wait on
each other. Locks are re-entrant so a composite operation (revoke then
store) can hold the account lock across both steps. An account's lock
lives only while some thread holds or waits on it, so the arena does not
grow with every account ever touched.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Dict, Iterator, List
import threading


class KeyedLocks:
    def __init__(self):
        self._guard = threading.Lock()
        # account_id -> [lock, number of holders and waiters]
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, account_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(account_id)
            if entry is None:
                entry = self._locks[account_id] = [threading.RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[account_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
