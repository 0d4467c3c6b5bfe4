"""
Per-entity lock registry.

Balance-affecting operations on one account are mutually exclusive, while
operations on different accounts proceed in parallel. Locks are reentrant
so a loan release may hold the account lock and still call into the ledger.
Callers that need several locks take them in the order loan, then account.
"""

import threading
import weakref
from contextlib import contextmanager


class AccountLockRegistry:
    """
    Lazily created reentrant lock per key.

    Entries are weak: a lock lives only while some caller holds a reference
    to it, so the registry does not grow with every account ever touched.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, threading.RLock]" = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str):
        """Hold the lock for ``key`` for the duration of the block"""
        lock = self.lock_for(key)
        with lock:
            yield

    @contextmanager
    def hold_loan(self, loan_id: str):
        with self.hold(f"loan:{loan_id}"):
            yield
