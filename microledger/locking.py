"""
Per-loan mutual exclusion.

Every mutation of a loan's aggregate or its collections runs while holding
that loan's lock. Locks are re-entrant, so an edit that triggers a
reconciliation of the same loan does not deadlock.
"""

import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Optional

from .exceptions import LoanBusy


logger = logging.getLogger("microledger.locking")


class LoanLockRegistry:
    """
    Hands out one re-entrant lock per loan number.

    Locks are held weakly: once no caller references a loan's lock it is
    dropped, and the next request for that loan creates a fresh one.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._locks: "weakref.WeakValueDictionary[str, threading.RLock]" = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def tracked_count(self) -> int:
        """Number of loans that currently have a live lock"""
        return len(self._locks)

    def lock_for(self, loan_number: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(loan_number)
            if lock is None:
                lock = threading.RLock()
                self._locks[loan_number] = lock
            return lock

    @contextmanager
    def hold(self, loan_number: str):
        """
        Hold the loan's lock for the duration of the block.

        Raises:
            LoanBusy: If the configured timeout elapses first
        """
        lock = self.lock_for(loan_number)
        if self.timeout is None:
            acquired = lock.acquire()
        else:
            acquired = lock.acquire(timeout=self.timeout)
        if not acquired:
            logger.warning("Timed out waiting for lock on loan %s", loan_number)
            raise LoanBusy(f"Loan {loan_number} is being modified by another request")
        try:
            yield
        finally:
            lock.release()
