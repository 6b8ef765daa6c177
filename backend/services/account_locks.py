"""Per-account mutual exclusion for ledger writes."""

import logging
import threading
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class AccountLockRegistry:
    """Hands out one re-entrant lock per account id.

    Reconstruction, sells and rollbacks for the same account run one at a
    time; different accounts proceed in parallel. Locks are re-entrant so a
    sell can trigger a reconstruction while already holding its account.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._holders: dict[str, int] = {}

    def _lock_for(self, account_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[account_id] = lock
            return lock

    @contextmanager
    def hold(self, account_id: str):
        """Block until the account's lock is held, release on exit."""
        lock = self._lock_for(account_id)
        lock.acquire()
        with self._guard:
            self._holders[account_id] = self._holders.get(account_id, 0) + 1
        try:
            yield
        finally:
            with self._guard:
                self._holders[account_id] -= 1
                if not self._holders[account_id]:
                    del self._holders[account_id]
            lock.release()

    def is_locked(self, account_id: str) -> bool:
        with self._guard:
            return account_id in self._holders


_registry = AccountLockRegistry()


def get_account_locks() -> AccountLockRegistry:
    """Process-wide registry shared by API requests and background sweeps."""
    return _registry
