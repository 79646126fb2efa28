"""
Per-key mutual exclusion.

Projection regeneration holds an account-scoped lock for the whole
delete-then-recreate sequence. Within one process the lock is a mutex keyed
by account id; across processes the row lock taken with SELECT ... FOR UPDATE
on the account serializes writers on databases that support it.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session

from wealthcast.database.models import Account


class KeyedLock:
    """A registry of mutexes, one per key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._users: Dict[Hashable, int] = {}
        self._guard = threading.Lock()

    def active_keys(self) -> int:
        """Number of keys currently held or awaited."""
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold the lock for ``key``; released on every exit path."""
        lock = self._checkout(key)
        try:
            with lock:
                yield
        finally:
            self._checkin(key)


# Shared by every service instance in the process
account_locks = KeyedLock()


def lock_account_row(session: Session, account_id: int) -> Account:
    """Re-read the account row with a row lock held until the transaction ends."""
    return session.execute(
        select(Account)
        .where(Account.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one()
