"""Distributed locks guarding job execution.

Manifesto:
    Two runs of the scheduler (overlapping cron ticks, several hosts, a
    manual ``run-job``) must never execute the same job simultaneously.
    Every job attempt creates its own lock handle named after the job id and
    tries a non-blocking acquire. Losing the race means the job is skipped.
    Locks carry a TTL so that a crashed process cannot block a job forever.

Two stores are provided behind one :class:`LockFactory`:

- :class:`InMemoryLockStore` guards against overlap inside one process.
- :class:`SqliteLockStore` guards against overlap between processes and
  hosts sharing a database file, with INSERT-or-ignore conflict detection.

Tags:
    cronspine, scheduling, distributed-locks, TTL, concurrency

Doc-Types:
    api-reference
"""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable
from uuid import uuid4

from cronspine.core.clock import Clock, SystemClock
from cronspine.core.errors import ErrorCategory, SchedulerError
from cronspine.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TTL = 300.0


class LockConflictError(SchedulerError):
    """The lock is held by someone else and cannot be refreshed."""

    default_category = ErrorCategory.LOCK


@runtime_checkable
class Lock(Protocol):
    """A single named lock handle."""

    name: str

    def acquire(self) -> bool:
        """Try to acquire without blocking. Returns whether it succeeded."""
        ...

    def is_acquired(self) -> bool:
        ...

    def is_expired(self) -> bool:
        ...

    def refresh(self, ttl: float | None = None) -> None:
        ...

    def remaining_lifetime(self) -> float | None:
        """Seconds until expiry, ``None`` when the lock is not held."""
        ...

    def release(self) -> None:
        ...


class LockStore(Protocol):
    """Storage of lock ownership records.

    Times are unix timestamps in seconds.
    """

    def try_acquire(self, key: str, owner: str, now: float, expires_at: float) -> bool:
        ...

    def refresh(self, key: str, owner: str, now: float, expires_at: float) -> bool:
        ...

    def release(self, key: str, owner: str) -> bool:
        ...

    def holder(self, key: str, now: float) -> str | None:
        ...


# =============================================================================
# STORES
# =============================================================================


@dataclass
class _Entry:
    owner: str
    expires_at: float


class InMemoryLockStore:
    """Thread-safe, process-local lock records."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._mutex = threading.Lock()

    def try_acquire(self, key: str, owner: str, now: float, expires_at: float) -> bool:
        with self._mutex:
            entry = self._entries.get(key)
            if entry is not None and entry.owner != owner and entry.expires_at > now:
                return False
            self._entries[key] = _Entry(owner, expires_at)
            return True

    def refresh(self, key: str, owner: str, now: float, expires_at: float) -> bool:
        return self.try_acquire(key, owner, now, expires_at)

    def release(self, key: str, owner: str) -> bool:
        with self._mutex:
            entry = self._entries.get(key)
            if entry is None or entry.owner != owner:
                return False
            del self._entries[key]
            return True

    def holder(self, key: str, now: float) -> str | None:
        with self._mutex:
            entry = self._entries.get(key)
            if entry is None or entry.expires_at <= now:
                return None
            return entry.owner


class SqliteLockStore:
    """Lock records in a SQLite table shared by all processes using the file.

    Example:
        >>> store = SqliteLockStore("/var/lib/myapp/locks.db")
        >>> factory = LockFactory(store)
    """

    def __init__(self, database: str | Path | sqlite3.Connection, table: str = "cronspine_locks") -> None:
        if isinstance(database, sqlite3.Connection):
            self.conn = database
        else:
            self.conn = sqlite3.connect(str(database), timeout=30.0, check_same_thread=False)
        self.table = table
        self._mutex = threading.Lock()
        self.conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                lock_key TEXT PRIMARY KEY,
                locked_by TEXT NOT NULL,
                expires_at REAL NOT NULL
            )
            """
        )
        self.conn.commit()

    def try_acquire(self, key: str, owner: str, now: float, expires_at: float) -> bool:
        with self._mutex:
            # Clean up an expired lock for this key first
            self.conn.execute(
                f"DELETE FROM {self.table} WHERE lock_key = ? AND expires_at <= ?",
                (key, now),
            )
            cursor = self.conn.execute(
                f"INSERT OR IGNORE INTO {self.table} (lock_key, locked_by, expires_at) VALUES (?, ?, ?)",
                (key, owner, expires_at),
            )
            self.conn.commit()
            if cursor.rowcount > 0:
                return True

            # Already ours, just push the expiry
            cursor = self.conn.execute(
                f"UPDATE {self.table} SET expires_at = ? WHERE lock_key = ? AND locked_by = ?",
                (expires_at, key, owner),
            )
            self.conn.commit()
            return cursor.rowcount > 0

    def refresh(self, key: str, owner: str, now: float, expires_at: float) -> bool:
        return self.try_acquire(key, owner, now, expires_at)

    def release(self, key: str, owner: str) -> bool:
        with self._mutex:
            cursor = self.conn.execute(
                f"DELETE FROM {self.table} WHERE lock_key = ? AND locked_by = ?",
                (key, owner),
            )
            self.conn.commit()
            return cursor.rowcount > 0

    def holder(self, key: str, now: float) -> str | None:
        with self._mutex:
            row = self.conn.execute(
                f"SELECT locked_by FROM {self.table} WHERE lock_key = ? AND expires_at > ?",
                (key, now),
            ).fetchone()
        return row[0] if row else None

    def close(self) -> None:
        self.conn.close()


# =============================================================================
# LOCKS
# =============================================================================


class StoreLock:
    """Lock handle backed by a :class:`LockStore`.

    Each handle has its own owner token, so two handles with the same name
    exclude each other even inside one process.
    """

    def __init__(self, store: LockStore, name: str, ttl: float, clock: Clock) -> None:
        self.store = store
        self.name = name
        self.ttl = ttl
        self.clock = clock
        self.owner = uuid4().hex
        self._acquired = False
        self._expires_at = 0.0

    def _now(self) -> float:
        return self.clock.now().timestamp()

    def acquire(self) -> bool:
        now = self._now()
        expires_at = now + self.ttl
        if not self.store.try_acquire(self.name, self.owner, now, expires_at):
            logger.debug("lock.conflict", lock=self.name)
            return False
        self._acquired = True
        self._expires_at = expires_at
        return True

    def is_acquired(self) -> bool:
        return self._acquired and self.store.holder(self.name, self._now()) == self.owner

    def is_expired(self) -> bool:
        return self._acquired and self._expires_at <= self._now()

    def refresh(self, ttl: float | None = None) -> None:
        if ttl is not None:
            self.ttl = ttl
        now = self._now()
        expires_at = now + self.ttl
        if not self.store.refresh(self.name, self.owner, now, expires_at):
            raise LockConflictError(f"Lock {self.name!r} is held by another owner")
        self._acquired = True
        self._expires_at = expires_at

    def remaining_lifetime(self) -> float | None:
        if not self._acquired:
            return None
        return self._expires_at - self._now()

    def release(self) -> None:
        if self._acquired:
            self.store.release(self.name, self.owner)
            self._acquired = False

    def __repr__(self) -> str:
        return f"StoreLock({self.name!r}, acquired={self._acquired})"


class LockFactory:
    """Creates lock handles over a shared store.

    Args:
        store: Lock records, defaults to a fresh :class:`InMemoryLockStore`.
        clock: Time source for TTL computations.
        default_ttl: TTL in seconds when ``create_lock`` gets none.
    """

    def __init__(
        self,
        store: LockStore | None = None,
        clock: Clock | None = None,
        default_ttl: float = DEFAULT_TTL,
    ) -> None:
        self.store = store if store is not None else InMemoryLockStore()
        self.clock = clock or SystemClock()
        self.default_ttl = default_ttl

    def create_lock(self, name: str, ttl: float | None = None) -> StoreLock:
        return StoreLock(self.store, name, ttl if ttl is not None else self.default_ttl, self.clock)


__all__ = [
    "DEFAULT_TTL",
    "InMemoryLockStore",
    "Lock",
    "LockConflictError",
    "LockFactory",
    "LockStore",
    "SqliteLockStore",
    "StoreLock",
]
