"""
Test support utilities for cronspine tests.

Test doubles that don't fit as pytest fixtures but are shared across
test modules: recording callbacks, jobs with scripted behaviour and lock
factories simulating contention or expiry.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from cronspine.core.clock import Clock, FrozenClock
from cronspine.scheduling.job import JobLock
from cronspine.scheduling.locks import LockFactory, StoreLock


class CallbackList:
    """Records every call, in order, as ``(tag, args)`` tuples."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    def recorder(self, tag: str) -> Callable[..., None]:
        def record(*args: Any) -> None:
            self.calls.append((tag, args))

        return record

    def tags(self) -> list[str]:
        return [tag for tag, _ in self.calls]


class RecordingJob:
    """Job appending its name and the clock time to a shared list."""

    def __init__(
        self,
        name: str,
        log: list[tuple[str, Any]],
        clock: Clock | None = None,
        duration: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self._name = name
        self.log = log
        self.clock = clock
        self.duration = duration
        self.error = error

    @property
    def name(self) -> str:
        return self._name

    def run(self, lock: JobLock) -> None:
        self.log.append((self._name, self.clock.now() if self.clock is not None else None))
        if self.duration and isinstance(self.clock, FrozenClock):
            self.clock.move(self.duration)
        if self.error is not None:
            raise self.error


class _ExpiredLock(StoreLock):
    def is_expired(self) -> bool:
        return True


class ExpiredLockFactory(LockFactory):
    """Every created lock reports itself as expired."""

    def create_lock(self, name: str, ttl: float | None = None) -> StoreLock:
        return _ExpiredLock(self.store, name, ttl if ttl is not None else self.default_ttl, self.clock)
