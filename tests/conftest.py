"""
Shared pytest fixtures and configuration for cronspine tests.

This module provides:
- Settings isolation (no ``CRONSPINE_*`` variables leak into tests)
- A frozen clock positioned at the start of a minute
- Schedulers wired to that clock with in-memory locks

Usage:
    Fixtures are auto-discovered by pytest. Simply use them as function
    arguments (pytest injects them automatically).
"""

from __future__ import annotations

import os
from datetime import UTC, datetime

import pytest

from cronspine.core.clock import FrozenClock
from cronspine.core.settings import clear_settings_cache
from cronspine.scheduling.locks import InMemoryLockStore, LockFactory
from cronspine.scheduling.scheduler import SimpleScheduler

#: 2024-01-01 12:00:00 UTC, a Monday, at the start of a minute
START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Drop CRONSPINE_* environment variables and the settings cache."""
    for key in list(os.environ):
        if key.startswith("CRONSPINE_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def lock_store() -> InMemoryLockStore:
    return InMemoryLockStore()


@pytest.fixture
def lock_factory(lock_store, clock) -> LockFactory:
    return LockFactory(lock_store, clock=clock)


@pytest.fixture
def scheduler(clock, lock_factory) -> SimpleScheduler:
    """Empty scheduler on the frozen clock."""
    return SimpleScheduler(clock=clock, lock_factory=lock_factory)
