"""
Clock abstraction used by the scheduler and executors.

The scheduler never calls ``datetime.now()`` or ``time.sleep()`` directly.
Everything goes through a ``Clock`` so that tests can freeze and advance time
deterministically with ``FrozenClock``.

The clock's time zone (``clock.now().tzinfo``) is the default time zone of
every job that does not declare its own.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of the current time and of sleeping."""

    def now(self) -> datetime:
        """Current time as a timezone-aware datetime."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block for the given number of seconds."""
        ...


class SystemClock:
    """Wall clock.

    Args:
        tz: Time zone of ``now()``. Defaults to the machine's local zone.
    """

    def __init__(self, tz: tzinfo | None = None) -> None:
        self.tz = tz

    def now(self) -> datetime:
        if self.tz is None:
            return datetime.now().astimezone()
        return datetime.now(self.tz)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def __repr__(self) -> str:
        return f"SystemClock(tz={self.tz!r})"


class FrozenClock:
    """Clock that only moves when told to.

    ``sleep()`` advances the frozen time instead of blocking, and every
    requested sleep is recorded in ``sleeps``.

    Example:
        >>> clock = FrozenClock(datetime(2024, 1, 1, 12, 0, tzinfo=UTC))
        >>> clock.move(1.5)
        >>> clock.now().second
        1
    """

    def __init__(self, start: datetime | float, tz: tzinfo = UTC) -> None:
        if isinstance(start, datetime):
            if start.tzinfo is None:
                start = start.replace(tzinfo=tz)
            self._now = start
        else:
            self._now = datetime.fromtimestamp(start, tz)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def move(self, seconds: float) -> None:
        """Advance (or rewind, for negative values) the clock."""
        self._now = self._now + timedelta(seconds=seconds)

    def set(self, moment: datetime) -> None:
        self._now = moment

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.move(seconds)

    def __repr__(self) -> str:
        return f"FrozenClock({self._now.isoformat()})"


__all__ = ["Clock", "FrozenClock", "SystemClock"]
