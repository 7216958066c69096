"""
Jobs and their schedules.

A job is anything with a ``name`` and a ``run(lock)`` method. Two adapters
cover the common cases:

- :class:`CallbackJob` wraps a Python callable.
- :class:`CommandJob` runs an external command and fails on a non-zero exit.

:class:`JobSchedule` binds a job (or a factory creating it on first use) to a
cron expression, a sub-minute repeat interval and an optional time zone.

Example:
    >>> schedule = JobSchedule(CallbackJob(lambda: None), "*/5 * * * *", repeat_after_seconds=10)
    >>> schedule.expression.text
    '*/5 * * * *'
"""

from __future__ import annotations

import inspect
import shlex
import subprocess
from collections.abc import Callable, Mapping, Sequence
from datetime import tzinfo
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cronspine.core.cron import CronExpression
from cronspine.core.errors import InvalidScheduleError, JobCommandError
from cronspine.core.logging import get_logger
from cronspine.scheduling.locks import Lock
from cronspine.scheduling.status import MAX_REPEAT_AFTER_SECONDS

logger = get_logger(__name__)


class JobLock:
    """The view of its lock a running job gets.

    Long jobs use it to extend the TTL before it runs out. Releasing is left
    to the scheduler.
    """

    def __init__(self, lock: Lock) -> None:
        self._lock = lock

    def is_acquired_by_current_process(self) -> bool:
        return self._lock.is_acquired()

    def is_expired(self) -> bool:
        return self._lock.is_expired()

    def refresh(self, ttl: float | None = None) -> None:
        self._lock.refresh(ttl)

    def remaining_lifetime(self) -> float | None:
        return self._lock.remaining_lifetime()


@runtime_checkable
class Job(Protocol):
    """Unit of work executed by the scheduler."""

    @property
    def name(self) -> str:
        ...

    def run(self, lock: JobLock) -> None:
        ...


def _callable_name(callback: Callable[..., Any]) -> str:
    qualname = getattr(callback, "__qualname__", None)
    if qualname is None:
        return f"{type(callback).__module__}.{type(callback).__qualname__}()"
    if "<lambda>" in qualname or "<locals>" in qualname:
        code = getattr(inspect.unwrap(callback), "__code__", None)
        if code is not None:
            return f"{Path(code.co_filename).name}:{code.co_firstlineno}"
    return f"{callback.__module__}.{qualname}()"


def _accepts_argument(callback: Callable[..., Any]) -> bool:
    try:
        parameters = inspect.signature(callback).parameters.values()
    except (TypeError, ValueError):
        return False
    return any(
        p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL)
        for p in parameters
    )


class CallbackJob:
    """Job running a Python callable.

    The callable receives the :class:`JobLock` when it takes a positional
    argument, otherwise it is called without arguments.

    Args:
        callback: The work to do.
        name: Display name, derived from the callable when omitted
            (``module.qualname()``, or ``file.py:line`` for lambdas and
            nested functions).
    """

    def __init__(self, callback: Callable[..., Any], name: str | None = None) -> None:
        self.callback = callback
        self._name = name or _callable_name(callback)
        self._pass_lock = _accepts_argument(callback)

    @property
    def name(self) -> str:
        return self._name

    def run(self, lock: JobLock) -> None:
        if self._pass_lock:
            self.callback(lock)
        else:
            self.callback()

    def __repr__(self) -> str:
        return f"CallbackJob({self._name!r})"


class CommandJob:
    """Job running an external command.

    Args:
        command: Argument list, or a string split with :func:`shlex.split`.
        lock_ttl: When set, the job lock is refreshed to this TTL (seconds)
            before the command starts.
        cwd: Working directory of the command.
        env: Environment of the command, inherited when ``None``.

    Raises (from ``run``):
        JobCommandError: the command exited with a non-zero code. The error
            carries the exit code and the combined output.
    """

    def __init__(
        self,
        command: Sequence[str] | str,
        *,
        lock_ttl: float | None = None,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.argv:
            raise ValueError("CommandJob requires a non-empty command")
        self.lock_ttl = lock_ttl
        self.cwd = cwd
        self.env = dict(env) if env is not None else None

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)

    @property
    def name(self) -> str:
        return f"command: {self.command_line}"

    def run(self, lock: JobLock) -> None:
        if self.lock_ttl is not None:
            lock.refresh(self.lock_ttl)

        completed = subprocess.run(
            self.argv,
            capture_output=True,
            text=True,
            cwd=self.cwd,
            env=self.env,
            check=False,
        )
        output = completed.stdout + completed.stderr
        if completed.returncode != 0:
            raise JobCommandError(self.command_line, completed.returncode, output)
        logger.debug("command_job.finished", command=self.command_line, output_length=len(output))

    def __repr__(self) -> str:
        return f"CommandJob({self.command_line!r})"


class JobSchedule:
    """A job bound to its timing.

    Args:
        job: The job instance. Use :meth:`create_lazy` to defer creating it.
        expression: Cron expression (string or :class:`CronExpression`).
        repeat_after_seconds: Re-run the job every N seconds within each due
            minute, 0 (default) to run once. At most 30.
        time_zone: Zone the expression is evaluated in, overriding the
            scheduler's clock zone. Accepts IANA names.
    """

    def __init__(
        self,
        job: Job | None,
        expression: CronExpression | str,
        repeat_after_seconds: int = 0,
        time_zone: tzinfo | str | None = None,
        *,
        factory: Callable[[], Job] | None = None,
    ) -> None:
        if (job is None) == (factory is None):
            raise ValueError("JobSchedule requires exactly one of job or factory")
        if (
            isinstance(repeat_after_seconds, bool)
            or not isinstance(repeat_after_seconds, int)
            or not 0 <= repeat_after_seconds <= MAX_REPEAT_AFTER_SECONDS
        ):
            raise InvalidScheduleError(
                f"repeat_after_seconds must be an integer within 0..{MAX_REPEAT_AFTER_SECONDS}, "
                f"got {repeat_after_seconds!r}"
            )
        self._job = job
        self._factory = factory
        self.expression = expression if isinstance(expression, CronExpression) else CronExpression(expression)
        self.repeat_after_seconds = repeat_after_seconds
        self.time_zone = _resolve_zone(time_zone)

    @classmethod
    def create_lazy(
        cls,
        factory: Callable[[], Job],
        expression: CronExpression | str,
        repeat_after_seconds: int = 0,
        time_zone: tzinfo | str | None = None,
    ) -> JobSchedule:
        """Schedule whose job is created by ``factory`` the first time it is needed."""
        return cls(None, expression, repeat_after_seconds, time_zone, factory=factory)

    @property
    def job(self) -> Job:
        if self._job is None:
            self._job = self._factory()
        return self._job

    @property
    def is_lazy(self) -> bool:
        return self._factory is not None

    def __repr__(self) -> str:
        return (
            f"JobSchedule(expression={self.expression.text!r}, "
            f"repeat_after_seconds={self.repeat_after_seconds}, time_zone={self.time_zone!r})"
        )


def _resolve_zone(time_zone: tzinfo | str | None) -> tzinfo | None:
    if time_zone is None or isinstance(time_zone, tzinfo):
        return time_zone
    try:
        return ZoneInfo(time_zone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidScheduleError(f"Unknown time zone {time_zone!r}", cause=e) from e


__all__ = ["CallbackJob", "CommandJob", "Job", "JobLock", "JobSchedule"]
