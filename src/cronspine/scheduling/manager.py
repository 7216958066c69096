"""
Job registries.

A job manager maps job ids to schedules. Ids are either given by the caller
or assigned like array keys: the next integer after the largest integer id,
starting at 0. Strings holding a canonical integer (``"3"``) are the same
id as the integer, so ``run-job 3`` on the command line finds job ``3``.

- :class:`SimpleJobManager` accepts both job instances and lazy factories.
- :class:`CallbackJobManager` accepts only factories, so no job is built
  before it is actually due.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import tzinfo
from typing import Protocol, runtime_checkable

from cronspine.core.cron import CronExpression
from cronspine.core.errors import ConfigError
from cronspine.scheduling.job import Job, JobSchedule
from cronspine.scheduling.status import JobId

_CANONICAL_INT_RE = re.compile(r"^(0|-?[1-9][0-9]*)$")


def normalize_job_id(job_id: JobId) -> JobId:
    """``"12"`` -> ``12``, every other string is kept as-is."""
    if isinstance(job_id, bool) or not isinstance(job_id, (int, str)):
        raise ConfigError(f"Job id must be int or str, got {type(job_id).__name__}")
    if isinstance(job_id, str) and _CANONICAL_INT_RE.match(job_id):
        return int(job_id)
    return job_id


@runtime_checkable
class JobManager(Protocol):
    def get_schedule(self, job_id: JobId) -> JobSchedule | None:
        ...

    def get_schedules(self) -> dict[JobId, JobSchedule]:
        """All schedules in registration order."""
        ...


class _ScheduleRegistry:
    def __init__(self) -> None:
        self._schedules: dict[JobId, JobSchedule] = {}

    def _register(self, schedule: JobSchedule, job_id: JobId | None) -> JobId:
        if job_id is None:
            job_id = max((k for k in self._schedules if isinstance(k, int)), default=-1) + 1
        else:
            job_id = normalize_job_id(job_id)
            if job_id in self._schedules:
                raise ConfigError(f"Job with id {job_id!r} is already registered")
        self._schedules[job_id] = schedule
        return job_id

    def get_schedule(self, job_id: JobId) -> JobSchedule | None:
        return self._schedules.get(normalize_job_id(job_id))

    def get_schedules(self) -> dict[JobId, JobSchedule]:
        return dict(self._schedules)

    def __len__(self) -> int:
        return len(self._schedules)


class SimpleJobManager(_ScheduleRegistry):
    """Registry of eager and lazy schedules.

    Example:
        >>> manager = SimpleJobManager()
        >>> manager.add_job(CallbackJob(cleanup), "0 * * * *")
        0
        >>> manager.add_lazy_job(make_report_job, "@daily", job_id="report")
        'report'
    """

    def add_job(
        self,
        job: Job,
        expression: CronExpression | str,
        job_id: JobId | None = None,
        repeat_after_seconds: int = 0,
        time_zone: tzinfo | str | None = None,
    ) -> JobId:
        """Register a job instance. Returns the id it was stored under."""
        return self._register(JobSchedule(job, expression, repeat_after_seconds, time_zone), job_id)

    def add_lazy_job(
        self,
        factory: Callable[[], Job],
        expression: CronExpression | str,
        job_id: JobId | None = None,
        repeat_after_seconds: int = 0,
        time_zone: tzinfo | str | None = None,
    ) -> JobId:
        """Register a factory called once, the first time the job is needed."""
        schedule = JobSchedule.create_lazy(factory, expression, repeat_after_seconds, time_zone)
        return self._register(schedule, job_id)


class CallbackJobManager(_ScheduleRegistry):
    """Registry where every job is created by a factory."""

    def add_job(
        self,
        factory: Callable[[], Job],
        expression: CronExpression | str,
        job_id: JobId | None = None,
        repeat_after_seconds: int = 0,
        time_zone: tzinfo | str | None = None,
    ) -> JobId:
        schedule = JobSchedule.create_lazy(factory, expression, repeat_after_seconds, time_zone)
        return self._register(schedule, job_id)


__all__ = ["CallbackJobManager", "JobManager", "SimpleJobManager", "normalize_job_id"]
