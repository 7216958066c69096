"""JobExecutor Protocol — how the due jobs of one run get executed.

Manifesto:
The scheduler decides *what* runs (the due set, grouped by virtual second)
and guards each attempt with a lock. Executors decide *how*: stepping
through the seconds in-process, or spawning one subprocess per job.

ARCHITECTURE
────────────
::

    JobExecutor (Protocol)
      └── .run_jobs(jobs_by_second, run_start, after_run)
              -> Generator[JobSummary, None, RunSummary]

    Implementations:
      BasicJobExecutor    ─ in-process, second by second
      ProcessJobExecutor  ─ one subprocess per job, JSON result protocol

The returned generator is lazy and finite. Each ``next()`` yields one
JobSummary. Exhausting it returns the RunSummary (``StopIteration.value``)
or raises :class:`~cronspine.core.errors.RunFailure` when any job error was
not absorbed by an error handler. ``after_run`` is invoked with the
RunSummary in both cases, before the failure is raised.

Tags:
    cronspine, execution, executor, protocol

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import datetime
from typing import Protocol, runtime_checkable

from cronspine.scheduling.job import JobSchedule
from cronspine.scheduling.status import JobId, JobSummary, RunSummary

#: Due jobs keyed by the virtual second they run at, in registration order.
JobsBySecond = dict[int, list[tuple[JobId, JobSchedule]]]

AfterRunCallback = Callable[[RunSummary], None]


@runtime_checkable
class JobExecutor(Protocol):
    def run_jobs(
        self,
        jobs_by_second: JobsBySecond,
        run_start: datetime,
        after_run: AfterRunCallback,
    ) -> Generator[JobSummary, None, RunSummary]:
        ...


__all__ = ["AfterRunCallback", "JobExecutor", "JobsBySecond"]
