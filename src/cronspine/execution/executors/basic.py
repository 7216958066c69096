"""Basic Executor — in-process, second by second.

Manifesto:
Most schedules are a handful of short jobs. Running them in the scheduler's
own process keeps the setup trivial: no subprocesses, no serialization.
Sub-minute repeats are honored by stepping through virtual seconds and
sleeping out the rest of each second.

ARCHITECTURE
────────────
::

    for second in 0..last populated second:
        mark = clock.now()
        for job in jobs_by_second[second]:        (registration order)
            yield run_callback(id, schedule, second)
        if second != last:
            clock.sleep(max(0, 1 - (clock.now() - mark)))

A second whose jobs took longer than one second is followed immediately by
the next one. Seconds are never skipped and never repeated to catch up.

Tags:
    cronspine, execution, executor, in-process

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import datetime

from cronspine.core.clock import Clock
from cronspine.core.errors import RunFailure
from cronspine.execution.executors.protocol import AfterRunCallback, JobsBySecond
from cronspine.scheduling.job import JobSchedule
from cronspine.scheduling.status import JobId, JobSummary, RunSummary

#: ``(id, schedule, second) -> (summary, unhandled error or None)``
RunCallback = Callable[[JobId, JobSchedule, int], tuple[JobSummary, BaseException | None]]


class BasicJobExecutor:
    """Runs due jobs in the current process.

    Args:
        clock: Time source, also used for sleeping between seconds.
        run_callback: Executes one job attempt, normally the scheduler's
            lock-guarded runner.
    """

    def __init__(self, clock: Clock, run_callback: RunCallback) -> None:
        self.clock = clock
        self.run_callback = run_callback

    def run_jobs(
        self,
        jobs_by_second: JobsBySecond,
        run_start: datetime,
        after_run: AfterRunCallback,
    ) -> Generator[JobSummary, None, RunSummary]:
        last_second = max(jobs_by_second, default=0)
        summaries: list[JobSummary] = []
        errors: list[BaseException] = []

        for second in range(last_second + 1):
            second_started = self.clock.now()

            for job_id, schedule in jobs_by_second.get(second, []):
                summary, error = self.run_callback(job_id, schedule, second)
                summaries.append(summary)
                if error is not None:
                    errors.append(error)
                yield summary

            if second != last_second:
                elapsed = (self.clock.now() - second_started).total_seconds()
                self.clock.sleep(max(0.0, 1.0 - elapsed))

        run_summary = RunSummary(run_start, self.clock.now(), summaries)
        after_run(run_summary)

        if errors:
            raise RunFailure(run_summary, errors)
        return run_summary


__all__ = ["BasicJobExecutor", "RunCallback"]
