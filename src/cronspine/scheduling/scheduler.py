"""
Scheduler — resolves due jobs and runs them under their locks.

Manifesto:
    A scheduler run is a pure function of "now": capture the run start once,
    ask every schedule's cron expression whether that instant (in the
    schedule's zone) is due, and hand the due set to the executor. Every job
    attempt is wrapped in the same protocol: take the lock or skip, run,
    record the outcome, notify observers, release.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                      ManagedScheduler                         │
        │  job_manager ─ lock_factory ─ executor ─ clock ─ observers    │
        ├──────────────────────────────────────────────────────────────┤
        │  run_promise()                                                │
        │    run_start = clock.now()                                    │
        │    due = [s for s in schedules if s.expression.is_due(        │
        │                run_start in s.time_zone or clock zone)]       │
        │    before_run(RunInfo) ──► executor.run_jobs(by_second, ...)  │
        │                                                               │
        │  _run_one(id, schedule, second)  (per job, per second)        │
        │    lock.acquire() ── no ──► SKIP, locked_job observers        │
        │         │ yes                                                 │
        │    before_job ─► job.run(JobLock) ─► DONE/FAIL ─► after_job   │
        │    error_handler absorbs the error, if configured             │
        │    lock.release()   (always)                                  │
        └──────────────────────────────────────────────────────────────┘

Observer errors are not captured: they propagate out of the run after the
in-flight job's lock has been released.

Examples:
    >>> scheduler = SimpleScheduler()
    >>> scheduler.add_job(CallbackJob(send_digest), "0 8 * * *", time_zone="Europe/Prague")
    0
    >>> summary = scheduler.run()

Tags:
    cronspine, scheduling, cron, locks, observers

Doc-Types:
    - API Reference
    - Architecture Documentation
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import datetime, tzinfo

from cronspine.core.clock import Clock, SystemClock
from cronspine.core.cron import CronExpression
from cronspine.core.errors import JobFailure, JobNotFoundError
from cronspine.core.logging import LogContext, get_logger
from cronspine.core.settings import SchedulerSettings, get_settings
from cronspine.execution.executors.basic import BasicJobExecutor
from cronspine.execution.executors.protocol import JobExecutor, JobsBySecond
from cronspine.scheduling.job import Job, JobLock, JobSchedule
from cronspine.scheduling.locks import LockFactory
from cronspine.scheduling.manager import JobManager, SimpleJobManager, normalize_job_id
from cronspine.scheduling.status import (
    JobId,
    JobInfo,
    JobResult,
    JobResultState,
    JobSummary,
    PlannedJobInfo,
    RunInfo,
    RunParameters,
    RunSummary,
    repeat_seconds,
)

logger = get_logger(__name__)

ErrorHandler = Callable[[BaseException, JobInfo, JobResult], None]


class ManagedScheduler:
    """Scheduler over an externally managed job registry.

    Args:
        job_manager: Registry of job schedules.
        error_handler: Called with ``(error, info, result)`` for every failed
            job. When set, job errors no longer fail the run.
        lock_factory: Source of job locks. Defaults to in-process locks.
        executor: Execution strategy. Defaults to :class:`BasicJobExecutor`.
        clock: Time source. Its zone is the default zone of all jobs.
        settings: Lock namespace and TTL defaults.
    """

    def __init__(
        self,
        job_manager: JobManager,
        *,
        error_handler: ErrorHandler | None = None,
        lock_factory: LockFactory | None = None,
        executor: JobExecutor | None = None,
        clock: Clock | None = None,
        settings: SchedulerSettings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.job_manager = job_manager
        self.error_handler = error_handler
        self.clock = clock or SystemClock()
        self.lock_factory = lock_factory or LockFactory(
            clock=self.clock, default_ttl=self.settings.lock_ttl_seconds
        )
        self.executor = executor or BasicJobExecutor(self.clock, self._run_one)

        self._before_run_callbacks: list[Callable[[RunInfo], None]] = []
        self._after_run_callbacks: list[Callable[[RunSummary], None]] = []
        self._before_job_callbacks: list[Callable[[JobInfo], None]] = []
        self._after_job_callbacks: list[Callable[[JobInfo, JobResult], None]] = []
        self._locked_job_callbacks: list[Callable[[JobInfo, JobResult], None]] = []

    # ------------------------------------------------------------------ #
    # Observers
    # ------------------------------------------------------------------ #

    def add_before_run_callback(self, callback: Callable[[RunInfo], None]) -> None:
        self._before_run_callbacks.append(callback)

    def add_after_run_callback(self, callback: Callable[[RunSummary], None]) -> None:
        self._after_run_callbacks.append(callback)

    def add_before_job_callback(self, callback: Callable[[JobInfo], None]) -> None:
        self._before_job_callbacks.append(callback)

    def add_after_job_callback(self, callback: Callable[[JobInfo, JobResult], None]) -> None:
        self._after_job_callbacks.append(callback)

    def add_locked_job_callback(self, callback: Callable[[JobInfo, JobResult], None]) -> None:
        """Called for every job skipped because its lock was held elsewhere."""
        self._locked_job_callbacks.append(callback)

    # ------------------------------------------------------------------ #
    # Running
    # ------------------------------------------------------------------ #

    def get_schedules(self) -> dict[JobId, JobSchedule]:
        return self.job_manager.get_schedules()

    def run_job(
        self,
        job_id: JobId,
        force: bool = True,
        parameters: RunParameters | None = None,
    ) -> JobSummary | None:
        """Run a single job.

        Args:
            job_id: Id of the job (``"3"`` finds job ``3``).
            force: Run even when the job is not due. With ``force=False`` a
                job that is not due returns ``None`` without taking its lock.
                Sub-minute repeats are ignored by the due check.
            parameters: Virtual second to report, used by job subprocesses.

        Raises:
            JobNotFoundError: no job is registered under ``job_id``.
            JobFailure: the job raised and no error handler absorbed it.
        """
        job_id = normalize_job_id(job_id)
        schedule = self.job_manager.get_schedule(job_id)
        if schedule is None:
            raise JobNotFoundError(job_id)

        parameters = parameters or RunParameters()
        if not force:
            now = self._now(schedule.time_zone)
            if not schedule.expression.is_due(now):
                return None

        summary, error = self._run_one(job_id, schedule, parameters.second)
        if error is not None:
            raise JobFailure(summary, error)
        return summary

    def run_promise(self) -> Generator[JobSummary, None, RunSummary]:
        """Start a run and return its stream of job summaries.

        The due set is resolved and before-run observers are notified right
        away. Jobs execute while the returned generator is consumed; its
        return value is the :class:`RunSummary`. Exhausting it raises
        :class:`RunFailure` when any job error was not absorbed.
        """
        run_start = self.clock.now()
        due = self._due_schedules(run_start)
        logger.debug("scheduler.run_started", run_start=run_start.isoformat(), due=len(due))

        if self._before_run_callbacks:
            info = RunInfo(
                run_start,
                [
                    PlannedJobInfo(
                        job_id,
                        schedule.job.name,
                        schedule.expression.text,
                        schedule.repeat_after_seconds,
                        run_start,
                        schedule.time_zone,
                    )
                    for job_id, schedule in due
                ],
            )
            for callback in self._before_run_callbacks:
                callback(info)

        return self.executor.run_jobs(self._group_by_second(due), run_start, self._finish_run)

    def run(self) -> RunSummary:
        """Run all due jobs to completion.

        Raises:
            RunFailure: carrying the summary and every unabsorbed job error.
        """
        promise = self.run_promise()
        while True:
            try:
                next(promise)
            except StopIteration as stop:
                return stop.value

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _now(self, time_zone: tzinfo | None) -> datetime:
        now = self.clock.now()
        return now.astimezone(time_zone) if time_zone is not None else now

    def _due_schedules(self, run_start: datetime) -> list[tuple[JobId, JobSchedule]]:
        due = []
        for job_id, schedule in self.job_manager.get_schedules().items():
            moment = run_start.astimezone(schedule.time_zone) if schedule.time_zone is not None else run_start
            if schedule.expression.is_due(moment):
                due.append((job_id, schedule))
        return due

    @staticmethod
    def _group_by_second(due: list[tuple[JobId, JobSchedule]]) -> JobsBySecond:
        by_second: JobsBySecond = {}
        for job_id, schedule in due:
            for second in repeat_seconds(schedule.repeat_after_seconds):
                by_second.setdefault(second, []).append((job_id, schedule))
        return dict(sorted(by_second.items()))

    def _finish_run(self, summary: RunSummary) -> None:
        for callback in self._after_run_callbacks:
            callback(summary)

    def _run_one(
        self, job_id: JobId, schedule: JobSchedule, second: int
    ) -> tuple[JobSummary, BaseException | None]:
        """Run one job attempt under its lock. Returns the unabsorbed error, if any."""
        job = schedule.job
        expression = schedule.expression
        info = JobInfo(
            id=job_id,
            name=job.name,
            expression=expression.text,
            repeat_after_seconds=schedule.repeat_after_seconds,
            run_second=second,
            start=self._now(schedule.time_zone),
            time_zone=schedule.time_zone,
        )

        # Logs emitted by the job itself carry the attempt it belongs to
        with LogContext(job_id=job_id, job_name=info.name, run_second=second):
            return self._attempt(info, schedule, job)

    def _attempt(
        self, info: JobInfo, schedule: JobSchedule, job: Job
    ) -> tuple[JobSummary, BaseException | None]:
        job_id = info.id
        expression = schedule.expression
        lock = self.lock_factory.create_lock(f"{self.settings.lock_namespace}{job_id}")
        if not lock.acquire():
            result = JobResult(expression, info.start, JobResultState.SKIP)
            logger.info("scheduler.job_skipped", job_id=job_id, job_name=info.name, lock=lock.name)
            for callback in self._locked_job_callbacks:
                callback(info, result)
            return JobSummary(info, result), None

        try:
            for callback in self._before_job_callbacks:
                callback(info)

            error: BaseException | None = None
            try:
                job.run(JobLock(lock))
            except Exception as e:
                error = e
                logger.debug("job.failed", job_id=job_id, job_name=info.name, error=str(e))

            if lock.is_expired():
                logger.warning(
                    "job.lock_expired",
                    job_id=job_id,
                    job_name=info.name,
                    lock=lock.name,
                    hint="increase the lock TTL or refresh the lock from the job",
                )

            state = JobResultState.FAIL if error is not None else JobResultState.DONE
            result = JobResult(expression, self._now(schedule.time_zone), state)

            for after in self._after_job_callbacks:
                after(info, result)

            if error is not None and self.error_handler is not None:
                self.error_handler(error, info, result)
                error = None

            return JobSummary(info, result), error
        finally:
            lock.release()


class SimpleScheduler(ManagedScheduler):
    """Scheduler owning its own :class:`SimpleJobManager`.

    Example:
        >>> scheduler = SimpleScheduler()
        >>> scheduler.add_job(CallbackJob(rotate_logs), "@daily")
        0
    """

    def __init__(
        self,
        *,
        error_handler: ErrorHandler | None = None,
        lock_factory: LockFactory | None = None,
        executor: JobExecutor | None = None,
        clock: Clock | None = None,
        settings: SchedulerSettings | None = None,
    ) -> None:
        self._manager = SimpleJobManager()
        super().__init__(
            self._manager,
            error_handler=error_handler,
            lock_factory=lock_factory,
            executor=executor,
            clock=clock,
            settings=settings,
        )

    def add_job(
        self,
        job: Job,
        expression: CronExpression | str,
        job_id: JobId | None = None,
        repeat_after_seconds: int = 0,
        time_zone: tzinfo | str | None = None,
    ) -> JobId:
        return self._manager.add_job(job, expression, job_id, repeat_after_seconds, time_zone)

    def add_lazy_job(
        self,
        factory: Callable[[], Job],
        expression: CronExpression | str,
        job_id: JobId | None = None,
        repeat_after_seconds: int = 0,
        time_zone: tzinfo | str | None = None,
    ) -> JobId:
        return self._manager.add_lazy_job(factory, expression, job_id, repeat_after_seconds, time_zone)


__all__ = ["ErrorHandler", "ManagedScheduler", "SimpleScheduler"]
