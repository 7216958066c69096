"""
cronspine - cron-driven job scheduler.

Jobs are registered with a cron expression, an optional sub-minute repeat
interval and an optional time zone. Every run resolves the jobs due at that
instant and executes them, in-process or as parallel subprocesses, each one
guarded by a lock so that no job ever runs twice at once.

Quick start::

    from cronspine import CallbackJob, SimpleScheduler

    scheduler = SimpleScheduler()
    scheduler.add_job(CallbackJob(send_digest), "0 8 * * *", time_zone="Europe/Prague")
    scheduler.add_job(CallbackJob(poll_queue), "* * * * *", repeat_after_seconds=10)

    # crontab: * * * * * cronspine --app myproject.schedule:scheduler run
"""

__version__ = "0.1.0"

from cronspine.core.clock import Clock, FrozenClock, SystemClock
from cronspine.core.cron import CronExpression
from cronspine.core.errors import (
    ConfigError,
    InvalidScheduleError,
    JobCommandError,
    JobFailure,
    JobNotFoundError,
    JobProcessFailure,
    RunFailure,
    SchedulerError,
)
from cronspine.scheduling import (
    CallbackJob,
    CallbackJobManager,
    CommandJob,
    InMemoryLockStore,
    Job,
    JobInfo,
    JobLock,
    JobManager,
    JobResult,
    JobResultState,
    JobSchedule,
    JobSummary,
    LockFactory,
    ManagedScheduler,
    PlannedJobInfo,
    RunInfo,
    RunParameters,
    RunSummary,
    SimpleJobManager,
    SimpleScheduler,
    SqliteLockStore,
)
from cronspine.execution.executors import BasicJobExecutor, JobExecutor, ProcessJobExecutor

__all__ = [
    "BasicJobExecutor",
    "CallbackJob",
    "CallbackJobManager",
    "Clock",
    "CommandJob",
    "ConfigError",
    "CronExpression",
    "FrozenClock",
    "InMemoryLockStore",
    "InvalidScheduleError",
    "Job",
    "JobCommandError",
    "JobExecutor",
    "JobFailure",
    "JobInfo",
    "JobLock",
    "JobManager",
    "JobNotFoundError",
    "JobProcessFailure",
    "JobResult",
    "JobResultState",
    "JobSchedule",
    "JobSummary",
    "LockFactory",
    "ManagedScheduler",
    "PlannedJobInfo",
    "ProcessJobExecutor",
    "RunFailure",
    "RunInfo",
    "RunParameters",
    "RunSummary",
    "SchedulerError",
    "SimpleJobManager",
    "SimpleScheduler",
    "SqliteLockStore",
    "SystemClock",
    "__version__",
]
