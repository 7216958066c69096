"""Scheduling: jobs, schedules, registries, locks, status model and the scheduler.

Manifesto:
    A cron tick must run every due job exactly once, even when runs overlap
    or several hosts share the schedule. Each job attempt is guarded by its
    own lock, and every attempt produces a summary (DONE, FAIL or SKIP) so
    that nothing happens silently.
"""

from .job import CallbackJob, CommandJob, Job, JobLock, JobSchedule
from .locks import InMemoryLockStore, Lock, LockFactory, SqliteLockStore
from .manager import CallbackJobManager, JobManager, SimpleJobManager
from .status import (
    JobInfo,
    JobResult,
    JobResultState,
    JobSummary,
    PlannedJobInfo,
    RunInfo,
    RunParameters,
    RunSummary,
)
from .scheduler import ManagedScheduler, SimpleScheduler

__all__ = [
    "CallbackJob",
    "CallbackJobManager",
    "CommandJob",
    "InMemoryLockStore",
    "Job",
    "JobInfo",
    "JobLock",
    "JobManager",
    "JobResult",
    "JobResultState",
    "JobSchedule",
    "JobSummary",
    "Lock",
    "LockFactory",
    "ManagedScheduler",
    "PlannedJobInfo",
    "RunInfo",
    "RunParameters",
    "RunSummary",
    "SimpleJobManager",
    "SimpleScheduler",
    "SqliteLockStore",
]
