"""
Run and job status model.

Immutable value objects describing a scheduler run:

    RunInfo ──► PlannedJobInfo*        (forecast, before any job runs)
    JobSummary = JobInfo + JobResult   (one per executed job attempt)
    RunSummary ──► JobSummary*         (after all jobs finished)

``JobInfo``, ``JobResult`` and ``JobSummary`` serialize to plain dicts
(``to_dict`` / ``from_dict``), which is the payload exchanged between the
subprocess executor and the ``run-job --json`` command.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from enum import IntEnum
from typing import Any

from cronspine.core.cron import CronExpression
from cronspine.core.timestamps import format_timestamp, parse_timestamp, parse_zone, zone_name

JobId = int | str

MAX_REPEAT_AFTER_SECONDS = 30


def repeat_seconds(repeat_after_seconds: int) -> list[int]:
    """Virtual seconds of a minute at which a job runs.

    >>> repeat_seconds(0)
    [0]
    >>> repeat_seconds(29)
    [0, 29, 58]
    """
    if repeat_after_seconds == 0:
        return [0]
    return list(range(0, 60, repeat_after_seconds))


def _extended(expression: str, repeat_after_seconds: int) -> str:
    if repeat_after_seconds > 0:
        return f"{expression} / {repeat_after_seconds}"
    return expression


class JobResultState(IntEnum):
    """Outcome of a single job attempt."""

    DONE = 1
    FAIL = 2
    SKIP = 3


@dataclass(frozen=True)
class JobInfo:
    """What was started: the job, its schedule and the start instant.

    ``start`` is expressed in the job's effective time zone. ``time_zone`` is
    only set when the schedule overrides the scheduler's zone.
    """

    id: JobId
    name: str
    expression: str
    repeat_after_seconds: int
    run_second: int
    start: datetime
    time_zone: tzinfo | None = None

    @property
    def extended_expression(self) -> str:
        return _extended(self.expression, self.repeat_after_seconds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "expression": self.expression,
            "repeat_after_seconds": self.repeat_after_seconds,
            "run_second": self.run_second,
            "start": format_timestamp(self.start),
            "time_zone": zone_name(self.time_zone, self.start) if self.time_zone is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobInfo:
        return cls(
            id=data["id"],
            name=data["name"],
            expression=data["expression"],
            repeat_after_seconds=data["repeat_after_seconds"],
            run_second=data["run_second"],
            start=parse_timestamp(data["start"]),
            time_zone=parse_zone(data["time_zone"]) if data.get("time_zone") else None,
        )


@dataclass(frozen=True)
class JobResult:
    """How it ended. For skipped jobs ``end`` equals the job's start."""

    expression: CronExpression
    end: datetime
    state: JobResultState

    def next_run_date(self, nth: int = 0) -> datetime:
        """The ``nth`` run of the job's expression after this result ended."""
        return self.expression.next_run_after(self.end, nth)

    def next_run_dates(self, total: int) -> list[datetime]:
        return self.expression.next_run_dates(self.end, total)

    def to_dict(self) -> dict[str, Any]:
        return {
            "expression": self.expression.text,
            "end": format_timestamp(self.end),
            "state": int(self.state),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], expression: CronExpression | None = None) -> JobResult:
        return cls(
            expression=expression or CronExpression(data["expression"]),
            end=parse_timestamp(data["end"]),
            state=JobResultState(data["state"]),
        )


@dataclass(frozen=True)
class JobSummary:
    info: JobInfo
    result: JobResult

    @property
    def duration(self) -> timedelta:
        return self.result.end - self.info.start

    def to_dict(self) -> dict[str, Any]:
        return {"info": self.info.to_dict(), "result": self.result.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any], expression: CronExpression | None = None) -> JobSummary:
        return cls(
            info=JobInfo.from_dict(data["info"]),
            result=JobResult.from_dict(data["result"], expression),
        )


@dataclass(frozen=True)
class PlannedJobInfo:
    """A due job as announced to before-run observers."""

    id: JobId
    name: str
    expression: str
    repeat_after_seconds: int
    run_start: datetime
    time_zone: tzinfo | None = None

    @property
    def extended_expression(self) -> str:
        return _extended(self.expression, self.repeat_after_seconds)

    @property
    def runs_count_per_minute(self) -> int:
        return len(repeat_seconds(self.repeat_after_seconds))

    @property
    def estimated_start_times(self) -> list[datetime]:
        """Planned starts, assuming every job of the run finishes instantly."""
        start = self.run_start if self.time_zone is None else self.run_start.astimezone(self.time_zone)
        return [start + timedelta(seconds=s) for s in repeat_seconds(self.repeat_after_seconds)]


@dataclass(frozen=True)
class RunInfo:
    start: datetime
    jobs: list[PlannedJobInfo] = field(default_factory=list)


@dataclass(frozen=True)
class RunSummary:
    start: datetime
    end: datetime
    jobs: list[JobSummary] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": format_timestamp(self.start),
            "end": format_timestamp(self.end),
            "jobs": [job.to_dict() for job in self.jobs],
        }


@dataclass(frozen=True)
class RunParameters:
    """Parameters of a single-job run, passed to job subprocesses."""

    second: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.second <= 59:
            raise ValueError(f"second must be within 0..59, got {self.second}")

    def to_dict(self) -> dict[str, Any]:
        return {"second": self.second}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunParameters:
        return cls(second=int(data["second"]))


__all__ = [
    "JobId",
    "JobInfo",
    "JobResult",
    "JobResultState",
    "JobSummary",
    "MAX_REPEAT_AFTER_SECONDS",
    "PlannedJobInfo",
    "RunInfo",
    "RunParameters",
    "RunSummary",
    "repeat_seconds",
]
