"""
Structured error types for cronspine.

Every failure the scheduler reports is a ``SchedulerError`` subclass carrying
a category, optional context and the chained underlying exception. Job
failures additionally carry the status objects of the run that produced them,
so callers can inspect what ran even when the run raised.

Manifesto:
    - **Typed Error Hierarchy:** Configuration, job and process errors are
      distinct types.
    - **Nothing is lost:** Aggregate errors keep every suppressed job error
      in execution order together with the run summary.
    - **Error Chaining:** The original exception is kept as ``__cause__``.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                     SchedulerError                        │
        │            (category, context, cause, to_dict)            │
        ├──────────────────────────────────────────────────────────┤
        │  ConfigError (CONFIG)        JobFailure (JOB)             │
        │     │                        RunFailure (JOB)             │
        │  JobNotFoundError            JobCommandError (JOB)        │
        │  InvalidScheduleError        JobProcessFailure (PROCESS)  │
        └──────────────────────────────────────────────────────────┘

Examples:
    >>> error = JobNotFoundError(42)
    >>> error.category
    <ErrorCategory.CONFIG: 'CONFIG'>
    >>> error.job_id
    42

Tags:
    error-handling, exception-hierarchy, scheduler, cronspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cronspine.scheduling.status import JobInfo, JobResult, JobSummary, RunSummary


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CONFIG = "CONFIG"
    JOB = "JOB"
    PROCESS = "PROCESS"
    LOCK = "LOCK"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to a scheduler error."""

    job_id: int | str | None = None
    job_name: str | None = None
    command: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.job_id is not None:
            result["job_id"] = self.job_id
        if self.job_name:
            result["job_name"] = self.job_name
        if self.command:
            result["command"] = self.command
        if self.metadata:
            result["metadata"] = self.metadata
        return result


class SchedulerError(Exception):
    """
    Base class for all cronspine errors.

    Args:
        message: Human-readable description.
        category: Error category, defaults to the class default.
        context: Structured metadata.
        cause: Underlying exception, stored as ``__cause__``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SchedulerError:
        """Add context fields, unknown keys land in ``metadata``."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "context": self.context.to_dict(),
        }
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION
# =============================================================================


class ConfigError(SchedulerError):
    """Invalid scheduler or job configuration."""

    default_category = ErrorCategory.CONFIG


class InvalidScheduleError(ConfigError):
    """Cron expression or repeat interval cannot be used."""


class JobNotFoundError(ConfigError):
    """No job is registered under the requested id."""

    def __init__(self, job_id: int | str, **kwargs: Any) -> None:
        super().__init__(
            f"Job {job_id!r} does not exist. Inspect get_schedules() "
            "or run `cronspine list` to see the registered job ids.",
            context=ErrorContext(job_id=job_id),
            **kwargs,
        )
        self.job_id = job_id


# =============================================================================
# JOB EXECUTION
# =============================================================================


class JobFailure(SchedulerError):
    """A single job run through ``run_job`` raised an error."""

    default_category = ErrorCategory.JOB

    def __init__(self, summary: JobSummary, error: BaseException) -> None:
        super().__init__(
            f"Job {summary.info.name} failed: {error}",
            context=ErrorContext(job_id=summary.info.id, job_name=summary.info.name),
            cause=error,
        )
        self.summary = summary
        self.suppressed: list[BaseException] = [error]

    @property
    def info(self) -> JobInfo:
        return self.summary.info

    @property
    def result(self) -> JobResult:
        return self.summary.result


class RunFailure(SchedulerError):
    """One or more jobs of a run failed without an error handler absorbing them."""

    default_category = ErrorCategory.JOB

    def __init__(self, summary: RunSummary, suppressed: Sequence[BaseException]) -> None:
        errors = list(suppressed)
        lines = [f"Run started at {summary.start.isoformat()} failed with {len(errors)} error(s):"]
        lines.extend(f"  - {type(e).__name__}: {e}" for e in errors)
        super().__init__("\n".join(lines), cause=errors[0] if errors else None)
        self.summary = summary
        self.suppressed = errors


class JobCommandError(SchedulerError):
    """External command job exited with a non-zero status."""

    default_category = ErrorCategory.JOB

    def __init__(self, command: str, exit_code: int, output: str = "") -> None:
        message = f"Command `{command}` exited with code {exit_code}"
        if output.strip():
            message = f"{message}:\n{output.strip()}"
        super().__init__(message, context=ErrorContext(command=command))
        self.command = command
        self.exit_code = exit_code
        self.output = output


class JobProcessFailure(SchedulerError):
    """A job subprocess produced output that is not a valid result payload."""

    default_category = ErrorCategory.PROCESS

    def __init__(
        self,
        command: str,
        stdout: str,
        stderr: str = "",
        *,
        problem: str = "unexpected output",
        cause: BaseException | None = None,
    ) -> None:
        message = f"Job subprocess failed ({problem})\nCommand: {command}\nStdout: {stdout.strip()}"
        if stderr.strip():
            message = f"{message}\nStderr: {stderr.strip()}"
        super().__init__(message, context=ErrorContext(command=command), cause=cause)
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.problem = problem


__all__ = [
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "InvalidScheduleError",
    "JobCommandError",
    "JobFailure",
    "JobNotFoundError",
    "JobProcessFailure",
    "RunFailure",
    "SchedulerError",
]
