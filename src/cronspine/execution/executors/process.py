"""Process Executor — one subprocess per due job.

Manifesto:
Jobs that block, leak memory or simply take long should not hold up the
rest of the minute. ``ProcessJobExecutor`` starts every due job as its own
``cronspine run-job <id> --json`` process, lets them run in parallel and
rebuilds each JobSummary from the JSON the child prints on stdout.

ARCHITECTURE
────────────
::

    parent                                   child (per job, per second)
    ──────                                   ───────────────────────────
    second N reached ──► Popen(run-job ID --json --parameters {"second": N})
    poll() every poll_interval                   scheduler.run_job(ID)
    stdout (temp file) ◄──────────────────────── {"info": .., "result": ..,
    JobSummary.from_dict(payload)                  "stdout": .., "error": ..}

- Stdout and stderr go to temporary files, so a chatty job can never
  block on a full pipe.
- Summaries are yielded in completion order.
- Output that is not a JSON object is a ``JobProcessFailure`` with no
  summary. A payload reporting ``"error"`` yields its summary *and*
  records a ``JobProcessFailure``.
- Stderr is not a failure by itself (child logs go there). It is attached
  to failures for diagnostics.

Tags:
    cronspine, execution, executor, subprocess, parallel

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
import math
import shlex
import subprocess
import sys
import tempfile
from collections.abc import Generator, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import IO

from cronspine.core.clock import Clock, SystemClock
from cronspine.core.errors import ConfigError, JobProcessFailure, RunFailure
from cronspine.core.logging import get_logger
from cronspine.core.settings import SchedulerSettings, get_settings
from cronspine.execution.executors.protocol import AfterRunCallback, JobsBySecond
from cronspine.scheduling.job import JobSchedule
from cronspine.scheduling.status import JobId, JobSummary, RunParameters, RunSummary

logger = get_logger(__name__)


@dataclass
class _Execution:
    job_id: JobId
    schedule: JobSchedule
    argv: list[str]
    process: subprocess.Popen
    stdout: IO[bytes]
    stderr: IO[bytes]

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)

    def read_output(self) -> tuple[str, str]:
        outputs = []
        for stream in (self.stdout, self.stderr):
            stream.seek(0)
            outputs.append(stream.read().decode("utf-8", errors="replace"))
            stream.close()
        return outputs[0], outputs[1]

    def kill(self) -> None:
        if self.process.poll() is None:
            self.process.kill()
            self.process.wait()
        self.stdout.close()
        self.stderr.close()


class ProcessJobExecutor:
    """Runs each due job in a separate ``run-job`` subprocess.

    Args:
        clock: Time source for second scheduling and polling.
        app: Scheduler reference handed to the child (``--app``),
            defaults to ``CRONSPINE_APP``.
        command: Full command prefix up to and including ``run-job``,
            replacing the default ``python -m cronspine --app APP run-job``.
        poll_interval: Seconds between polls of running children.
        cwd: Working directory of the children.
        env: Environment of the children, inherited when ``None``.

    Example:
        >>> executor = ProcessJobExecutor(app="myproject.schedule:scheduler")
        >>> scheduler = SimpleScheduler(executor=executor)
    """

    def __init__(
        self,
        clock: Clock | None = None,
        *,
        app: str | None = None,
        command: Sequence[str] | None = None,
        poll_interval: float | None = None,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        settings: SchedulerSettings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.app = app or settings.app
        self.poll_interval = poll_interval if poll_interval is not None else settings.process_poll_interval
        self.cwd = cwd
        self.env = dict(env) if env is not None else None
        self._command = list(command) if command is not None else None

    def set_executable(self, command: Sequence[str]) -> None:
        """Replace the command prefix used to start a single job."""
        self._command = list(command)

    def set_default_app(self, app: str) -> None:
        """Use ``app`` for the children unless an app or a command is already set.

        The CLI calls this with its ``--app`` reference, so a scheduler file
        can build ``ProcessJobExecutor()`` without repeating its own location.
        """
        if self.app is None and self._command is None:
            self.app = app

    def job_command(self, job_id: JobId, parameters: RunParameters) -> list[str]:
        if self._command is not None:
            prefix = list(self._command)
        elif self.app:
            prefix = [sys.executable, "-m", "cronspine", "--app", self.app, "run-job"]
        else:
            raise ConfigError(
                "ProcessJobExecutor needs to know how to start a job: pass app= "
                "(or set CRONSPINE_APP) or command="
            )
        return prefix + [str(job_id), "--json", "--parameters", json.dumps(parameters.to_dict())]

    def run_jobs(
        self,
        jobs_by_second: JobsBySecond,
        run_start: datetime,
        after_run: AfterRunCallback,
    ) -> Generator[JobSummary, None, RunSummary]:
        pending = {second: list(jobs) for second, jobs in jobs_by_second.items() if jobs}
        running: list[_Execution] = []
        summaries: list[JobSummary] = []
        errors: list[BaseException] = []
        last_started = -1

        try:
            while running or pending:
                if pending:
                    due_second = math.floor((self.clock.now() - run_start).total_seconds())
                    while pending and last_started < due_second:
                        last_started += 1
                        for job_id, schedule in pending.pop(last_started, []):
                            running.append(self._start(job_id, schedule, RunParameters(last_started)))

                for execution in [e for e in running if e.process.poll() is not None]:
                    running.remove(execution)
                    summary, error = self._collect(execution)
                    if error is not None:
                        errors.append(error)
                    if summary is not None:
                        summaries.append(summary)
                        yield summary

                if running or pending:
                    self.clock.sleep(self.poll_interval)
        finally:
            for execution in running:
                execution.kill()

        run_summary = RunSummary(run_start, self.clock.now(), summaries)
        after_run(run_summary)

        if errors:
            raise RunFailure(run_summary, errors)
        return run_summary

    def _start(self, job_id: JobId, schedule: JobSchedule, parameters: RunParameters) -> _Execution:
        argv = self.job_command(job_id, parameters)
        stdout = tempfile.TemporaryFile()
        stderr = tempfile.TemporaryFile()
        process = subprocess.Popen(argv, stdout=stdout, stderr=stderr, cwd=self.cwd, env=self.env)
        logger.debug("process_executor.started", job_id=job_id, second=parameters.second, pid=process.pid)
        return _Execution(job_id, schedule, argv, process, stdout, stderr)

    def _collect(self, execution: _Execution) -> tuple[JobSummary | None, BaseException | None]:
        stdout, stderr = execution.read_output()
        command = execution.command_line

        try:
            payload = json.loads(stdout)
            if not isinstance(payload, dict):
                raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
            summary = JobSummary.from_dict(payload, execution.schedule.expression)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(
                "process_executor.invalid_output",
                job_id=execution.job_id,
                exit_code=execution.process.returncode,
            )
            return None, JobProcessFailure(command, stdout, stderr, problem="job subprocess failed", cause=e)

        job_stdout = payload.get("stdout") or ""
        if job_stdout:
            logger.warning("process_executor.unexpected_stdout", job_id=execution.job_id, stdout=job_stdout)

        error = None
        if payload.get("error"):
            error = JobProcessFailure(command, stdout, stderr, problem=f"job failed: {payload['error']}")
        return summary, error


__all__ = ["ProcessJobExecutor"]
