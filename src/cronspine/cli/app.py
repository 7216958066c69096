"""
Root Typer application for the cronspine CLI.

Every command works on the scheduler named by ``--app`` (or
``CRONSPINE_APP``): ``module:attribute`` or ``path/to/file.py:attribute``.

    cronspine --app myproject.schedule:scheduler list --next
    cronspine --app myproject.schedule:scheduler run
    cronspine --app myproject.schedule:scheduler run-job 3 --no-force
    cronspine --app myproject.schedule:scheduler worker

``run-job --json`` is also the child side of the subprocess executor: it
prints exactly one JSON document on stdout. Logs always go to stderr.
"""

from __future__ import annotations

import contextlib
import io
import json
import shlex

import typer
from typer import Typer

from cronspine import __version__
from cronspine.cli.utils import (
    console,
    print_error,
    relative_time,
    render_job,
    require_scheduler,
)
from cronspine.core.errors import ConfigError, JobFailure, RunFailure, SchedulerError
from cronspine.core.logging import configure_logging
from cronspine.core.settings import get_settings
from cronspine.core.timestamps import format_timestamp
from cronspine.scheduling.status import JobResultState, JobSummary, RunParameters

app = Typer(
    name="cronspine",
    help="cronspine — cron-driven job scheduler.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Root options ─────────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("cronspine")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"cronspine {v}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    app_ref: str | None = typer.Option(
        None,
        "--app",
        "-a",
        help="Scheduler reference, 'module:attribute' or 'path/to/file.py:attribute'.",
    ),
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """cronspine CLI — list, run and serve scheduled jobs."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json")
    ctx.obj = {"app": app_ref or settings.app}


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("list")
def list_jobs(
    ctx: typer.Context,
    next_: bool = typer.Option(False, "--next", "-n", help="Sort jobs by their next execution time."),
    limit: int | None = typer.Option(None, "--limit", min=1, help="Show only the first N jobs."),  # noqa: UP007
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List all scheduled jobs."""
    scheduler = require_scheduler(ctx.obj["app"])
    now = scheduler.clock.now()

    rows = []
    for job_id, schedule in scheduler.get_schedules().items():
        local_now = now.astimezone(schedule.time_zone) if schedule.time_zone is not None else now
        rows.append((job_id, schedule, schedule.expression.next_run_after(local_now)))

    if next_:
        rows.sort(key=lambda row: row[2])
    else:
        rows.sort(key=lambda row: row[1].job.name)
    if limit is not None:
        rows = rows[:limit]

    if as_json:
        payload = [
            {
                "id": job_id,
                "name": schedule.job.name,
                "expression": schedule.expression.text,
                "repeat_after_seconds": schedule.repeat_after_seconds,
                "time_zone": str(schedule.time_zone) if schedule.time_zone is not None else None,
                "next_run": format_timestamp(next_run),
            }
            for job_id, schedule, next_run in rows
        ]
        typer.echo(json.dumps(payload))
        return

    if not rows:
        console.print("[dim]No scheduled jobs have been defined.[/dim]")
        return

    from rich.table import Table

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID")
    table.add_column("Expression", style="yellow")
    table.add_column("Name")
    table.add_column("Next due")
    for job_id, schedule, next_run in rows:
        expression = schedule.expression.text
        if schedule.repeat_after_seconds:
            expression = f"{expression} / {schedule.repeat_after_seconds}"
        table.add_row(
            str(job_id),
            expression,
            schedule.job.name,
            f"{relative_time(next_run, now)} ({next_run:%Y-%m-%d %H:%M:%S %z})",
        )
    console.print(table)


@app.command("run")
def run(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Output the run summary as JSON."),
) -> None:
    """Run all jobs that are due now."""
    scheduler = require_scheduler(ctx.obj["app"])

    failure: RunFailure | None = None
    summaries: list[JobSummary] = []
    try:
        promise = scheduler.run_promise()
        while True:
            summary = next(promise)
            summaries.append(summary)
            if not as_json:
                console.print(render_job(summary))
    except StopIteration as stop:
        run_summary = stop.value
    except RunFailure as e:
        failure = e
        run_summary = e.summary
    except SchedulerError as e:
        print_error(e)
        raise typer.Exit(code=1) from e

    if as_json:
        typer.echo(json.dumps(run_summary.to_dict()))
    elif not summaries:
        console.print("[dim]No jobs are due.[/dim]")

    if failure is not None:
        for error in failure.suppressed:
            print_error(error)
        raise typer.Exit(code=1)
    if any(s.result.state == JobResultState.FAIL for s in summaries):
        raise typer.Exit(code=1)


@app.command("run-job")
def run_job(
    ctx: typer.Context,
    job_id: str = typer.Argument(..., help="Job ID (see `cronspine list`)."),
    no_force: bool = typer.Option(False, "--no-force", help="Respect the due time instead of forcing the run."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
    parameters: str | None = typer.Option(None, "--parameters", hidden=True),  # noqa: UP007
) -> None:
    """Run a single job, ignoring its scheduled time."""
    scheduler = require_scheduler(ctx.obj["app"])

    try:
        run_parameters = RunParameters.from_dict(json.loads(parameters)) if parameters else None
    except (ValueError, KeyError, TypeError) as e:
        raise typer.BadParameter(f"invalid run parameters {parameters!r}: {e}", param_hint="--parameters") from e

    buffer = io.StringIO()
    failure: JobFailure | None = None
    try:
        with contextlib.redirect_stdout(buffer):
            summary = scheduler.run_job(job_id, force=not no_force, parameters=run_parameters)
    except JobFailure as e:
        failure = e
        summary = e.summary
    except ConfigError as e:
        print_error(e)
        raise typer.Exit(code=1) from e
    stdout = buffer.getvalue()

    if summary is None:
        if as_json:
            typer.echo(json.dumps(None))
        else:
            console.print("[green]Job was not executed because it is not its due time.[/green]")
        return

    if as_json:
        payload = summary.to_dict()
        payload["stdout"] = stdout
        if failure is not None:
            cause = failure.suppressed[0]
            payload["error"] = f"{type(cause).__name__}: {cause}"
        typer.echo(json.dumps(payload))
    else:
        if stdout:
            typer.echo(stdout.rstrip("\n"))
        console.print(render_job(summary))
        if failure is not None:
            print_error(failure.suppressed[0])

    if summary.result.state == JobResultState.FAIL:
        raise typer.Exit(code=1)


@app.command("worker")
def worker(
    ctx: typer.Context,
    command: str | None = typer.Option(  # noqa: UP007
        None,
        "--command",
        "-c",
        help="Command started every minute instead of `cronspine --app APP run`.",
    ),
) -> None:
    """Start the scheduler worker, running due jobs every minute."""
    from cronspine.execution.worker import SchedulerWorker

    try:
        loop = SchedulerWorker(
            ctx.obj["app"],
            command=shlex.split(command) if command else None,
        )
    except ConfigError as e:
        print_error(e)
        raise typer.Exit(code=2) from e

    console.print("[bold green]Running scheduled jobs every minute.[/bold green]")
    try:
        loop.start()
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped by user[/yellow]")
