"""
CLI utility helpers — scheduler loading and output formatting.
"""

from __future__ import annotations

import importlib
import importlib.util
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape

from cronspine.core.errors import ConfigError, SchedulerError
from cronspine.execution.executors import ProcessJobExecutor
from cronspine.scheduling.scheduler import ManagedScheduler
from cronspine.scheduling.status import JobResultState, JobSummary

console = Console()
err_console = Console(stderr=True)

STATE_STYLES = {
    JobResultState.DONE: "green",
    JobResultState.FAIL: "red",
    JobResultState.SKIP: "yellow",
}


# ── Scheduler loading ────────────────────────────────────────────────────


def _import_target(target: str) -> Any:
    if target.endswith(".py") or "/" in target or "\\" in target:
        path = Path(target).resolve()
        if not path.is_file():
            raise ConfigError(f"Scheduler file {target!r} does not exist")
        module_name = f"_cronspine_app_{path.stem}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ConfigError(f"Cannot load scheduler file {target!r}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
        return module
    try:
        return importlib.import_module(target)
    except ImportError as e:
        raise ConfigError(f"Cannot import scheduler module {target!r}: {e}", cause=e) from e


def load_scheduler(ref: str) -> ManagedScheduler:
    """Resolve ``module:attribute`` or ``path/to/file.py:attribute``.

    The attribute is either a scheduler or a zero-argument callable
    returning one.
    """
    target, sep, attribute = ref.rpartition(":")
    if not sep or not target or not attribute:
        raise ConfigError(f"Invalid scheduler reference {ref!r}, expected 'module:attribute'")

    module = _import_target(target)
    try:
        obj = getattr(module, attribute)
    except AttributeError as e:
        raise ConfigError(f"{target!r} has no attribute {attribute!r}", cause=e) from e

    if not isinstance(obj, ManagedScheduler) and callable(obj):
        obj = obj()
    if not isinstance(obj, ManagedScheduler):
        raise ConfigError(f"{ref!r} is not a scheduler (got {type(obj).__name__})")
    return obj


def require_scheduler(ref: str | None) -> ManagedScheduler:
    """Load the scheduler for a command or exit with an error message."""
    if not ref:
        err_console.print("[bold red]Error[/bold red]: no scheduler given, use --app or CRONSPINE_APP")
        raise typer.Exit(code=2)
    try:
        scheduler = load_scheduler(ref)
    except SchedulerError as e:
        err_console.print(f"[bold red]Error[/bold red]: {escape(e.message)}")
        raise typer.Exit(code=1) from e
    if isinstance(scheduler.executor, ProcessJobExecutor):
        scheduler.executor.set_default_app(ref)
    return scheduler


# ── Output helpers ───────────────────────────────────────────────────────


def render_job(summary: JobSummary, width: int | None = None) -> str:
    """``<start> Running <name> ....... <ms>ms DONE`` as rich markup."""
    info, result = summary.info, summary.result
    start = info.start.strftime("%Y-%m-%d %H:%M:%S")
    runtime = f"{int(summary.duration / timedelta(milliseconds=1)):,}ms"
    status = result.state.name
    width = width or console.width
    dots = "." * max(width - len(f"{start} Running {info.name}{runtime}{status}") - 2, 0)
    style = STATE_STYLES[result.state]
    return (
        f"[grey50]{start}[/grey50] Running {escape(info.name)}[grey42]{dots}[/grey42] "
        f"[grey50]{runtime}[/grey50] [{style}]{status}[/{style}]"
    )


_UNITS = [
    (31_104_000, "year"),
    (2_592_000, "month"),
    (604_800, "week"),
    (86_400, "day"),
    (3_600, "hour"),
    (60, "minute"),
    (1, "second"),
]


def relative_time(moment: datetime, now: datetime) -> str:
    """Largest whole unit between now and moment, e.g. ``in 5 minutes``."""
    diff = int((moment - now).total_seconds())
    for size, unit in _UNITS:
        count = abs(diff) // size
        if count:
            label = f"{count} {unit}{'s' if count > 1 else ''}"
            return f"in {label}" if diff > 0 else f"{label} ago"
    return "now"


def print_error(error: BaseException) -> None:
    message = error.message if isinstance(error, SchedulerError) else str(error)
    err_console.print(f"[bold red]{type(error).__name__}[/bold red]: {escape(message)}")
