"""Scheduler worker — triggers one scheduler run at the start of every minute.

The worker replaces a system crontab entry. It polls the clock, and when a
new minute begins it starts the ``run`` command as a subprocess. Runs may
overlap when one takes longer than a minute; the job locks keep individual
jobs from overlapping.

Usage (programmatic)::

    from cronspine.execution.worker import SchedulerWorker

    worker = SchedulerWorker(app="myproject.schedule:scheduler")
    worker.start()  # blocks until SIGINT or SIGTERM

Usage (CLI)::

    cronspine --app myproject.schedule:scheduler worker
"""

from __future__ import annotations

import signal
import subprocess
import sys
import threading
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from pathlib import Path
from types import FrameType

from cronspine.core.clock import Clock, SystemClock
from cronspine.core.errors import ConfigError
from cronspine.core.logging import get_logger
from cronspine.core.settings import SchedulerSettings, get_settings

logger = get_logger(__name__)


def _minute(moment: datetime) -> datetime:
    return moment.replace(second=0, microsecond=0)


class SchedulerWorker:
    """Starts the scheduler ``run`` command once per minute.

    Args:
        app: Scheduler reference passed to ``cronspine --app APP run``.
        command: Full command replacing the default one.
        clock: Time source.
        poll_interval: Seconds between clock checks.
        cwd: Working directory of the runs.
        env: Environment of the runs, inherited when ``None``.

    Run subprocesses inherit the worker's stdout and stderr.
    """

    def __init__(
        self,
        app: str | None = None,
        *,
        command: Sequence[str] | None = None,
        clock: Clock | None = None,
        poll_interval: float | None = None,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        settings: SchedulerSettings | None = None,
    ) -> None:
        settings = settings or get_settings()
        app = app or settings.app
        if command is not None:
            self.command = list(command)
        elif app:
            self.command = [sys.executable, "-m", "cronspine", "--app", app, "run"]
        else:
            raise ConfigError("SchedulerWorker needs app= (or CRONSPINE_APP) or command=")
        self.clock = clock or SystemClock()
        self.poll_interval = poll_interval if poll_interval is not None else settings.worker_poll_interval
        self.cwd = cwd
        self.env = dict(env) if env is not None else None
        self.runs_started = 0
        self._processes: list[subprocess.Popen] = []
        self._shutdown = threading.Event()

    def start(self, max_runs: int | None = None) -> None:
        """Run the loop (blocking).

        Args:
            max_runs: Stop after this many runs were started and finished.
                ``None`` runs until :meth:`stop` or SIGINT / SIGTERM.
        """
        logger.info("worker.starting", command=self.command, poll_interval=self.poll_interval)

        previous_handlers = {}
        try:
            for signum in (signal.SIGINT, signal.SIGTERM):
                previous_handlers[signum] = signal.signal(signum, self._handle_signal)
        except ValueError:
            logger.debug("worker.signals_not_installed")  # not in main thread

        last_minute = _minute(self.clock.now() - timedelta(minutes=1))
        try:
            while not self._shutdown.is_set():
                now = self.clock.now()
                limit_reached = max_runs is not None and self.runs_started >= max_runs
                if now.second == 0 and _minute(now) != last_minute and not limit_reached:
                    self._spawn()
                    last_minute = _minute(now)

                self._processes = [p for p in self._processes if p.poll() is None]
                if max_runs is not None and self.runs_started >= max_runs and not self._processes:
                    break

                self.clock.sleep(self.poll_interval)
        finally:
            for process in self._processes:
                process.wait()
            for signum, handler in previous_handlers.items():
                if handler is not None:
                    signal.signal(signum, handler)
            logger.info("worker.stopped", runs_started=self.runs_started)

    def stop(self) -> None:
        """Request shutdown. Runs already started are waited for."""
        self._shutdown.set()

    def _spawn(self) -> None:
        process = subprocess.Popen(self.command, cwd=self.cwd, env=self.env)
        self._processes.append(process)
        self.runs_started += 1
        logger.info("worker.run_started", pid=process.pid, run=self.runs_started)

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        logger.info("worker.signal_received", signal=signum)
        self.stop()


__all__ = ["SchedulerWorker"]
