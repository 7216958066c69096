"""Tests for ManagedScheduler / SimpleScheduler."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
import structlog
from structlog.testing import capture_logs

from cronspine.core.clock import FrozenClock
from cronspine.core.errors import JobFailure, JobNotFoundError, RunFailure
from cronspine.core.settings import SchedulerSettings
from cronspine.scheduling.job import CallbackJob
from cronspine.scheduling.locks import LockFactory
from cronspine.scheduling.manager import CallbackJobManager
from cronspine.scheduling.scheduler import ManagedScheduler, SimpleScheduler
from cronspine.scheduling.status import JobResultState, RunInfo, RunParameters, RunSummary
from tests._support import CallbackList, ExpiredLockFactory, RecordingJob

START = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
PRAGUE = ZoneInfo("Europe/Prague")


class CountingLockFactory(LockFactory):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.created: list[str] = []

    def create_lock(self, name, ttl=None):
        self.created.append(name)
        return super().create_lock(name, ttl)


class TestDueJobs:
    def test_only_due_jobs_run(self, scheduler, clock):
        log = []
        scheduler.add_job(RecordingJob("every-minute", log), "* * * * *")
        scheduler.add_job(RecordingJob("noon", log), "0 12 * * *")
        scheduler.add_job(RecordingJob("one-pm", log), "0 13 * * *")

        summary = scheduler.run()

        assert [name for name, _ in log] == ["every-minute", "noon"]
        assert [s.info.name for s in summary.jobs] == ["every-minute", "noon"]

    def test_time_zone_override(self, scheduler):
        """A job's own zone decides whether it is due, not the clock's."""
        log = []
        scheduler.add_job(RecordingJob("prague-1pm", log), "0 13 * * *", time_zone="Europe/Prague")
        scheduler.add_job(RecordingJob("utc-1pm", log), "0 13 * * *")

        summary = scheduler.run()

        assert [name for name, _ in log] == ["prague-1pm"]
        (job,) = summary.jobs
        assert job.info.time_zone == PRAGUE
        assert job.info.start.tzinfo == PRAGUE
        assert job.info.start == START

    def test_job_info_without_override(self, scheduler):
        scheduler.add_job(CallbackJob(lambda: None, name="a"), "* * * * *")
        (job,) = scheduler.run().jobs
        assert job.info.time_zone is None
        assert job.info.start == START
        assert job.info.expression == "* * * * *"

    def test_nothing_due(self, scheduler):
        scheduler.add_job(CallbackJob(lambda: None), "0 0 1 1 *")
        summary = scheduler.run()
        assert summary.jobs == []
        assert summary.start == START

    def test_lazy_job_not_built_when_not_due(self, scheduler):
        built = []
        scheduler.add_lazy_job(lambda: built.append(1) or CallbackJob(lambda: None), "0 0 1 1 *")
        scheduler.run()
        assert built == []

    def test_get_schedules(self, scheduler):
        scheduler.add_job(CallbackJob(lambda: None), "@daily", job_id="daily")
        assert list(scheduler.get_schedules()) == ["daily"]


class TestLocking:
    def test_held_lock_skips_job(self, scheduler, lock_factory):
        """A job whose lock is held elsewhere is skipped, never run."""
        log = []
        callbacks = CallbackList()
        scheduler.add_job(RecordingJob("locked", log), "* * * * *")
        scheduler.add_locked_job_callback(callbacks.recorder("locked"))
        scheduler.add_before_job_callback(callbacks.recorder("before"))

        other = lock_factory.create_lock("cronspine.job/0")
        assert other.acquire()

        summary = scheduler.run()

        assert log == []
        (job,) = summary.jobs
        assert job.result.state is JobResultState.SKIP
        assert job.result.end == job.info.start
        assert callbacks.tags() == ["locked"]
        info, result = callbacks.calls[0][1]
        assert info == job.info and result == job.result

    def test_lock_released_after_run(self, scheduler, lock_factory):
        scheduler.add_job(CallbackJob(lambda: None), "* * * * *")
        scheduler.run()
        assert lock_factory.create_lock("cronspine.job/0").acquire()

    def test_lock_held_while_job_runs(self, scheduler, lock_factory):
        seen = []

        def job(lock):
            seen.append(lock.is_acquired_by_current_process())
            seen.append(lock_factory.create_lock("cronspine.job/0").acquire())

        scheduler.add_job(CallbackJob(job), "* * * * *")
        scheduler.run()
        assert seen == [True, False]

    def test_lock_released_when_observer_raises(self, scheduler, lock_factory):
        """Observer errors propagate, the lock is still released."""
        scheduler.add_job(CallbackJob(lambda: None), "* * * * *")

        def broken(info):
            raise RuntimeError("observer")

        scheduler.add_before_job_callback(broken)
        with pytest.raises(RuntimeError, match="observer"):
            scheduler.run()
        assert lock_factory.create_lock("cronspine.job/0").acquire()

    def test_expired_lock_is_logged(self, clock):
        scheduler = SimpleScheduler(clock=clock, lock_factory=ExpiredLockFactory(clock=clock))
        scheduler.add_job(CallbackJob(lambda: None, name="slow"), "* * * * *")

        with capture_logs() as logs:
            summary = scheduler.run()

        assert summary.jobs[0].result.state is JobResultState.DONE
        expired = [entry for entry in logs if entry["event"] == "job.lock_expired"]
        assert len(expired) == 1
        assert expired[0]["log_level"] == "warning"
        assert expired[0]["job_name"] == "slow"

    def test_custom_lock_namespace(self, clock, lock_factory):
        factory = CountingLockFactory(lock_factory.store, clock=clock)
        scheduler = SimpleScheduler(
            clock=clock, lock_factory=factory, settings=SchedulerSettings(lock_namespace="myapp/")
        )
        scheduler.add_job(CallbackJob(lambda: None), "* * * * *", job_id="x")
        scheduler.run()
        assert factory.created == ["myapp/x"]


class TestRepeats:
    @pytest.mark.parametrize(
        ("interval", "seconds"),
        [
            (5, list(range(0, 60, 5))),
            (29, [0, 29, 58]),
            (30, [0, 30]),
        ],
    )
    def test_runs_per_second(self, scheduler, clock, interval, seconds):
        log = []
        scheduler.add_job(RecordingJob("repeat", log, clock), "* * * * *", repeat_after_seconds=interval)

        summary = scheduler.run()

        assert [s.info.run_second for s in summary.jobs] == seconds
        assert [at for _, at in log] == [START + timedelta(seconds=s) for s in seconds]

    def test_sleeps_between_seconds(self, scheduler, clock):
        """Every second but the last is padded to one second."""
        scheduler.add_job(RecordingJob("repeat", [], clock), "* * * * *", repeat_after_seconds=30)
        summary = scheduler.run()
        assert clock.sleeps == [1.0] * 30
        assert summary.end == START + timedelta(seconds=30)

    def test_same_second_in_registration_order(self, scheduler, clock):
        log = []
        scheduler.add_job(RecordingJob("a", log, clock), "* * * * *", repeat_after_seconds=30)
        scheduler.add_job(RecordingJob("b", log, clock), "* * * * *")
        scheduler.add_job(RecordingJob("c", log, clock), "* * * * *", repeat_after_seconds=30)

        scheduler.run()

        assert [name for name, _ in log] == ["a", "b", "c", "a", "c"]

    def test_drift_is_compensated(self, scheduler, clock):
        """A slow second is followed immediately, nothing is run twice."""
        log = []
        scheduler.add_job(RecordingJob("slow", log, clock, duration=2.5), "* * * * *")
        scheduler.add_job(RecordingJob("repeat", log, clock), "* * * * *", repeat_after_seconds=30)

        scheduler.run()

        assert clock.sleeps[0] == 0.0
        assert [name for name, _ in log] == ["slow", "repeat", "repeat"]
        assert log[2][1] == START + timedelta(seconds=31.5)


class TestFailures:
    def test_aggregate_failure(self, scheduler):
        """Every unabsorbed error is reported, in execution order."""
        first, second = ValueError("first"), KeyError("second")
        scheduler.add_job(RecordingJob("a", [], error=first), "* * * * *")
        scheduler.add_job(RecordingJob("b", []), "* * * * *")
        scheduler.add_job(RecordingJob("c", [], error=second), "* * * * *")
        after_run = []
        scheduler.add_after_run_callback(after_run.append)

        with pytest.raises(RunFailure) as exc_info:
            scheduler.run()

        failure = exc_info.value
        assert failure.suppressed == [first, second]
        assert [s.result.state for s in failure.summary.jobs] == [
            JobResultState.FAIL,
            JobResultState.DONE,
            JobResultState.FAIL,
        ]
        assert after_run == [failure.summary]

    def test_error_handler_absorbs(self, clock, lock_factory):
        handled = []
        scheduler = SimpleScheduler(
            clock=clock,
            lock_factory=lock_factory,
            error_handler=lambda error, info, result: handled.append((error, info, result)),
        )
        error = RuntimeError("boom")
        scheduler.add_job(RecordingJob("failing", [], error=error), "* * * * *")

        summary = scheduler.run()

        (job,) = summary.jobs
        assert job.result.state is JobResultState.FAIL
        assert handled == [(error, job.info, job.result)]

    def test_skip_success_and_failures_together(self, scheduler, lock_factory):
        """A skipped job and a success leave the failures of the others untouched."""
        first, second = RuntimeError("first"), ValueError("second")
        scheduler.add_job(RecordingJob("held", []), "* * * * *")
        scheduler.add_job(RecordingJob("ok", []), "* * * * *")
        scheduler.add_job(RecordingJob("a", [], error=first), "* * * * *")
        scheduler.add_job(RecordingJob("b", [], error=second), "* * * * *")
        assert lock_factory.create_lock("cronspine.job/0").acquire()

        with pytest.raises(RunFailure) as exc_info:
            scheduler.run()

        failure = exc_info.value
        assert len(failure.suppressed) == 2
        assert failure.suppressed == [first, second]
        assert [(s.info.name, s.result.state) for s in failure.summary.jobs] == [
            ("held", JobResultState.SKIP),
            ("ok", JobResultState.DONE),
            ("a", JobResultState.FAIL),
            ("b", JobResultState.FAIL),
        ]

    def test_error_handler_called_per_failure(self, clock, lock_factory):
        handled = []
        scheduler = SimpleScheduler(
            clock=clock,
            lock_factory=lock_factory,
            error_handler=lambda error, info, result: handled.append((error, info, result)),
        )
        first, second = RuntimeError("first"), ValueError("second")
        scheduler.add_job(RecordingJob("a", [], error=first), "* * * * *")
        scheduler.add_job(RecordingJob("ok", []), "* * * * *")
        scheduler.add_job(RecordingJob("b", [], error=second), "* * * * *")

        summary = scheduler.run()

        failed = [s for s in summary.jobs if s.result.state is JobResultState.FAIL]
        assert [s.info.name for s in failed] == ["a", "b"]
        assert handled == [(first, failed[0].info, failed[0].result), (second, failed[1].info, failed[1].result)]

    def test_two_jobs_one_fails(self, scheduler):
        """Observers fire in order and the run fails with just the one error."""
        callbacks = CallbackList()
        error = RuntimeError("second job")
        scheduler.add_job(RecordingJob("ok", []), "* * * * *")
        scheduler.add_job(RecordingJob("broken", [], error=error), "* * * * *")
        scheduler.add_before_run_callback(callbacks.recorder("before_run"))
        scheduler.add_before_job_callback(callbacks.recorder("before_job"))
        scheduler.add_after_job_callback(callbacks.recorder("after_job"))
        scheduler.add_after_run_callback(callbacks.recorder("after_run"))

        with pytest.raises(RunFailure) as exc_info:
            scheduler.run()

        assert exc_info.value.suppressed == [error]
        assert [s.result.state for s in exc_info.value.summary.jobs] == [JobResultState.DONE, JobResultState.FAIL]
        assert callbacks.tags() == [
            "before_run",
            "before_job",
            "after_job",
            "before_job",
            "after_job",
            "after_run",
        ]
        after_job_states = [args[1].state for tag, args in callbacks.calls if tag == "after_job"]
        assert after_job_states == [JobResultState.DONE, JobResultState.FAIL]


class TestRunPromise:
    def test_before_run_is_eager(self, scheduler):
        """Before-run observers see the whole due set before any job runs."""
        log = []
        infos: list[RunInfo] = []
        scheduler.add_job(RecordingJob("a", log), "* * * * *", repeat_after_seconds=30)
        scheduler.add_job(RecordingJob("b", log), "* * * * *", job_id="b", time_zone="Europe/Prague")
        scheduler.add_job(RecordingJob("c", log), "0 0 1 1 *")
        scheduler.add_before_run_callback(infos.append)

        promise = scheduler.run_promise()

        assert log == []
        (info,) = infos
        assert info.start == START
        assert [(p.id, p.name, p.runs_count_per_minute) for p in info.jobs] == [(0, "a", 2), ("b", "b", 1)]
        assert info.jobs[1].time_zone == PRAGUE
        list(promise)

    def test_streams_summaries(self, scheduler):
        log = []
        scheduler.add_job(RecordingJob("a", log), "* * * * *")
        scheduler.add_job(RecordingJob("b", log), "* * * * *")

        promise = scheduler.run_promise()
        first = next(promise)
        assert first.info.name == "a"
        assert [name for name, _ in log] == ["a"]
        second = next(promise)
        assert second.info.name == "b"
        with pytest.raises(StopIteration) as stop:
            next(promise)
        summary = stop.value.value
        assert isinstance(summary, RunSummary)
        assert summary.jobs == [first, second]


class TestRunJob:
    def test_forced(self, scheduler):
        """run_job ignores the schedule by default."""
        log = []
        job_id = scheduler.add_job(RecordingJob("yearly", log), "0 0 1 1 *")
        summary = scheduler.run_job(job_id)
        assert log and summary.result.state is JobResultState.DONE
        assert summary.info.run_second == 0

    def test_not_due_without_force(self):
        """Not due + force=False returns None without touching the lock."""
        clock = FrozenClock(datetime(2024, 1, 1, 12, 1, 1, tzinfo=UTC))
        factory = CountingLockFactory(clock=clock)
        scheduler = SimpleScheduler(clock=clock, lock_factory=factory)
        log = []
        scheduler.add_job(RecordingJob("hourly", log), "0 * * * *")

        assert scheduler.run_job(0, force=False) is None
        assert log == []
        assert factory.created == []

    def test_due_without_force(self, scheduler):
        scheduler.add_job(RecordingJob("minutely", []), "* * * * *")
        assert scheduler.run_job(0, force=False).result.state is JobResultState.DONE

    def test_not_due_uses_job_zone(self, scheduler):
        scheduler.add_job(RecordingJob("prague", []), "0 13 * * *", time_zone="Europe/Prague")
        assert scheduler.run_job(0, force=False) is not None

    def test_unknown_id(self, clock):
        factory = CountingLockFactory(clock=clock)
        scheduler = SimpleScheduler(clock=clock, lock_factory=factory)
        with pytest.raises(JobNotFoundError) as exc_info:
            scheduler.run_job("missing")
        assert exc_info.value.job_id == "missing"
        assert factory.created == []

    def test_string_id_finds_integer_job(self, scheduler):
        scheduler.add_job(RecordingJob("a", []), "* * * * *")
        assert scheduler.run_job("0").info.id == 0

    def test_parameters(self, scheduler):
        scheduler.add_job(RecordingJob("a", []), "* * * * *", repeat_after_seconds=10)
        assert scheduler.run_job(0, parameters=RunParameters(second=40)).info.run_second == 40

    def test_failure(self, scheduler):
        error = RuntimeError("boom")
        scheduler.add_job(RecordingJob("a", [], error=error), "* * * * *")
        with pytest.raises(JobFailure) as exc_info:
            scheduler.run_job(0)
        assert exc_info.value.suppressed == [error]
        assert exc_info.value.result.state is JobResultState.FAIL

    def test_failure_absorbed_by_handler(self, clock):
        handled = []
        scheduler = SimpleScheduler(clock=clock, error_handler=lambda e, i, r: handled.append(e))
        scheduler.add_job(RecordingJob("a", [], error=RuntimeError("boom")), "* * * * *")
        summary = scheduler.run_job(0)
        assert summary.result.state is JobResultState.FAIL
        assert len(handled) == 1

    def test_locked(self, scheduler, lock_factory):
        scheduler.add_job(RecordingJob("a", []), "* * * * *")
        lock_factory.create_lock("cronspine.job/0").acquire()
        assert scheduler.run_job(0).result.state is JobResultState.SKIP


ATTEMPT_KEYS = ("job_id", "job_name", "run_second")


def attempt_context() -> dict:
    context = structlog.contextvars.get_contextvars()
    return {key: context[key] for key in ATTEMPT_KEYS if key in context}


class TestJobLogContext:
    def test_job_logs_carry_attempt(self, scheduler):
        seen = []
        scheduler.add_job(
            CallbackJob(lambda: seen.append(attempt_context()), name="report"),
            "* * * * *",
            repeat_after_seconds=30,
        )

        scheduler.run()

        assert seen == [
            {"job_id": 0, "job_name": "report", "run_second": 0},
            {"job_id": 0, "job_name": "report", "run_second": 30},
        ]
        assert attempt_context() == {}

    def test_context_cleared_after_failure(self, scheduler):
        scheduler.add_job(RecordingJob("broken", [], error=RuntimeError("boom")), "* * * * *")

        with pytest.raises(RunFailure):
            scheduler.run()

        assert attempt_context() == {}


class TestManagedScheduler:
    def test_with_callback_manager(self, clock):
        manager = CallbackJobManager()
        manager.add_job(lambda: CallbackJob(lambda: None, name="built"), "* * * * *")
        scheduler = ManagedScheduler(manager, clock=clock)
        assert [s.info.name for s in scheduler.run().jobs] == ["built"]
