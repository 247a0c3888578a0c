"""
Tests for the sync scheduler.

The sync service is replaced by a stub; jobs are driven directly from the
test thread except where the background thread itself is under test.
"""

import threading
import time
from datetime import datetime, timedelta

import pytest

from bond_directory.core.exceptions import ConfigurationException
from bond_directory.db.run_log import InMemoryRunLog, IngestionRun, RunStatus, RunType
from bond_directory.jobs.scheduler import SyncScheduler

NOW = datetime(2025, 6, 1, 12, 0)


class StubSyncService:
    """Records sync calls; optionally blocks until cancelled"""

    def __init__(self, run_log=None, block=False):
        self.run_log = run_log
        self.block = block
        self.calls = []
        self.started = threading.Event()
        self.cancelled = False

    async def sync(self, run_type=RunType.MANUAL, deep=False, cancel_event=None):
        self.calls.append((run_type, deep))
        self.started.set()
        if self.block:
            await cancel_event.wait()
            self.cancelled = True
        run = IngestionRun(run_type=run_type, deep=deep)
        run.finish(RunStatus.COMPLETED)
        return run


class BrokenRunLog(InMemoryRunLog):
    """Run log whose lookup always fails"""

    def last_successful(self):
        raise RuntimeError("run log store unreachable")


def finished_run(status: RunStatus, days_ago: float) -> IngestionRun:
    run = IngestionRun(status=status)
    run.completed_at = NOW - timedelta(days=days_ago)
    return run


@pytest.fixture
def run_log():
    return InMemoryRunLog()


@pytest.fixture
def service(run_log):
    return StubSyncService(run_log)


@pytest.fixture
def scheduler(service):
    return SyncScheduler(service, interval_days=12, now=lambda: NOW)


class TestStartupCheck:

    def test_no_history_runs_deep_sync(self, scheduler, service):
        run = scheduler.startup_check()

        assert service.calls == [(RunType.STARTUP, True)]
        assert run.deep
        assert scheduler.last_run is run

    def test_stale_history_runs_regular_sync(self, scheduler, service, run_log):
        run_log.record(finished_run(RunStatus.COMPLETED, days_ago=13))

        scheduler.startup_check()

        assert service.calls == [(RunType.STARTUP, False)]

    def test_fresh_history_skips(self, scheduler, service, run_log):
        run_log.record(finished_run(RunStatus.PARTIAL, days_ago=3))
        run_log.record(finished_run(RunStatus.FAILED, days_ago=1))

        assert scheduler.startup_check() is None
        assert service.calls == []

    def test_run_log_failure_falls_back_to_regular_sync(self):
        service = StubSyncService(BrokenRunLog())
        scheduler = SyncScheduler(service, now=lambda: NOW)

        run = scheduler.startup_check()

        assert service.calls == [(RunType.STARTUP, False)]
        assert run is not None and not run.deep


class TestJobs:

    def test_regular_and_deep_jobs(self, scheduler, service):
        scheduler.run_regular()
        scheduler.run_deep()

        assert service.calls == [(RunType.DAILY, False), (RunType.WEEKLY, True)]
        assert not scheduler.is_running

    def test_overlapping_run_is_skipped(self, scheduler, service):
        scheduler._run_lock.acquire()
        try:
            assert scheduler.run_regular() is None
        finally:
            scheduler._run_lock.release()

        assert service.calls == []

    def test_register_jobs(self, scheduler):
        scheduler.register_jobs()

        jobs = scheduler.scheduler.jobs
        assert len(jobs) == 2
        assert (jobs[0].interval, jobs[0].unit) == (12, "days")
        assert jobs[1].start_day == "sunday"
        assert str(jobs[0].at_time_zone) == "Asia/Kolkata"
        assert str(jobs[1].at_time_zone) == "Asia/Kolkata"

    @pytest.mark.parametrize("overrides", [
        {"deep_weekday": "someday"},
        {"sync_time": "noon"},
        {"interval_days": 0},
        {"timezone": "Mars/Olympus_Mons"},
    ])
    def test_invalid_schedule_rejected(self, service, overrides):
        scheduler = SyncScheduler(service, **overrides)

        with pytest.raises(ConfigurationException):
            scheduler.register_jobs()
        assert scheduler.scheduler.jobs == []

    def test_loop_reused_across_runs(self, scheduler):
        scheduler.run_regular()
        loop = scheduler._loop
        scheduler.run_regular()

        assert scheduler._loop is loop
        scheduler._close_loop()


class TestBackgroundThread:

    def test_manual_request_runs_after_startup_check(self, service):
        scheduler = SyncScheduler(service, startup_delay_seconds=0, poll_seconds=0.05, now=lambda: NOW)
        scheduler.start()
        try:
            scheduler.request_sync(deep=False)
            for _ in range(100):
                if len(service.calls) >= 2:
                    break
                time.sleep(0.05)
        finally:
            scheduler.stop(timeout=5)

        assert service.calls[:2] == [(RunType.STARTUP, True), (RunType.MANUAL, False)]
        assert not scheduler._thread.is_alive()

    def test_thread_survives_run_log_failure(self):
        service = StubSyncService(BrokenRunLog())
        scheduler = SyncScheduler(service, startup_delay_seconds=0, poll_seconds=0.05, now=lambda: NOW)
        scheduler.start()
        try:
            scheduler.request_sync(deep=True)
            for _ in range(100):
                if len(service.calls) >= 2:
                    break
                time.sleep(0.05)
            assert scheduler._thread.is_alive()
        finally:
            scheduler.stop(timeout=5)

        assert service.calls[:2] == [(RunType.STARTUP, False), (RunType.MANUAL, True)]

    def test_stop_cancels_in_flight_sync(self):
        service = StubSyncService(block=True)
        scheduler = SyncScheduler(service, startup_delay_seconds=0, poll_seconds=0.05, now=lambda: NOW)
        scheduler.start()

        assert service.started.wait(5)
        scheduler.stop(timeout=5)

        assert service.cancelled
        assert not scheduler._thread.is_alive()
