"""
Sync scheduler - periodic regular and deep bond syncs on a background thread
"""

import asyncio
import queue
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Optional
import pytz
import schedule
import structlog

from bond_directory.core.config import Settings
from bond_directory.core.exceptions import ConfigurationException
from bond_directory.db.run_log import IngestionRun, RunLogSink, RunType
from .bond_sync import BondSyncService

logger = structlog.get_logger(__name__)

_STOP = object()

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class SyncScheduler:
    """
    Runs bond syncs on a daemon thread.

    Regular syncs run every interval_days at sync_time, deep syncs weekly on
    deep_weekday at deep_time. Shortly after start a startup check runs a deep
    sync when no successful run is on record, or a regular sync when the last
    one is older than the interval. All jobs execute on the scheduler thread's
    own event loop, one at a time.
    """

    def __init__(
        self,
        service: BondSyncService,
        run_log: Optional[RunLogSink] = None,
        interval_days: int = 12,
        sync_time: str = "02:00",
        deep_weekday: str = "sunday",
        deep_time: str = "03:00",
        timezone: str = "Asia/Kolkata",
        startup_delay_seconds: float = 15,
        poll_seconds: float = 30.0,
        scheduler: Optional[schedule.Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.utcnow
    ):
        self.service = service
        self.run_log = run_log or service.run_log
        self.interval_days = interval_days
        self.sync_time = sync_time
        self.deep_weekday = deep_weekday.lower()
        self.deep_time = deep_time
        self.timezone = timezone
        self.startup_delay_seconds = startup_delay_seconds
        self.poll_seconds = poll_seconds
        self.scheduler = scheduler or schedule.Scheduler()
        self._clock = clock
        self._now = now

        self.stop_flag = threading.Event()
        self._run_lock = threading.Lock()
        self._requests: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._cancel_event: Optional[asyncio.Event] = None
        self.last_run: Optional[IngestionRun] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        service: BondSyncService,
        run_log: Optional[RunLogSink] = None
    ) -> "SyncScheduler":
        return cls(
            service,
            run_log=run_log,
            interval_days=settings.BOND_SYNC_INTERVAL_DAYS,
            sync_time=settings.BOND_SYNC_TIME,
            deep_weekday=settings.DEEP_SYNC_WEEKDAY,
            deep_time=settings.DEEP_SYNC_TIME,
            timezone=settings.BOND_SYNC_TIMEZONE,
            startup_delay_seconds=settings.STARTUP_SYNC_DELAY_SECONDS
        )

    @property
    def is_running(self) -> bool:
        """True while a sync is executing"""
        return self._run_lock.locked()

    def register_jobs(self):
        """
        Register the periodic jobs on the underlying schedule

        Raises:
            ConfigurationException: A schedule setting is invalid
        """
        if self.interval_days < 1:
            raise ConfigurationException(
                "Sync interval must be at least one day",
                details={"interval_days": self.interval_days}
            )
        if self.deep_weekday not in WEEKDAYS:
            raise ConfigurationException(
                f"Unknown deep sync weekday: {self.deep_weekday}",
                details={"deep_weekday": self.deep_weekday}
            )
        try:
            pytz.timezone(self.timezone)
        except pytz.UnknownTimeZoneError as e:
            raise ConfigurationException(
                f"Unknown sync timezone: {self.timezone}",
                details={"timezone": self.timezone}
            ) from e

        self.scheduler.clear()
        try:
            self.scheduler.every(self.interval_days).days.at(self.sync_time, self.timezone).do(self.run_regular)
            getattr(self.scheduler.every(), self.deep_weekday).at(self.deep_time, self.timezone).do(self.run_deep)
        except schedule.ScheduleValueError as e:
            self.scheduler.clear()
            raise ConfigurationException(
                f"Invalid sync time: {e}",
                details={"sync_time": self.sync_time, "deep_time": self.deep_time}
            ) from e

        logger.info("Sync jobs scheduled",
                   interval_days=self.interval_days,
                   sync_time=self.sync_time,
                   deep_weekday=self.deep_weekday,
                   deep_time=self.deep_time,
                   timezone=self.timezone)

    def start(self):
        """Start the scheduler thread"""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Sync scheduler already started")
            return

        self.stop_flag.clear()
        self.register_jobs()

        self._thread = threading.Thread(target=self._run_scheduler, name="bond-sync-scheduler")
        self._thread.daemon = True
        self._thread.start()
        logger.info("Sync scheduler started", startup_delay_seconds=self.startup_delay_seconds)

    def stop(self, timeout: Optional[float] = None):
        """Stop the scheduler and cancel an in-flight sync"""
        self.stop_flag.set()
        self._requests.put(_STOP)
        self.cancel_current()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        logger.info("Sync scheduler stopped")

    def cancel_current(self):
        """Signal the in-flight sync, if any, to stop between pages and endpoints"""
        loop, event = self._loop, self._cancel_event
        if loop is None or event is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(event.set)
        logger.warning("Cancellation requested for in-flight sync")

    def request_sync(self, deep: bool = False):
        """Queue a manual sync on the scheduler thread"""
        self._requests.put(deep)

    def _run_scheduler(self):
        """Scheduler loop"""
        startup_due = self._clock() + self.startup_delay_seconds
        startup_done = False

        try:
            while not self.stop_flag.is_set():
                if not startup_done and self._clock() >= startup_due:
                    startup_done = True
                    self.startup_check()

                try:
                    self.scheduler.run_pending()
                except Exception as e:
                    logger.exception("Scheduled job raised", error=str(e))

                wait = self.poll_seconds
                if not startup_done:
                    wait = max(0.0, min(wait, startup_due - self._clock()))
                try:
                    request = self._requests.get(timeout=wait)
                except queue.Empty:
                    continue
                if request is _STOP:
                    break
                self._run_sync(RunType.MANUAL, deep=bool(request))
        finally:
            self._close_loop()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop

    def _close_loop(self):
        if self._loop is not None and not self._loop.is_closed():
            self._loop.close()

    def _run_sync(self, run_type: RunType, deep: bool) -> Optional[IngestionRun]:
        """Run one sync to completion; None when another sync is in progress"""
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Sync already running; skipping", run_type=run_type.value, deep=deep)
            return None

        async def run() -> IngestionRun:
            self._cancel_event = asyncio.Event()
            try:
                return await self.service.sync(run_type=run_type, deep=deep, cancel_event=self._cancel_event)
            finally:
                self._cancel_event = None

        try:
            self.last_run = self._get_loop().run_until_complete(run())
            return self.last_run
        except Exception as e:
            logger.exception("Scheduled sync failed", run_type=run_type.value, deep=deep, error=str(e))
            return None
        finally:
            self._run_lock.release()

    def run_regular(self) -> Optional[IngestionRun]:
        logger.info("Running scheduled regular sync")
        return self._run_sync(RunType.DAILY, deep=False)

    def run_deep(self) -> Optional[IngestionRun]:
        logger.info("Running scheduled deep sync")
        return self._run_sync(RunType.WEEKLY, deep=True)

    def startup_check(self) -> Optional[IngestionRun]:
        """Catch up after a restart; a run log lookup failure falls back to a regular sync"""
        try:
            last = self.run_log.last_successful() if self.run_log is not None else None
        except Exception as e:
            logger.exception("Run log lookup failed; running regular sync", error=str(e))
            return self._run_sync(RunType.STARTUP, deep=False)

        if last is None:
            logger.info("No previous successful sync; running deep sync")
            return self._run_sync(RunType.STARTUP, deep=True)

        finished = last.completed_at or last.started_at
        age = self._now() - finished
        if age > timedelta(days=self.interval_days):
            logger.info("Last sync is stale; running regular sync",
                       last_run_id=last.run_id,
                       age_days=round(age.total_seconds() / 86400, 1))
            return self._run_sync(RunType.STARTUP, deep=False)

        logger.info("Bond data is fresh; startup sync skipped",
                   last_run_id=last.run_id,
                   last_completed_at=finished.isoformat())
        return None
