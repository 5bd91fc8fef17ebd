import logging
from datetime import timezone
from typing import Any, Awaitable, Callable, Optional, Set, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.services.performance import generate_all_scores
from app.services.project_sync import run_project_sync
from app.services.reports import ReportDeliverer, send_reports
from app.services.retention import purge_expired_data
from app.services.settings_store import (
    DEFAULT_DAILY_REPORT_TIME, DEFAULT_WEEKLY_REPORT_SCHEDULE,
    get_daily_report_time, get_sync_interval, get_weekly_report_schedule,
)

logger = logging.getLogger(__name__)

SCORE_JOB = "generate_scores"
SYNC_JOB = "project_sync"
DAILY_REPORT_JOB = "daily_reports"
WEEKLY_REPORT_JOB = "weekly_reports"
RETENTION_JOB = "purge_expired_data"

RETENTION_INTERVAL_HOURS = 24

# Stored schedules count weekdays from Sunday = 0
WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


class PerformanceScheduler:
    """Periodic score generation, project sync, report delivery and data purging.

    Each job is single-flight: a trigger that fires while the same job is still
    running is skipped, not queued. Manual runs go through the same guard.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None,
                 deliverer: Optional[ReportDeliverer] = None):
        self.session_factory = session_factory
        self.deliverer = deliverer
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running_jobs: Set[str] = set()

    @property
    def started(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def is_job_running(self, name: str) -> bool:
        return name in self._running_jobs

    async def run_single_flight(self, name: str, job: Callable[[], Awaitable[Any]]) -> Tuple[bool, Any]:
        """Run ``job`` unless ``name`` is already running. Returns (ran, result)."""
        if name in self._running_jobs:
            logger.info("Skipping %s - previous run still in progress", name)
            return False, None
        self._running_jobs.add(name)
        try:
            return True, await job()
        finally:
            self._running_jobs.discard(name)

    async def run_score_generation(self):
        return await self.run_single_flight(
            SCORE_JOB, lambda: generate_all_scores(self.session_factory)
        )

    async def run_sync(self):
        return await self.run_single_flight(
            SYNC_JOB, lambda: run_project_sync(self.session_factory)
        )

    async def run_reports(self, report_type: str):
        name = DAILY_REPORT_JOB if report_type == "daily" else WEEKLY_REPORT_JOB
        return await self.run_single_flight(
            name, lambda: send_reports(self.session_factory, report_type, self.deliverer)
        )

    async def run_retention(self):
        return await self.run_single_flight(
            RETENTION_JOB, lambda: purge_expired_data(self.session_factory)
        )

    async def _scheduled(self, name: str, runner: Callable[[], Awaitable[Tuple[bool, Any]]]):
        try:
            ran, result = await runner()
            if ran:
                logger.info("Scheduled job %s finished: %s", name, result)
        except Exception:
            logger.exception("Scheduled job %s failed", name)

    async def _scheduled_scores(self):
        await self._scheduled(SCORE_JOB, self.run_score_generation)

    async def _scheduled_sync(self):
        await self._scheduled(SYNC_JOB, self.run_sync)

    async def _scheduled_daily_reports(self):
        await self._scheduled(DAILY_REPORT_JOB, lambda: self.run_reports("daily"))

    async def _scheduled_weekly_reports(self):
        await self._scheduled(WEEKLY_REPORT_JOB, lambda: self.run_reports("weekly"))

    async def _scheduled_retention(self):
        await self._scheduled(RETENTION_JOB, self.run_retention)

    def setup_jobs(self):
        self.scheduler.add_job(
            self._scheduled_scores,
            "interval",
            hours=settings.SCORING_INTERVAL_HOURS,
            id=SCORE_JOB,
            name="Daily performance scores",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self._scheduled_sync,
            "interval",
            minutes=settings.SYNC_INTERVAL_MINUTES,
            id=SYNC_JOB,
            name="Project tool sync",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self._scheduled_daily_reports,
            "cron",
            hour=DEFAULT_DAILY_REPORT_TIME["hour"],
            minute=DEFAULT_DAILY_REPORT_TIME["minute"],
            id=DAILY_REPORT_JOB,
            name="Daily performance reports",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self._scheduled_weekly_reports,
            "cron",
            day_of_week=WEEKDAY_NAMES[DEFAULT_WEEKLY_REPORT_SCHEDULE["day"]],
            hour=DEFAULT_WEEKLY_REPORT_SCHEDULE["hour"],
            minute=DEFAULT_WEEKLY_REPORT_SCHEDULE["minute"],
            id=WEEKLY_REPORT_JOB,
            name="Weekly performance reports",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self._scheduled_retention,
            "interval",
            hours=RETENTION_INTERVAL_HOURS,
            id=RETENTION_JOB,
            name="Data retention purge",
            replace_existing=True,
        )

    def start(self):
        if self.started:
            logger.warning("Scheduler already running")
            return
        self.scheduler = AsyncIOScheduler(
            timezone=timezone.utc,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 3600,
            },
        )
        self.setup_jobs()
        self.scheduler.start()
        logger.info(
            "Scheduler started (scores every %dh, sync every %dmin)",
            settings.SCORING_INTERVAL_HOURS, settings.SYNC_INTERVAL_MINUTES,
        )

    async def apply_stored_schedules(self):
        """Replace the config defaults with what HR saved in the settings table."""
        session_factory = self.session_factory
        if session_factory is None:
            from app.database import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        async with session_factory() as db:
            minutes = await get_sync_interval(db)
            daily = await get_daily_report_time(db)
            weekly = await get_weekly_report_schedule(db)
        self.reschedule_sync(minutes)
        self.reschedule_daily_reports(**daily)
        self.reschedule_weekly_reports(**weekly)

    # Reschedules are no-ops until start(); the stored values are read again then

    def reschedule_sync(self, minutes: int):
        if self.started:
            self.scheduler.reschedule_job(SYNC_JOB, trigger="interval", minutes=minutes)
            logger.info("Project sync now runs every %d minutes", minutes)

    def reschedule_daily_reports(self, hour: int, minute: int):
        if self.started:
            self.scheduler.reschedule_job(DAILY_REPORT_JOB, trigger="cron", hour=hour, minute=minute)
            logger.info("Daily reports now go out at %02d:%02d UTC", hour, minute)

    def reschedule_weekly_reports(self, day: int, hour: int, minute: int):
        if self.started:
            self.scheduler.reschedule_job(
                WEEKLY_REPORT_JOB, trigger="cron", day_of_week=WEEKDAY_NAMES[day], hour=hour, minute=minute,
            )
            logger.info("Weekly reports now go out on %s at %02d:%02d UTC", WEEKDAY_NAMES[day], hour, minute)

    def stop(self):
        if self.scheduler is not None:
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
            self.scheduler = None
        self._running_jobs.clear()
        logger.info("Scheduler stopped")
