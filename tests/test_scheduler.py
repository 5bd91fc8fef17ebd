"""
Tests for the background job scheduler.
"""

import asyncio
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from app.config import settings
from app.models.performance import Score
from app.models.report import ReportDelivery, ReportSubscription
from app.models.sync_log import SyncLog
from app.services.retention import purge_expired_data
from app.services.scheduler import (
    DAILY_REPORT_JOB, RETENTION_JOB, SCORE_JOB, SYNC_JOB, WEEKLY_REPORT_JOB, PerformanceScheduler,
)
from app.services.settings_store import (
    DAILY_REPORT_TIME_KEY, DATA_RETENTION_KEY, SYNC_INTERVAL_KEY, WEEKLY_REPORT_SCHEDULE_KEY, set_setting,
)

from conftest import make_user, utc


class TestSingleFlight:

    async def test_overlapping_run_is_skipped(self):
        scheduler = PerformanceScheduler()
        release = asyncio.Event()
        calls = []

        async def slow_job():
            calls.append("run")
            await release.wait()
            return "done"

        first = asyncio.create_task(scheduler.run_single_flight(SCORE_JOB, slow_job))
        await asyncio.sleep(0)
        assert scheduler.is_job_running(SCORE_JOB)

        assert await scheduler.run_single_flight(SCORE_JOB, slow_job) == (False, None)

        release.set()
        assert await first == (True, "done")
        assert calls == ["run"]
        assert not scheduler.is_job_running(SCORE_JOB)

    async def test_different_jobs_run_independently(self):
        scheduler = PerformanceScheduler()
        release = asyncio.Event()

        async def slow_job():
            await release.wait()

        async def quick_job():
            return 1

        first = asyncio.create_task(scheduler.run_single_flight(SCORE_JOB, slow_job))
        await asyncio.sleep(0)
        assert await scheduler.run_single_flight(SYNC_JOB, quick_job) == (True, 1)
        release.set()
        await first

    async def test_flag_is_cleared_after_failure(self):
        scheduler = PerformanceScheduler()

        async def broken():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await scheduler.run_single_flight(SCORE_JOB, broken)
        assert not scheduler.is_job_running(SCORE_JOB)

    async def test_scheduled_wrapper_logs_instead_of_raising(self, monkeypatch, caplog):
        scheduler = PerformanceScheduler()

        async def broken():
            raise RuntimeError("boom")

        monkeypatch.setattr(scheduler, "run_score_generation", broken)
        await scheduler._scheduled_scores()
        assert "Scheduled job generate_scores failed" in caplog.text


class TestJobs:

    async def test_score_generation_uses_session_factory(self, db, session_factory):
        alice = await make_user(db, "Alice")
        scheduler = PerformanceScheduler(session_factory)

        ran, summary = await scheduler.run_score_generation()
        assert ran is True
        assert summary["generated"] == 1
        assert summary["failed"] == []

        rows = (await db.execute(select(Score.user_id))).scalars().all()
        assert rows == [alice.id]

    async def test_sync_without_api_url_is_a_no_op(self, session_factory, monkeypatch):
        monkeypatch.setattr(settings, "PROJECT_API_BASE_URL", None)
        scheduler = PerformanceScheduler(session_factory)
        assert await scheduler.run_sync() == (True, None)


class TestLifecycle:

    async def test_start_registers_jobs_and_stop_resets(self):
        scheduler = PerformanceScheduler()
        scheduler.start()
        try:
            assert scheduler.started
            job_ids = {job.id for job in scheduler.scheduler.get_jobs()}
            assert job_ids == {SCORE_JOB, SYNC_JOB, DAILY_REPORT_JOB, WEEKLY_REPORT_JOB, RETENTION_JOB}

            score_job = scheduler.scheduler.get_job(SCORE_JOB)
            assert score_job.trigger.interval.total_seconds() == settings.SCORING_INTERVAL_HOURS * 3600
            assert score_job.max_instances == 1
            assert score_job.coalesce is True
        finally:
            scheduler.stop()

        assert not scheduler.started
        assert scheduler.scheduler is None

    async def test_start_twice_keeps_one_scheduler(self):
        scheduler = PerformanceScheduler()
        scheduler.start()
        try:
            first = scheduler.scheduler
            scheduler.start()
            assert scheduler.scheduler is first
        finally:
            scheduler.stop()

    async def test_reschedules_are_ignored_before_start(self):
        scheduler = PerformanceScheduler()
        scheduler.reschedule_sync(5)
        scheduler.reschedule_daily_reports(6, 30)
        scheduler.reschedule_weekly_reports(5, 17, 0)
        assert scheduler.scheduler is None

    async def test_reschedule_running_jobs(self):
        scheduler = PerformanceScheduler()
        scheduler.start()
        try:
            scheduler.reschedule_sync(15)
            scheduler.reschedule_daily_reports(6, 30)
            scheduler.reschedule_weekly_reports(5, 17, 45)

            sync_job = scheduler.scheduler.get_job(SYNC_JOB)
            assert sync_job.trigger.interval.total_seconds() == 15 * 60

            daily = {f.name: str(f) for f in scheduler.scheduler.get_job(DAILY_REPORT_JOB).trigger.fields}
            assert daily["hour"] == "6"
            assert daily["minute"] == "30"

            weekly = {f.name: str(f) for f in scheduler.scheduler.get_job(WEEKLY_REPORT_JOB).trigger.fields}
            assert weekly["day_of_week"] == "fri"
            assert weekly["hour"] == "17"
            assert weekly["minute"] == "45"
        finally:
            scheduler.stop()

    async def test_default_report_times(self):
        scheduler = PerformanceScheduler()
        scheduler.start()
        try:
            daily = {f.name: str(f) for f in scheduler.scheduler.get_job(DAILY_REPORT_JOB).trigger.fields}
            assert (daily["hour"], daily["minute"]) == ("8", "0")
            weekly = {f.name: str(f) for f in scheduler.scheduler.get_job(WEEKLY_REPORT_JOB).trigger.fields}
            assert weekly["day_of_week"] == "mon"
        finally:
            scheduler.stop()

    async def test_stored_schedules_replace_defaults(self, db, session_factory):
        await set_setting(db, SYNC_INTERVAL_KEY, {"minutes": 90})
        await set_setting(db, DAILY_REPORT_TIME_KEY, {"hour": 0, "minute": 15})
        await set_setting(db, WEEKLY_REPORT_SCHEDULE_KEY, {"day": 0, "hour": 9, "minute": 0})
        await db.commit()

        scheduler = PerformanceScheduler(session_factory)
        scheduler.start()
        try:
            await scheduler.apply_stored_schedules()

            assert scheduler.scheduler.get_job(SYNC_JOB).trigger.interval.total_seconds() == 90 * 60
            daily = {f.name: str(f) for f in scheduler.scheduler.get_job(DAILY_REPORT_JOB).trigger.fields}
            # Midnight is a valid stored hour, not a fallback to the default
            assert (daily["hour"], daily["minute"]) == ("0", "15")
            weekly = {f.name: str(f) for f in scheduler.scheduler.get_job(WEEKLY_REPORT_JOB).trigger.fields}
            assert weekly["day_of_week"] == "sun"
        finally:
            scheduler.stop()


class TestReportJobs:

    async def test_overlapping_report_run_is_skipped(self, session_factory):
        scheduler = PerformanceScheduler(session_factory)
        release = asyncio.Event()

        async def slow_job():
            await release.wait()

        first = asyncio.create_task(scheduler.run_single_flight(DAILY_REPORT_JOB, slow_job))
        await asyncio.sleep(0)
        assert await scheduler.run_reports("daily") == (False, None)
        # The weekly job has its own guard
        ran, summary = await scheduler.run_reports("weekly")
        assert ran is True
        assert summary["sent"] == 0
        release.set()
        await first

    async def test_run_reports_without_subscribers(self, session_factory):
        scheduler = PerformanceScheduler(session_factory)
        ran, summary = await scheduler.run_reports("daily")
        assert ran is True
        assert (summary["sent"], summary["failed"]) == (0, 0)


class TestRetention:

    async def _seed(self, db, user):
        subscription = ReportSubscription(user_id=user.id, report_type="daily")
        db.add(subscription)
        await db.flush()
        for day in (date(2025, 1, 1), date(2026, 10, 1)):
            db.add(Score(user_id=user.id, date=day, score_value=70.0, components={}))
        for started in (utc(2025, 1, 1, 8, 0), utc(2026, 10, 1, 8, 0)):
            db.add(SyncLog(sync_type="project_api", status="success", started_at=started))
            db.add(ReportDelivery(subscription_id=subscription.id, recipient_email=user.email,
                                  report_type="daily", status="sent", sent_at=started))
        await db.commit()

    async def test_default_retention_purges_old_rows(self, db, session_factory):
        alice = await make_user(db, "Alice")
        await self._seed(db, alice)

        summary = await purge_expired_data(session_factory, now=utc(2026, 10, 19, 12, 0))
        assert summary == {
            "retention_days": settings.DATA_RETENTION_DAYS,
            "scores": 1,
            "sync_logs": 1,
            "report_deliveries": 1,
        }

        db.expire_all()
        assert (await db.execute(select(Score.date))).scalars().all() == [date(2026, 10, 1)]
        assert len((await db.execute(select(SyncLog))).scalars().all()) == 1
        assert len((await db.execute(select(ReportDelivery))).scalars().all()) == 1

    async def test_stored_retention_period_is_used(self, db, session_factory):
        alice = await make_user(db, "Alice")
        await self._seed(db, alice)
        await set_setting(db, DATA_RETENTION_KEY, {"days": 30})
        await db.commit()

        summary = await purge_expired_data(session_factory, now=utc(2026, 10, 19, 12, 0) + timedelta(days=30))
        assert summary["retention_days"] == 30
        assert summary["scores"] == 2
        assert summary["sync_logs"] == 2
        assert summary["report_deliveries"] == 2

    async def test_retention_job_goes_through_single_flight(self, session_factory):
        scheduler = PerformanceScheduler(session_factory)
        ran, summary = await scheduler.run_retention()
        assert ran is True
        assert summary["scores"] == 0
