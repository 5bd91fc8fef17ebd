from datetime import date
from typing import Literal, Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from app.database import get_db, get_session_factory
from app.core.auth import get_current_user, require_roles
from app.core.constants import UserRole
from app.schemas.report import (
    SubscriptionSettings, DeliveryLogItem, DailySchedule, WeeklySchedule, ReportSchedule,
    ReportResponse, ReportSendResponse,
)
from app.services.audit import record_audit
from app.services.reports import (
    build_report, get_delivery_log, get_subscription, send_reports, set_subscription,
)
from app.services.scheduler import DAILY_REPORT_JOB, WEEKLY_REPORT_JOB
from app.services.settings_store import (
    DAILY_REPORT_TIME_KEY, WEEKLY_REPORT_SCHEDULE_KEY,
    get_daily_report_time, get_weekly_report_schedule, set_setting,
)

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/daily", response_model=ReportResponse)
async def daily_report(
    as_of: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    return await build_report(db, current_user, "daily", as_of)


@router.get("/weekly", response_model=ReportResponse)
async def weekly_report(
    as_of: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(require_roles(UserRole.MANAGER, UserRole.HR_ADMIN))
):
    return await build_report(db, current_user, "weekly", as_of)


@router.post("/{report_type}/send", response_model=ReportSendResponse)
async def send_now(
    report_type: Literal["daily", "weekly"],
    request: Request,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    scheduler = request.app.state.scheduler
    job = DAILY_REPORT_JOB if report_type == "daily" else WEEKLY_REPORT_JOB
    ran, summary = await scheduler.run_single_flight(
        job, lambda: send_reports(session_factory, report_type, scheduler.deliverer)
    )
    if not ran:
        raise HTTPException(409, f"{report_type.capitalize()} reports are already being sent")
    return summary


@router.get("/subscription", response_model=SubscriptionSettings)
async def read_subscription(
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    return await get_subscription(db, admin.id)


@router.put("/subscription", response_model=SubscriptionSettings)
async def update_subscription(
    payload: SubscriptionSettings,
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    subscription = await set_subscription(db, admin.id, payload.daily_enabled, payload.weekly_enabled)
    record_audit(db, admin.id, "update_report_subscription", admin.id, subscription)
    await db.commit()
    return subscription


@router.get("/delivery-log", response_model=list[DeliveryLogItem])
async def delivery_log(
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    return await get_delivery_log(db, admin.id)


@router.get("/schedule", response_model=ReportSchedule)
async def read_schedule(
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    return ReportSchedule(
        daily=DailySchedule(**await get_daily_report_time(db)),
        weekly=WeeklySchedule(**await get_weekly_report_schedule(db)),
    )


@router.put("/daily-schedule", response_model=DailySchedule)
async def update_daily_schedule(
    payload: DailySchedule,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    await set_setting(db, DAILY_REPORT_TIME_KEY, payload.model_dump())
    record_audit(db, admin.id, "update_daily_report_schedule", DAILY_REPORT_TIME_KEY, payload.model_dump())
    await db.commit()
    request.app.state.scheduler.reschedule_daily_reports(payload.hour, payload.minute)
    return payload


@router.put("/weekly-schedule", response_model=WeeklySchedule)
async def update_weekly_schedule(
    payload: WeeklySchedule,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    await set_setting(db, WEEKLY_REPORT_SCHEDULE_KEY, payload.model_dump())
    record_audit(db, admin.id, "update_weekly_report_schedule", WEEKLY_REPORT_SCHEDULE_KEY, payload.model_dump())
    await db.commit()
    request.app.state.scheduler.reschedule_weekly_reports(payload.day, payload.hour, payload.minute)
    return payload
