"""Daily and weekly performance reports and their delivery to subscribers.

Reports are plain data; rendering them into email is left to whatever sits
behind ``REPORT_WEBHOOK_URL``. Each delivery attempt is logged.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional

import httpx
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.constants import UserRole, is_task_completed
from app.core.exceptions import NotFoundError, ValidationError
from app.models.feedback import Feedback
from app.models.performance import Score
from app.models.report import ReportDelivery, ReportSubscription
from app.models.user import User
from app.services.performance import get_owned_tasks

logger = logging.getLogger(__name__)

REPORT_TYPES = ("daily", "weekly")
WINDOW_DAYS = {"daily": 1, "weekly": 7}
# Scores are compared with the day a week before the window opens
COMPARISON_OFFSET_DAYS = 7
TREND_BAND = 2.0
TOP_PERFORMERS = 5
DELIVERY_LOG_LIMIT = 50


class ReportDeliveryError(Exception):
    pass


def trend(current: float, previous: float) -> str:
    if current > previous + TREND_BAND:
        return "up"
    if current < previous - TREND_BAND:
        return "down"
    return "stable"


def _window(as_of: date, window_days: int):
    start_day = as_of - timedelta(days=window_days)
    start = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(as_of, time.max, tzinfo=timezone.utc)
    return start_day, start, end


async def _scores_on(db: AsyncSession, user_ids: List[int], day: date) -> Dict[int, float]:
    if not user_ids:
        return {}
    result = await db.execute(
        select(Score.user_id, Score.score_value)
        .where(Score.user_id.in_(user_ids))
        .where(Score.date == day)
    )
    return dict(result.all())


async def build_user_report(db: AsyncSession, user_id: int, as_of: date, window_days: int = 1) -> Optional[Dict]:
    """One employee's score, trend, task and feedback figures. None without a score on ``as_of``."""
    start_day, start, end = _window(as_of, window_days)
    result = await db.execute(
        select(Score).where(Score.user_id == user_id).where(Score.date == as_of)
    )
    current = result.scalar_one_or_none()
    if current is None:
        return None

    previous_scores = await _scores_on(db, [user_id], start_day - timedelta(days=COMPARISON_OFFSET_DAYS))
    previous = previous_scores.get(user_id, current.score_value)

    owned = await get_owned_tasks(db, user_id, start, end)
    feedback = await db.execute(
        select(func.count(Feedback.id), func.avg(Feedback.rating))
        .where(Feedback.to_user_id == user_id)
        .where(Feedback.created_at >= start)
        .where(Feedback.created_at <= end)
    )
    feedback_count, avg_rating = feedback.one()

    return {
        "score": round(current.score_value, 2),
        "previous_score": round(previous, 2),
        "trend": trend(current.score_value, previous),
        "components": current.components,
        "tasks_completed": sum(1 for item in owned if is_task_completed(item.task.status)),
        "tasks_total": len(owned),
        "feedback_count": feedback_count or 0,
        "avg_feedback_rating": round(float(avg_rating), 2) if avg_rating is not None else 0.0,
    }


async def build_team_report(db: AsyncSession, manager_id: Optional[int], as_of: date, window_days: int = 7) -> Dict:
    """Top performers, average and week-over-week change for a team.

    The team is the manager's direct reports, or every employee when
    ``manager_id`` is None.
    """
    start_day, _, _ = _window(as_of, window_days)
    if manager_id is not None:
        members_query = select(User).where(User.manager_id == manager_id)
    else:
        members_query = select(User).where(User.role == UserRole.EMPLOYEE.value)
    members = (await db.execute(members_query.order_by(User.id))).scalars().all()
    if not members:
        return {"top_performers": [], "average_score": 0.0, "total_employees": 0, "improvement_rate": 0.0}

    member_ids = [member.id for member in members]
    current = await _scores_on(db, member_ids, as_of)
    previous = await _scores_on(db, member_ids, start_day - timedelta(days=COMPARISON_OFFSET_DAYS))

    average = sum(current.values()) / len(current) if current else 0.0
    previous_average = sum(previous.values()) / len(previous) if previous else average
    improvement = (average - previous_average) / previous_average * 100 if previous_average > 0 else 0.0

    by_id = {member.id: member for member in members}
    ranked = sorted(current.items(), key=lambda item: (-item[1], item[0]))[:TOP_PERFORMERS]
    top = [
        {
            "user_id": user_id,
            "name": by_id[user_id].display_name,
            "department": by_id[user_id].department,
            "score": round(score, 2),
            "trend": trend(score, previous.get(user_id, score)),
        }
        for user_id, score in ranked
    ]
    return {
        "top_performers": top,
        "average_score": round(average, 2),
        "total_employees": len(members),
        "improvement_rate": round(improvement, 2),
    }


async def build_report(db: AsyncSession, user: User, report_type: str, as_of: Optional[date] = None) -> Dict:
    """Daily: the user's own figures. Weekly: their team (everyone for HR)."""
    as_of = as_of or datetime.now(timezone.utc).date()
    if report_type == "daily":
        performance = await build_user_report(db, user.id, as_of, WINDOW_DAYS["daily"])
        if performance is None:
            raise NotFoundError("No performance data available")
        body = {"performance": performance}
    elif report_type == "weekly":
        manager_id = None if user.role == UserRole.HR_ADMIN.value else user.id
        body = {"team": await build_team_report(db, manager_id, as_of, WINDOW_DAYS["weekly"])}
    else:
        raise ValidationError(f"Unknown report type: {report_type}")

    return {
        "report_type": report_type,
        "date": as_of.isoformat(),
        "user": {"id": user.id, "name": user.display_name, "email": user.email, "role": user.role},
        **body,
    }


def report_subject(report_type: str, as_of: date) -> str:
    if report_type == "daily":
        return f"Daily Performance Report - {as_of.isoformat()}"
    return f"Weekly Performance Report - Week of {as_of.isoformat()}"


class ReportDeliverer:
    """Posts report data to a mail relay webhook that renders and sends it."""

    def __init__(self, url: Optional[str] = None, token: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url if url is not None else settings.REPORT_WEBHOOK_URL
        self.token = token if token is not None else settings.REPORT_WEBHOOK_TOKEN
        self.timeout = timeout if timeout is not None else settings.REPORT_WEBHOOK_TIMEOUT_SECONDS
        self._transport = transport

    async def deliver(self, to: str, subject: str, report: Dict) -> Optional[str]:
        """Returns the relay's message id, if it sends one."""
        if not self.url:
            raise ReportDeliveryError("REPORT_WEBHOOK_URL is not configured")
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(self.url, json={"to": to, "subject": subject, "report": report},
                                             headers=headers)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise ReportDeliveryError(str(e)) from e
        if response.headers.get("content-type", "").startswith("application/json"):
            message_id = response.json().get("id")
            return str(message_id) if message_id is not None else None
        return None


async def send_reports(session_factory: Optional[async_sessionmaker] = None, report_type: str = "daily",
                       deliverer: Optional[ReportDeliverer] = None, as_of: Optional[date] = None) -> Dict:
    """Send ``report_type`` to every enabled subscriber and log each attempt.

    A subscriber without data, or a failed delivery, is logged and the run goes on.
    """
    if session_factory is None:
        from app.database import AsyncSessionLocal
        session_factory = AsyncSessionLocal
    deliverer = deliverer or ReportDeliverer()
    as_of = as_of or datetime.now(timezone.utc).date()
    sent, failed = 0, 0

    async with session_factory() as db:
        result = await db.execute(
            select(ReportSubscription, User)
            .join(User, User.id == ReportSubscription.user_id)
            .where(ReportSubscription.report_type == report_type)
            .where(ReportSubscription.enabled.is_(True))
            .order_by(ReportSubscription.id)
        )
        for subscription, user in result.all():
            delivery = ReportDelivery(
                subscription_id=subscription.id,
                recipient_email=user.email,
                report_type=report_type,
            )
            try:
                report = await build_report(db, user, report_type, as_of)
                delivery.message_id = await deliverer.deliver(user.email, report_subject(report_type, as_of), report)
            except (NotFoundError, ReportDeliveryError) as e:
                logger.warning("%s report for %s not sent: %s", report_type, user.email, e)
                delivery.status = "failed"
                delivery.error_message = str(e)
                failed += 1
            else:
                delivery.status = "sent"
                subscription.last_sent_at = datetime.now(timezone.utc)
                sent += 1
            db.add(delivery)
            await db.commit()

    logger.info("%s reports for %s: %d sent, %d failed", report_type, as_of, sent, failed)
    return {"report_type": report_type, "date": as_of.isoformat(), "sent": sent, "failed": failed}


async def get_subscription(db: AsyncSession, user_id: int) -> Dict[str, bool]:
    result = await db.execute(select(ReportSubscription).where(ReportSubscription.user_id == user_id))
    enabled = {row.report_type: row.enabled for row in result.scalars().all()}
    return {"daily_enabled": enabled.get("daily", False), "weekly_enabled": enabled.get("weekly", False)}


async def set_subscription(db: AsyncSession, user_id: int, daily_enabled: bool, weekly_enabled: bool) -> Dict[str, bool]:
    """Upsert both subscription rows. The caller commits."""
    result = await db.execute(select(ReportSubscription).where(ReportSubscription.user_id == user_id))
    existing = {row.report_type: row for row in result.scalars().all()}
    for report_type, enabled in (("daily", daily_enabled), ("weekly", weekly_enabled)):
        row = existing.get(report_type)
        if row is None:
            db.add(ReportSubscription(user_id=user_id, report_type=report_type, enabled=enabled))
        else:
            row.enabled = enabled
    await db.flush()
    return {"daily_enabled": daily_enabled, "weekly_enabled": weekly_enabled}


async def get_delivery_log(db: AsyncSession, user_id: int, limit: int = DELIVERY_LOG_LIMIT) -> List[ReportDelivery]:
    result = await db.execute(
        select(ReportDelivery)
        .join(ReportSubscription, ReportSubscription.id == ReportDelivery.subscription_id)
        .where(ReportSubscription.user_id == user_id)
        .order_by(ReportDelivery.sent_at.desc(), ReportDelivery.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
