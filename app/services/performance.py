import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.constants import UserRole, is_task_completed, priority_weight
from app.models.performance import Score
from app.models.task import Task, TaskOwner
from app.models.time_log import TimeLog
from app.models.user import User
from app.services.apportionment import share_weight
from app.services.settings_store import COMPONENT_NAMES, get_scoring_weights, normalize_weights

logger = logging.getLogger(__name__)

LOOKBACK_DAYS = 30

# Returned when a calculator has nothing to measure, so new users don't score 0
FALLBACK_SCORE = 70.0
ALL_TASKS_COMPLETED_PROGRESS_SCORE = 90.0

# (low, high, score) for the logged / estimated ratio, checked in order
EFFICIENCY_BUCKETS = (
    (0.8, 1.2, 100.0),
    (0.6, 1.5, 85.0),
    (0.4, 2.0, 65.0),
)
EFFICIENCY_OUTSIDE_BUCKETS_SCORE = 40.0


@dataclass
class OwnedTask:
    task: Task
    weight: float  # share weight, 0–1


@dataclass
class UserScore:
    score_value: float
    components: Dict = field(default_factory=dict)


def scoring_window(as_of: date):
    """30-day lookback ending at the end of ``as_of`` (inclusive)."""
    if isinstance(as_of, datetime):
        as_of = as_of.date()
    start = datetime.combine(as_of - timedelta(days=LOOKBACK_DAYS), time.min, tzinfo=timezone.utc)
    end = datetime.combine(as_of, time.max, tzinfo=timezone.utc)
    return start, end


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Data loading
# ---------------------------------------------------------------------------

async def get_owned_tasks(db: AsyncSession, user_id: int, start: datetime, end: datetime) -> List[OwnedTask]:
    """Tasks created inside the window that the user owns, with the user's share weight.

    Ownership comes from task_owners. A task without any owner rows belongs
    entirely to its assignee.
    """
    shared = await db.execute(
        select(Task, TaskOwner.share_percentage)
        .join(TaskOwner, TaskOwner.task_id == Task.id)
        .where(TaskOwner.user_id == user_id)
        .where(Task.created_at >= start)
        .where(Task.created_at <= end)
    )
    owned = [OwnedTask(task=task, weight=share_weight(share)) for task, share in shared.all()]

    has_owner_rows = select(TaskOwner.id).where(TaskOwner.task_id == Task.id).exists()
    unshared = await db.execute(
        select(Task)
        .where(Task.assignee_id == user_id)
        .where(Task.created_at >= start)
        .where(Task.created_at <= end)
        .where(~has_owner_rows)
    )
    owned.extend(OwnedTask(task=task, weight=1.0) for task in unshared.scalars().all())
    return owned


async def get_logged_minutes(db: AsyncSession, user_id: int, start: datetime, end: datetime) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(TimeLog.minutes), 0))
        .where(TimeLog.user_id == user_id)
        .where(TimeLog.logged_at >= start)
        .where(TimeLog.logged_at <= end)
    )
    return int(result.scalar_one() or 0)


# ---------------------------------------------------------------------------
# Component calculators. Each returns a value in [0, 100].
# ---------------------------------------------------------------------------

def task_completion_score(owned: Sequence[OwnedTask]) -> float:
    total = sum(o.weight for o in owned)
    if total <= 0:
        return FALLBACK_SCORE
    done = sum(o.weight for o in owned if is_task_completed(o.task.status))
    return _clamp(done / total * 100)


def timeliness_score(owned: Sequence[OwnedTask]) -> float:
    """On-time share of completed tasks. Tasks missing a due or completion date are ignored."""
    measurable = [
        o for o in owned
        if is_task_completed(o.task.status) and o.task.completed_at and o.task.due_date
    ]
    total = sum(o.weight for o in measurable)
    if total <= 0:
        return FALLBACK_SCORE
    on_time = sum(
        o.weight for o in measurable
        if _as_utc(o.task.completed_at) <= _as_utc(o.task.due_date)
    )
    return _clamp(on_time / total * 100)


def efficiency_score(owned: Sequence[OwnedTask], logged_minutes: int) -> float:
    estimated_minutes = sum(
        o.task.estimated_hours * 60 * o.weight for o in owned if o.task.estimated_hours
    )
    if estimated_minutes <= 0 or logged_minutes <= 0:
        return FALLBACK_SCORE

    # Share weights like 0.33 leave float noise on bucket edges
    ratio = round(logged_minutes / estimated_minutes, 9)
    for low, high, score in EFFICIENCY_BUCKETS:
        if low <= ratio <= high:
            return score
    return EFFICIENCY_OUTSIDE_BUCKETS_SCORE


def progress_quality_score(owned: Sequence[OwnedTask]) -> float:
    """Weighted progress over active tasks; a manager-validated figure wins over the reported one."""
    if not owned:
        return FALLBACK_SCORE
    active = [o for o in owned if not is_task_completed(o.task.status)]
    if not active:
        return ALL_TASKS_COMPLETED_PROGRESS_SCORE
    total = sum(o.weight for o in active)
    if total <= 0:
        return FALLBACK_SCORE
    progress = sum(o.task.effective_percentage * o.weight for o in active)
    return _clamp(progress / total)


def priority_focus_score(owned: Sequence[OwnedTask]) -> float:
    total = sum(priority_weight(o.task.priority) * o.weight for o in owned)
    if total <= 0:
        return FALLBACK_SCORE
    done = sum(
        priority_weight(o.task.priority) * o.weight
        for o in owned if is_task_completed(o.task.status)
    )
    return _clamp(done / total * 100)


def aggregate(components: Dict[str, float], weights: Dict[str, float]) -> float:
    return _clamp(sum(components[name] * weights[name] for name in COMPONENT_NAMES))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

async def calculate_user_score(db: AsyncSession, user_id: int, as_of: Optional[date] = None) -> UserScore:
    as_of = as_of or datetime.now(timezone.utc).date()
    start, end = scoring_window(as_of)

    weights = normalize_weights(await get_scoring_weights(db))
    owned = await get_owned_tasks(db, user_id, start, end)
    logged_minutes = await get_logged_minutes(db, user_id, start, end)

    components = {
        "taskCompletion": task_completion_score(owned),
        "timeliness": timeliness_score(owned),
        "efficiency": efficiency_score(owned, logged_minutes),
        "progressQuality": progress_quality_score(owned),
        "priorityFocus": priority_focus_score(owned),
    }
    score_value = aggregate(components, weights)
    components["weights"] = weights

    logger.debug("User %s scored %.2f for %s (%d owned tasks)", user_id, score_value, as_of, len(owned))
    return UserScore(score_value=score_value, components=components)


async def save_score(db: AsyncSession, user_id: int, score_date: date, result: UserScore) -> bool:
    """Insert the day's score unless one already exists. Returns False when skipped."""
    values = dict(
        user_id=user_id,
        date=score_date,
        score_value=result.score_value,
        components=result.components,
    )
    dialect = db.get_bind().dialect.name
    if dialect in ("postgresql", "sqlite"):
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(Score).values(**values).on_conflict_do_nothing(index_elements=["user_id", "date"])
        outcome = await db.execute(stmt)
        await db.commit()
        return outcome.rowcount == 1

    existing = await db.execute(
        select(Score.id).where(Score.user_id == user_id).where(Score.date == score_date)
    )
    if existing.scalar_one_or_none() is not None:
        return False
    db.add(Score(**values))
    await db.commit()
    return True


async def generate_all_scores(session_factory: Optional[async_sessionmaker] = None, as_of: Optional[date] = None) -> Dict:
    """Score every employee for ``as_of`` (today by default).

    Each user runs in its own session so one failure can't poison the rest.
    """
    if session_factory is None:
        from app.database import AsyncSessionLocal
        session_factory = AsyncSessionLocal
    as_of = as_of or datetime.now(timezone.utc).date()

    async with session_factory() as db:
        result = await db.execute(
            select(User.id).where(User.role == UserRole.EMPLOYEE.value).order_by(User.id)
        )
        employee_ids = result.scalars().all()

    generated, skipped, failed = 0, 0, []
    for user_id in employee_ids:
        try:
            async with session_factory() as db:
                score = await calculate_user_score(db, user_id, as_of)
                inserted = await save_score(db, user_id, as_of, score)
        except Exception:
            logger.exception("Score generation failed for user %s on %s", user_id, as_of)
            failed.append(user_id)
            continue
        if inserted:
            generated += 1
        else:
            skipped += 1

    logger.info(
        "Score generation for %s: %d generated, %d skipped, %d failed",
        as_of, generated, skipped, len(failed),
    )
    return {"date": as_of.isoformat(), "generated": generated, "skipped": skipped, "failed": failed}


async def get_latest_score(db: AsyncSession, user_id: int) -> Optional[Score]:
    result = await db.execute(
        select(Score)
        .where(Score.user_id == user_id)
        .order_by(Score.date.desc(), Score.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_score_history(db: AsyncSession, user_id: int) -> List[Score]:
    result = await db.execute(
        select(Score).where(Score.user_id == user_id).order_by(Score.date.desc())
    )
    return list(result.scalars().all())
