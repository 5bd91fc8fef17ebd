"""Normalizes task rows coming from the project tool or a spreadsheet into
projects, tasks, task owners and time logs."""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.constants import UserRole
from app.models.project import Project
from app.models.task import Task, TaskOwner
from app.models.time_log import TimeLog
from app.models.user import User
from app.services.apportionment import apportion

logger = logging.getLogger(__name__)

UNASSIGNED_OWNER = "Unassigned User"
HOURS_PER_DAY = 8

STATUS_MAP = {
    "done": "completed",
    "completed": "completed",
    "open": "todo",
    "todo": "todo",
    "in progress": "in_progress",
    "in_progress": "in_progress",
    "on hold": "on_hold",
    "on_hold": "on_hold",
}

PRIORITY_MAP = {
    "high": "high",
    "medium": "medium",
    "low": "low",
    "none": "low",
}


@dataclass
class TaskRecord:
    title: str
    owners: List[str]  # emails or display names, first one is the primary owner
    external_id: Optional[str] = None
    description: Optional[str] = None
    created_by: Optional[str] = None
    status: str = "todo"
    priority: str = "medium"
    estimated_hours: Optional[float] = None
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    progress_percentage: int = 0
    work_minutes: int = 0


@dataclass
class UserCache:
    by_key: Dict[str, User] = field(default_factory=dict)
    created: int = 0


def map_status(raw) -> str:
    return STATUS_MAP.get(str(raw or "").strip().lower(), "todo")


def map_priority(raw) -> str:
    if raw is None or str(raw).strip() == "":
        return "medium"
    return PRIORITY_MAP.get(str(raw).strip().lower(), "medium")


def parse_owner_list(raw) -> List[str]:
    if not raw:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    owners = []
    for owner in raw:
        owner = str(owner).strip()
        if owner and owner != UNASSIGNED_OWNER and owner not in owners:
            owners.append(owner)
    return owners


def email_for_name(name: str) -> str:
    local = re.sub(r"\s+", ".", name.strip().lower())
    return f"{local}@{settings.IMPORT_EMAIL_DOMAIN}"


async def resolve_user(db: AsyncSession, identifier: str, cache: UserCache) -> User:
    """Find a user by email (if ``identifier`` looks like one) or name; create an employee otherwise."""
    key = identifier.strip().lower()
    if key in cache.by_key:
        return cache.by_key[key]

    if "@" in identifier:
        result = await db.execute(select(User).where(func.lower(User.email) == key))
    else:
        result = await db.execute(
            select(User).where(func.lower(User.name) == key).order_by(User.id).limit(1)
        )
    user = result.scalar_one_or_none()

    if user is None and "@" not in identifier:
        # Accounts synced by email (no name yet) own the generated address
        generated = email_for_name(identifier)
        result = await db.execute(select(User).where(func.lower(User.email) == generated.lower()))
        user = result.scalar_one_or_none()
        if user is not None and not user.name:
            user.name = identifier.strip()

    if user is None:
        if "@" in identifier:
            user = User(email=identifier.strip(), name=None, role=UserRole.EMPLOYEE.value)
        else:
            user = User(email=generated, name=identifier.strip(), role=UserRole.EMPLOYEE.value)
        db.add(user)
        await db.flush()
        cache.created += 1
        logger.info("Created employee %s from imported task data", user.email)

    cache.by_key[key] = user
    return user


async def get_or_create_project(db: AsyncSession, name: str, external_id: Optional[str] = None) -> Project:
    if external_id is not None:
        stmt = select(Project).where(Project.external_id == external_id)
    else:
        stmt = select(Project).where(Project.name == name).where(Project.external_id.is_(None))
    result = await db.execute(stmt)
    project = result.scalars().first()
    if project is None:
        project = Project(name=name, external_id=external_id)
        db.add(project)
        await db.flush()
    elif project.name != name:
        project.name = name
    return project


async def _logged_minutes_for_task(db: AsyncSession, task_id: int) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(TimeLog.minutes), 0)).where(TimeLog.task_id == task_id)
    )
    return int(result.scalar_one() or 0)


async def ingest_task_record(db: AsyncSession, project: Project, record: TaskRecord, cache: UserCache) -> Optional[Task]:
    """Create or update one task with its owners and time logs. Returns None if it has no owners.

    Validation fields are never touched here. Owner rows are rewritten with an
    even 100% split; logged work only grows, by the amount not yet on record.
    """
    owner_names = parse_owner_list(record.owners)
    if not owner_names:
        return None

    owners = []
    for name in owner_names:
        user = await resolve_user(db, name, cache)
        if user not in owners:
            owners.append(user)
    creator = await resolve_user(db, record.created_by, cache) if record.created_by else owners[0]

    task = None
    if record.external_id is not None:
        result = await db.execute(select(Task).where(Task.external_id == record.external_id))
        task = result.scalar_one_or_none()
    if task is None:
        task = Task(external_id=record.external_id, project_id=project.id, created_by=creator.id)
        db.add(task)

    task.project_id = project.id
    task.title = record.title
    task.description = record.description
    task.assignee_id = owners[0].id
    task.status = record.status
    task.priority = record.priority
    task.estimated_hours = record.estimated_hours
    task.start_date = record.start_date
    task.due_date = record.due_date
    task.completed_at = record.completed_at
    task.progress_percentage = max(0, min(100, int(record.progress_percentage or 0)))
    await db.flush()

    await db.execute(delete(TaskOwner).where(TaskOwner.task_id == task.id))
    shares = apportion([user.id for user in owners], 100)
    for user in owners:
        db.add(TaskOwner(task_id=task.id, user_id=user.id, share_percentage=shares[user.id]))

    new_minutes = (record.work_minutes or 0) - await _logged_minutes_for_task(db, task.id)
    if new_minutes > 0:
        minutes_by_owner = apportion([user.id for user in owners], new_minutes)
        for user in owners:
            if minutes_by_owner[user.id] > 0:
                db.add(TimeLog(
                    task_id=task.id,
                    user_id=user.id,
                    minutes=minutes_by_owner[user.id],
                    description=f"Work on {record.title}",
                    logged_at=record.completed_at or datetime.now(timezone.utc),
                ))
    await db.flush()
    return task
