from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import aliased
from app.database import get_db
from app.core.auth import get_current_user, require_roles
from app.core.constants import UserRole, COMPLETED_STATUSES
from app.models.user import User
from app.models.task import Task, TaskOwner
from app.models.performance import Score
from app.routers.feedback import list_received_feedback
from app.services.hierarchy import get_all_reports
from app.services.performance import get_latest_score, get_score_history

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


async def _latest_scores(db: AsyncSession, user_ids: list[int]) -> dict:
    """user_id -> newest Score row."""
    if not user_ids:
        return {}
    newest = (
        select(Score.user_id, func.max(Score.date).label("max_date"))
        .where(Score.user_id.in_(user_ids))
        .group_by(Score.user_id)
        .subquery()
    )
    result = await db.execute(
        select(Score).join(
            newest,
            (Score.user_id == newest.c.user_id) & (Score.date == newest.c.max_date),
        )
    )
    return {score.user_id: score for score in result.scalars().all()}


def _member_rows(users, latest: dict) -> list[dict]:
    rows = []
    for user in users:
        score = latest.get(user.id)
        rows.append({
            "id": user.id,
            "name": user.display_name,
            "email": user.email,
            "role": user.role,
            "department": user.department,
            "score": round(score.score_value, 2) if score else None,
            "score_date": score.date.isoformat() if score else None,
        })
    return rows


def _average(rows: list[dict]):
    scored = [row["score"] for row in rows if row["score"] is not None]
    return round(sum(scored) / len(scored), 2) if scored else None


@router.get("/employee")
async def employee_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    latest = await get_latest_score(db, current_user.id)
    history = await get_score_history(db, current_user.id)

    other_owner = aliased(TaskOwner)
    has_owner_rows = select(other_owner.id).where(other_owner.task_id == Task.id).exists()
    owned_task = (
        select(Task.id)
        .outerjoin(TaskOwner, TaskOwner.task_id == Task.id)
        .where(
            (TaskOwner.user_id == current_user.id)
            | ((Task.assignee_id == current_user.id) & ~has_owner_rows)
        )
        .distinct()
        .subquery()
    )
    total = await db.execute(select(func.count()).select_from(owned_task))
    completed = await db.execute(
        select(func.count(Task.id))
        .where(Task.id.in_(select(owned_task.c.id)))
        .where(Task.status.in_(COMPLETED_STATUSES))
    )

    return {
        "user": {"id": current_user.id, "name": current_user.display_name, "role": current_user.role},
        "latest_score": {
            "date": latest.date.isoformat(),
            "score": round(latest.score_value, 2),
            "components": latest.components,
        } if latest else None,
        "score_history": [
            {"date": score.date.isoformat(), "score": round(score.score_value, 2)}
            for score in history
        ],
        "tasks": {"total": total.scalar_one(), "completed": completed.scalar_one()},
        "feedback_received": [
            item.model_dump(mode="json") for item in await list_received_feedback(db, current_user.id)
        ],
    }


@router.get("/manager")
async def manager_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user = Depends(require_roles(UserRole.MANAGER, UserRole.HR_ADMIN))
):
    reports = await get_all_reports(db, current_user.id)
    latest = await _latest_scores(db, [user.id for user in reports])
    members = _member_rows(reports, latest)
    return {
        "team_size": len(members),
        "team_average": _average(members),
        "members": sorted(members, key=lambda row: (row["score"] is None, -(row["score"] or 0))),
    }


@router.get("/hr")
async def hr_dashboard(
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    result = await db.execute(
        select(User).where(User.role == UserRole.EMPLOYEE.value).order_by(User.id)
    )
    employees = result.scalars().all()
    latest = await _latest_scores(db, [user.id for user in employees])
    members = _member_rows(employees, latest)

    role_counts = await db.execute(select(User.role, func.count(User.id)).group_by(User.role))
    tasks_total = await db.execute(select(func.count(Task.id)))
    tasks_completed = await db.execute(
        select(func.count(Task.id)).where(Task.status.in_(COMPLETED_STATUSES))
    )

    return {
        "headcount": {role: count for role, count in role_counts.all()},
        "average_score": _average(members),
        "tasks": {"total": tasks_total.scalar_one(), "completed": tasks_completed.scalar_one()},
        "employees": members,
    }
