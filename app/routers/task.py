import io
from fastapi import APIRouter, Depends, HTTPException, UploadFile, File
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_, and_
from sqlalchemy.orm import aliased
from app.database import get_db
from app.core.auth import get_current_user, require_roles
from app.core.constants import UserRole, VALIDATOR_ROLES
from app.models.task import Task, TaskOwner
from app.models.user import User
from app.schemas.task import (
    TaskResponse, OwnedTaskResponse, TaskValidationRequest, TaskValidationResponse,
    ValidationHistoryItem, ImportResult,
)
from app.services.task_validation import validate_task, get_validation_history
from app.services.spreadsheet_import import import_tasks_csv, import_tasks_xlsx, DEFAULT_PROJECT_NAME

router = APIRouter(prefix="/tasks", tags=["tasks"])

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


async def _owner_ids(db: AsyncSession, task: Task) -> set:
    result = await db.execute(select(TaskOwner.user_id).where(TaskOwner.task_id == task.id))
    return set(result.scalars().all()) | {task.assignee_id}


@router.get("/me", response_model=list[OwnedTaskResponse])
async def get_my_tasks(
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    # Same ownership rule as scoring: owner rows win, the assignee only owns
    # tasks that have none
    other_owner = aliased(TaskOwner)
    has_owner_rows = select(other_owner.id).where(other_owner.task_id == Task.id).exists()
    result = await db.execute(
        select(Task, TaskOwner.share_percentage)
        .outerjoin(TaskOwner, (TaskOwner.task_id == Task.id) & (TaskOwner.user_id == current_user.id))
        .where(or_(
            TaskOwner.user_id == current_user.id,
            and_(Task.assignee_id == current_user.id, ~has_owner_rows),
        ))
        .order_by(Task.due_date, Task.id)
    )
    return [
        OwnedTaskResponse(
            task=TaskResponse.model_validate(task),
            share_percentage=share if share is not None else 100,
        )
        for task, share in result.all()
    ]


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    task = await db.get(Task, task_id)
    if not task:
        raise HTTPException(404, "Task not found")
    if current_user.role not in VALIDATOR_ROLES and current_user.id not in await _owner_ids(db, task):
        raise HTTPException(404, "Task not found")
    return task


@router.post("/{task_id}/validate", response_model=TaskValidationResponse)
async def validate(
    task_id: int,
    payload: TaskValidationRequest,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(require_roles(UserRole.MANAGER, UserRole.HR_ADMIN))
):
    applied = await validate_task(
        db, task_id, payload.new_percentage, payload.validation_comment, current_user
    )
    return TaskValidationResponse(task_id=task_id, **applied)


@router.get("/{task_id}/validation-history", response_model=list[ValidationHistoryItem])
async def validation_history(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    if current_user.role not in VALIDATOR_ROLES:
        task = await db.get(Task, task_id)
        if not task or current_user.id not in await _owner_ids(db, task):
            raise HTTPException(404, "Task not found")

    rows = await get_validation_history(db, task_id)

    validator_ids = {row.validated_by for row in rows}
    validators = {}
    if validator_ids:
        result = await db.execute(select(User).where(User.id.in_(validator_ids)))
        validators = {user.id: user for user in result.scalars().all()}

    return [
        ValidationHistoryItem(
            id=row.id,
            task_id=row.task_id,
            old_percentage=row.old_percentage,
            new_percentage=row.new_percentage,
            validated_by=row.validated_by,
            validator_name=validators[row.validated_by].display_name if row.validated_by in validators else None,
            validator_email=validators[row.validated_by].email if row.validated_by in validators else None,
            validation_comment=row.validation_comment,
            created_at=row.created_at,
        )
        for row in rows
    ]


@router.post("/import", response_model=ImportResult)
async def import_tasks(
    file: UploadFile = File(...),
    project_name: str = DEFAULT_PROJECT_NAME,
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    content = await file.read()
    if (file.filename or "").lower().endswith(".xlsx") or file.content_type == XLSX_CONTENT_TYPE:
        try:
            return await import_tasks_xlsx(db, content, project_name)
        except ValueError as e:
            raise HTTPException(400, str(e))
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(400, "File must be a UTF-8 encoded CSV or an .xlsx workbook")
    return await import_tasks_csv(db, io.StringIO(text), project_name)
