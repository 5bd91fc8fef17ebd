"""Manager validation of employee-reported task progress.

A validation overrides ``progress_percentage`` with an authoritative
``manager_validated_percentage`` and appends one row to
``task_validation_history``. Both writes share one transaction, and the task
row is read ``FOR UPDATE`` so that concurrent validators line up behind each
other and every history row records the value that was really replaced.
"""
import logging
import math
from datetime import datetime, timezone
from numbers import Number
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.constants import VALIDATOR_ROLES
from app.core.exceptions import NotFoundError, ValidationError
from app.models.task import Task, TaskValidationHistory
from app.models.user import User

logger = logging.getLogger(__name__)

MIN_COMMENT_LENGTH = 10
MAX_COMMENT_LENGTH = 1000


def check_percentage(value) -> int:
    """Accept whole numbers in [0, 100], including floats like ``75.0``."""
    if isinstance(value, bool) or not isinstance(value, Number):
        raise ValidationError("Percentage must be a number between 0 and 100")
    if not math.isfinite(value):
        raise ValidationError("Percentage must be a number between 0 and 100")
    if int(value) != value:
        raise ValidationError("Percentage must be a whole number")
    value = int(value)
    if not 0 <= value <= 100:
        raise ValidationError("Percentage must be between 0 and 100")
    return value


def check_comment(comment) -> str:
    comment = (comment or "").strip()
    if len(comment) < MIN_COMMENT_LENGTH:
        raise ValidationError(f"Validation comment must be at least {MIN_COMMENT_LENGTH} characters")
    if len(comment) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"Validation comment must be at most {MAX_COMMENT_LENGTH} characters")
    return comment


def check_validator(validator: User) -> None:
    if validator is None or validator.role not in VALIDATOR_ROLES:
        raise ValidationError("Only managers and HR admins can validate tasks")


def locked_task_query(task_id: int):
    # populate_existing: a task already in the session identity map must be
    # refreshed from the locked row, not served from memory
    return (
        select(Task)
        .where(Task.id == task_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


async def validate_task(
    db: AsyncSession,
    task_id: int,
    new_percentage,
    validation_comment: str,
    validator: User,
) -> Dict[str, int]:
    """Record a manager-validated completion percentage for a task.

    Input is checked before the transaction starts. Re-validating with an
    unchanged value still appends a history row.
    """
    new_percentage = check_percentage(new_percentage)
    comment = check_comment(validation_comment)
    check_validator(validator)
    validator_id = validator.id

    try:
        result = await db.execute(locked_task_query(task_id))
        task = result.scalar_one_or_none()
        if task is None:
            raise NotFoundError("Task not found")

        old_percentage = task.effective_percentage

        task.manager_validated_percentage = new_percentage
        task.validated_by = validator_id
        task.validated_at = datetime.now(timezone.utc)
        task.validation_comment = comment

        db.add(TaskValidationHistory(
            task_id=task_id,
            old_percentage=old_percentage,
            new_percentage=new_percentage,
            validated_by=validator_id,
            validation_comment=comment,
        ))
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Task %s validated by user %s: %s%% -> %s%%",
        task_id, validator_id, old_percentage, new_percentage,
    )
    return {"old_percentage": old_percentage, "new_percentage": new_percentage}


async def get_validation_history(db: AsyncSession, task_id: int) -> List[TaskValidationHistory]:
    """All validation rows for a task, oldest first."""
    task = await db.execute(select(Task.id).where(Task.id == task_id))
    if task.scalar_one_or_none() is None:
        raise NotFoundError("Task not found")

    result = await db.execute(
        select(TaskValidationHistory)
        .where(TaskValidationHistory.task_id == task_id)
        .order_by(TaskValidationHistory.created_at, TaskValidationHistory.id)
    )
    return list(result.scalars().all())
