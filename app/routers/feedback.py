from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.database import get_db
from app.core.auth import get_current_user, ensure_can_view
from app.models.feedback import Feedback
from app.models.user import User
from app.schemas.feedback import FeedbackCreate, FeedbackResponse, ReceivedFeedbackItem
from app.services.audit import record_audit

router = APIRouter(prefix="/feedback", tags=["feedback"])


async def list_received_feedback(db: AsyncSession, user_id: int) -> list[ReceivedFeedbackItem]:
    result = await db.execute(
        select(Feedback, User.name, User.email)
        .join(User, User.id == Feedback.from_user_id)
        .where(Feedback.to_user_id == user_id)
        .order_by(Feedback.created_at.desc(), Feedback.id.desc())
    )
    items = []
    for fb, name, email in result.all():
        item = ReceivedFeedbackItem.model_validate(fb)
        item.from_user_name = name or email.split("@")[0]
        item.from_user_email = email
        items.append(item)
    return items


@router.post("", response_model=FeedbackResponse)
async def create_feedback(
    feedback_in: FeedbackCreate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    if feedback_in.to_user_id == current_user.id:
        raise HTTPException(400, "You cannot give feedback to yourself")
    if not await db.get(User, feedback_in.to_user_id):
        raise HTTPException(404, "Recipient not found")

    fb = Feedback(
        from_user_id=current_user.id,
        to_user_id=feedback_in.to_user_id,
        rating=feedback_in.rating,
        category=list(dict.fromkeys(feedback_in.category)),
        comment=feedback_in.comment,
    )
    db.add(fb)
    record_audit(
        db, current_user.id, "create_feedback", feedback_in.to_user_id,
        {"rating": fb.rating, "category": fb.category},
    )
    await db.commit()
    await db.refresh(fb)
    return fb


@router.get("/to/{user_id}", response_model=list[ReceivedFeedbackItem])
async def get_feedback_for_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    await ensure_can_view(db, current_user, user_id)
    return await list_received_feedback(db, user_id)
