from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from app.database import get_db, get_session_factory
from app.core.auth import get_current_user, require_roles, ensure_can_view
from app.core.constants import UserRole
from app.schemas.performance import (
    ScoreResponse, ScoreHistoryResponse, ScorePreviewResponse, ScoreGenerationResponse,
)
from app.services.performance import calculate_user_score, generate_all_scores, get_score_history
from app.services.scheduler import SCORE_JOB

router = APIRouter(prefix="/scores", tags=["performance"])


@router.post("/generate", response_model=ScoreGenerationResponse)
async def generate_scores(
    request: Request,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    ran, summary = await request.app.state.scheduler.run_single_flight(
        SCORE_JOB, lambda: generate_all_scores(session_factory)
    )
    if not ran:
        raise HTTPException(409, "Score generation is already running")
    return summary


@router.get("/{user_id}", response_model=ScoreHistoryResponse)
async def get_scores(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    await ensure_can_view(db, current_user, user_id)
    history = await get_score_history(db, user_id)
    return ScoreHistoryResponse(
        user_id=user_id,
        latest=ScoreResponse.model_validate(history[0]) if history else None,
        history=[ScoreResponse.model_validate(score) for score in history],
    )


@router.get("/{user_id}/preview", response_model=ScorePreviewResponse)
async def preview_score(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    # Computed on the fly, nothing is stored
    await ensure_can_view(db, current_user, user_id)
    today = datetime.now(timezone.utc).date()
    result = await calculate_user_score(db, user_id, today)
    return ScorePreviewResponse(
        user_id=user_id,
        date=today,
        score_value=round(result.score_value, 2),
        components=result.components,
    )
