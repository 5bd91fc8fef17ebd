from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.core.auth import get_current_user, require_roles
from app.core.constants import UserRole
from app.schemas.settings import (
    ScoringWeights, ScoringWeightsResponse, SyncIntervalUpdate, DataRetentionUpdate, AllSettingsResponse,
)
from app.services.audit import record_audit
from app.services.settings_store import (
    SCORING_WEIGHTS_KEY, SYNC_INTERVAL_KEY, DATA_RETENTION_KEY,
    get_scoring_weights, get_sync_interval, get_data_retention, normalize_weights, set_setting,
)

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/all", response_model=AllSettingsResponse)
async def read_all_settings(
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    return AllSettingsResponse(
        scoring_weights=await get_scoring_weights(db),
        sync_interval=SyncIntervalUpdate(minutes=await get_sync_interval(db)),
        data_retention=DataRetentionUpdate(days=await get_data_retention(db)),
    )


@router.get("/scoring-weights", response_model=ScoringWeightsResponse)
async def read_scoring_weights(
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    weights = await get_scoring_weights(db)
    return ScoringWeightsResponse(weights=weights, normalized=normalize_weights(weights))


@router.put("/scoring-weights", response_model=ScoringWeightsResponse)
async def update_scoring_weights(
    weights_in: ScoringWeights,
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    # Takes effect from the next day's scores; today's stored rows are kept
    weights = weights_in.model_dump()
    await set_setting(db, SCORING_WEIGHTS_KEY, weights)
    record_audit(db, admin.id, "update_scoring_weights", SCORING_WEIGHTS_KEY, weights)
    await db.commit()
    return ScoringWeightsResponse(weights=weights, normalized=normalize_weights(weights))


@router.put("/sync-interval", response_model=SyncIntervalUpdate)
async def update_sync_interval(
    payload: SyncIntervalUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    await set_setting(db, SYNC_INTERVAL_KEY, payload.model_dump())
    record_audit(db, admin.id, "update_sync_interval", SYNC_INTERVAL_KEY, payload.model_dump())
    await db.commit()
    request.app.state.scheduler.reschedule_sync(payload.minutes)
    return payload


@router.put("/data-retention", response_model=DataRetentionUpdate)
async def update_data_retention(
    payload: DataRetentionUpdate,
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    # Applied by the next purge run
    await set_setting(db, DATA_RETENTION_KEY, payload.model_dump())
    record_audit(db, admin.id, "update_data_retention", DATA_RETENTION_KEY, payload.model_dump())
    await db.commit()
    return payload
