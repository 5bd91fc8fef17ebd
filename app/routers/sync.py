import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from app.database import get_db, get_session_factory
from app.core.auth import require_roles
from app.core.constants import UserRole
from app.schemas.sync import SyncLogResponse, SyncRunResponse
from app.services.project_sync import get_recent_sync_logs, run_project_sync
from app.services.scheduler import SYNC_JOB

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/logs", response_model=list[SyncLogResponse])
async def list_sync_logs(
    db: AsyncSession = Depends(get_db),
    current_user = Depends(require_roles(UserRole.MANAGER, UserRole.HR_ADMIN))
):
    return await get_recent_sync_logs(db)


@router.post("/run", response_model=SyncRunResponse)
async def run_sync(
    request: Request,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    try:
        ran, summary = await request.app.state.scheduler.run_single_flight(
            SYNC_JOB, lambda: run_project_sync(session_factory)
        )
    except httpx.HTTPError as e:
        raise HTTPException(502, f"Project API request failed: {e}")
    if not ran:
        raise HTTPException(409, "Project sync is already running")
    if summary is None:
        raise HTTPException(400, "Project API is not configured")
    return summary
