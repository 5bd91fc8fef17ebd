# app/core/auth.py
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.database import get_db
from app.models.user import User
from app.config import settings
from app.core.constants import UserRole
from app.services.hierarchy import get_all_reports

reusable_oauth2 = HTTPBearer()

async def get_current_user(
    db: AsyncSession = Depends(get_db),
    token: HTTPAuthorizationCredentials = Depends(reusable_oauth2)
):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token.credentials, 
            settings.SECRET_KEY, 
            algorithms=[settings.ALGORITHM]
        )
        user_id: str = payload.get("sub")
        if user_id is None or payload.get("type", "access") != "access":
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == int(user_id)))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise credentials_exception
    return user


def require_roles(*roles):
    """Dependency factory: the caller must hold one of ``roles``."""
    allowed = {getattr(role, "value", role) for role in roles}

    async def checker(current_user: User = Depends(get_current_user)):
        if current_user.role not in allowed:
            raise HTTPException(403, "Insufficient role for this action")
        return current_user

    return checker


async def ensure_can_view(db: AsyncSession, viewer: User, user_id: int) -> User:
    """Employees see themselves, managers their (indirect) reports, HR everyone."""
    target = await db.get(User, user_id)
    if not target:
        raise HTTPException(404, "User not found")
    if viewer.role == UserRole.HR_ADMIN.value or viewer.id == user_id:
        return target
    if viewer.role == UserRole.MANAGER.value:
        reports = await get_all_reports(db, viewer.id)
        if any(report.id == user_id for report in reports):
            return target
    raise HTTPException(403, "Not allowed to view this user")
