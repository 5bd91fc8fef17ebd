from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.database import get_db
from app.core.auth import get_current_user, require_roles, ensure_can_view
from app.core.constants import UserRole
from app.models.user import User
from app.schemas.user import UserResponse, RoleUpdate, ManagerUpdate
from app.services.audit import record_audit
from app.services.hierarchy import get_all_reports

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=list[UserResponse])
async def list_users(
    db: AsyncSession = Depends(get_db),
    current_user = Depends(require_roles(UserRole.MANAGER, UserRole.HR_ADMIN))
):
    if current_user.role == UserRole.HR_ADMIN.value:
        result = await db.execute(select(User).order_by(User.id))
        return result.scalars().all()
    return await get_all_reports(db, current_user.id)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    return await ensure_can_view(db, current_user, user_id)


@router.get("/{user_id}/reports", response_model=list[UserResponse])
async def get_user_reports(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    await ensure_can_view(db, current_user, user_id)
    return await get_all_reports(db, user_id)


@router.patch("/{user_id}/role", response_model=UserResponse)
async def update_role(
    user_id: int,
    payload: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(404, "User not found")
    if user.id == admin.id and payload.role != UserRole.HR_ADMIN:
        raise HTTPException(400, "You cannot remove your own HR admin role")

    old_role = user.role
    user.role = payload.role.value
    record_audit(db, admin.id, "update_role", user.id, {"old_role": old_role, "new_role": user.role})
    await db.commit()
    await db.refresh(user)
    return user


@router.patch("/{user_id}/manager", response_model=UserResponse)
async def update_manager(
    user_id: int,
    payload: ManagerUpdate,
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(404, "User not found")
    if payload.manager_id is not None:
        if payload.manager_id == user_id:
            raise HTTPException(400, "A user cannot manage themselves")
        if not await db.get(User, payload.manager_id):
            raise HTTPException(404, "Manager not found")

    user.manager_id = payload.manager_id
    record_audit(db, admin.id, "update_manager", user.id, {"manager_id": payload.manager_id})
    await db.commit()
    await db.refresh(user)
    return user


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    admin = Depends(require_roles(UserRole.HR_ADMIN))
):
    if user_id == admin.id:
        raise HTTPException(400, "Cannot delete your own account")
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(404, "User not found")

    # Owned tasks, time logs, scores, feedback and subscriptions go with the user (ON DELETE CASCADE)
    record_audit(db, admin.id, "delete_user", user_id, {"email": user.email, "deleted_by": admin.id})
    await db.delete(user)
    await db.commit()
    return {"message": "User deleted successfully"}
