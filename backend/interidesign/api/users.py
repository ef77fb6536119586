from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from interidesign.database import get_db
from interidesign.schemas.user import (
    RoleUpdate,
    UserEnvelope,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from interidesign.services.user_service import UserService
from interidesign.utils.auth import AdminUser, CurrentUser

router = APIRouter(prefix="/users/me", tags=["Users"])
admin_router = APIRouter(prefix="/admin/users", tags=["Admin"])


@router.patch("", response_model=UserEnvelope)
async def update_profile(
    data: UserUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: CurrentUser,
) -> UserEnvelope:
    user = await UserService(db).update(current_user, data)
    await db.commit()
    return UserEnvelope(user=UserResponse.from_user(user))


@admin_router.get("", response_model=UserListResponse)
async def list_users(
    db: Annotated[AsyncSession, Depends(get_db)],
    _admin: AdminUser,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> UserListResponse:
    users, total = await UserService(db).list_users(limit=limit, offset=offset)
    return UserListResponse(users=[UserResponse.from_user(u) for u in users], total=total)


@admin_router.patch("/{user_id}/role", response_model=UserEnvelope)
async def update_role(
    user_id: int,
    data: RoleUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: AdminUser,
) -> UserEnvelope:
    user_service = UserService(db)
    user = await user_service.get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user.id == admin.id and data.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Admins cannot remove their own admin role",
        )

    user = await user_service.set_role(user, data.role)
    await db.commit()
    return UserEnvelope(user=UserResponse.from_user(user))
