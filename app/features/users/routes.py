"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import ValidationError
from app.features.users import service
from app.features.users.models import User
from app.features.users.schemas import UserResponse, UserPublic, UserUpdate, UserRemovalResponse
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.permissions.dependencies import create_audit_log


router = APIRouter(tags=["users"])


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.patch("/me", response_model=UserResponse)
async def update_current_user_profile(
    update_data: UserUpdate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update current user's profile."""
    if update_data.name is not None:
        user.name = update_data.name

    await db.commit()
    await db.refresh(user)
    return user


@router.get("/{user_id}", response_model=UserPublic)
async def get_user_by_id(
    user_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get public user profile by ID."""
    return await service.get_user(db, user_id)


@router.get("/", response_model=list[UserPublic])
async def list_users(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200)
):
    """List all active users (public info only)."""
    return await service.list_users(db, skip, limit)


# Admin-only routes
@router.patch("/{user_id}/admin", response_model=UserResponse)
async def toggle_admin_status(
    user_id: str,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Toggle admin status for a user (admin only)."""
    user = await service.toggle_admin(db, user_id, admin.id)
    await create_audit_log(
        db, admin.id, "update", "user", user_id, details={"is_admin": user.is_admin}
    )
    return user


@router.delete("/{user_id}", response_model=UserRemovalResponse)
async def remove_user(
    user_id: str,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    successor_id: str | None = None
):
    """
    Delete a user account (admin only).

    Pass successor_id when the user authored organizations, workspaces,
    roles or teams; those are reassigned to the successor.
    """
    if user_id == admin.id:
        raise ValidationError("Cannot delete your own account")

    reassigned = await service.remove_user(db, user_id, successor_id)
    await create_audit_log(
        db, admin.id, "delete", "user", user_id,
        details={"successor_id": successor_id, "reassigned": reassigned},
    )
    return UserRemovalResponse(user_id=user_id, successor_id=successor_id, reassigned=reassigned)
