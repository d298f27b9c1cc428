"""
User management endpoints
"""

from typing import Any, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from pydantic import EmailStr
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.security import get_current_user, require_admin
from app.models.user import User
from app.schemas.response import PaginatedResponse, PaginationMeta, CountResponse
from app.schemas.user import UserResponse, UserUpdate, UserAdminUpdate, BanUpdate
from app.services.user_service import user_service

router = APIRouter()


@router.get("/profile", response_model=UserResponse)
async def get_profile(
    current_user: User = Depends(get_current_user)
) -> Any:
    """
    Get current user profile
    """
    return current_user


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    user_update: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Update current user profile
    """
    return await user_service.update_user(db, current_user.id, user_update)


@router.get("/exists")
async def email_exists(
    email: EmailStr,
    db: AsyncSession = Depends(get_session)
) -> Any:
    return {"exists": await user_service.email_exists(db, email)}


@router.get("", response_model=PaginatedResponse[UserResponse])
async def list_users(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Paginated member list (admin only)
    """
    users, total = await user_service.paginate_users(db, page, per_page, search)
    return PaginatedResponse[UserResponse](
        data=[UserResponse.model_validate(u) for u in users],
        pagination=PaginationMeta.build(page, per_page, total)
    )


@router.get("/count", response_model=CountResponse)
async def count_users(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session)
) -> Any:
    return CountResponse(count=await user_service.count_users(db))


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    user_update: UserAdminUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Update any member, including role and membership level (admin only)
    """
    return await user_service.update_user(db, user_id, user_update)


@router.put("/{user_id}/ban", response_model=UserResponse)
async def set_ban_status(
    user_id: UUID,
    ban: BanUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Ban or unban a member (admin only)
    """
    return await user_service.set_banned(db, user_id, ban.is_banned)


@router.put("/{user_id}/reset-no-shows", response_model=UserResponse)
async def reset_no_shows(
    user_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Reset a member's no-show counter (admin only)
    """
    return await user_service.reset_no_show_count(db, user_id)
