"""
Authentication endpoints
"""

from typing import Any
import logging
import uuid
from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.exceptions import AuthenticationError
from app.core.redis import KeyValueStore, get_kv_store
from app.core.security import (
    LoginGuard,
    create_access_token,
    create_refresh_token,
    get_current_user,
    get_token_payload,
    security_manager,
)
from app.models.user import User
from app.schemas.response import MessageResponse
from app.schemas.user import UserCreate, UserResponse, Token, TokenRefresh
from app.services.email_service import NotificationKind, get_notifier
from app.services.user_service import user_service

logger = logging.getLogger(__name__)
router = APIRouter()


def _issue_tokens(user: User) -> dict:
    claims = {"sub": str(user.id), "email": user.email, "is_admin": user.is_admin}
    return {
        "access_token": create_access_token(data=claims),
        "refresh_token": create_refresh_token(data={"sub": str(user.id)}),
        "token_type": "bearer",
        "user": UserResponse.model_validate(user)
    }


@router.post("/register", response_model=Token, status_code=201)
async def register(
    user_data: UserCreate,
    db: AsyncSession = Depends(get_session),
    notifier=Depends(get_notifier)
) -> Any:
    """
    Register a new member
    """
    user = await user_service.create_user(db, user_data)

    try:
        await notifier.notify(
            NotificationKind.WELCOME,
            [user.email],
            {"user_name": user.full_name}
        )
    except Exception as e:
        logger.error(f"Welcome email for user {user.id} failed: {e}")

    return _issue_tokens(user)


@router.post("/login", response_model=Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_session),
    store: KeyValueStore = Depends(get_kv_store)
) -> Any:
    """
    OAuth2 compatible token login, with a lockout after repeated failures
    """
    email = form_data.username.lower()
    guard = LoginGuard(store)
    await guard.ensure_not_locked(email)

    user = await user_service.find_by_email(db, email)
    if not user or not security_manager.verify_password(form_data.password, user.password_hash):
        remaining = await guard.record_failure(email)
        raise AuthenticationError(
            "Incorrect email or password",
            details={"attempts_remaining": remaining}
        )

    await guard.reset(email)
    user = await user_service.update_last_sign_in(db, user.id)
    logger.info(f"User {user.id} signed in")
    return _issue_tokens(user)


@router.post("/refresh", response_model=Token)
async def refresh_token(
    token_data: TokenRefresh,
    db: AsyncSession = Depends(get_session),
    store: KeyValueStore = Depends(get_kv_store)
) -> Any:
    """
    Exchange a refresh token for a new token pair
    """
    payload = security_manager.decode_token(token_data.refresh_token)
    security_manager.verify_token_type(payload, "refresh")
    if await security_manager.is_token_blacklisted(store, payload):
        raise AuthenticationError("Invalid refresh token")

    try:
        user_id = uuid.UUID(payload.get("sub") or "")
    except ValueError:
        raise AuthenticationError("Invalid refresh token")

    user = await user_service.find_by_id(db, user_id)
    if not user:
        raise AuthenticationError("User not found")

    # Refresh tokens are single use
    await security_manager.blacklist_token(store, payload)
    return _issue_tokens(user)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
) -> Any:
    """
    Get current user information
    """
    return current_user


@router.post("/logout", response_model=MessageResponse)
async def logout(
    payload: dict = Depends(get_token_payload),
    store: KeyValueStore = Depends(get_kv_store)
) -> Any:
    """
    Logout user and blacklist token
    """
    await security_manager.blacklist_token(store, payload)
    return MessageResponse(message="Successfully logged out")
