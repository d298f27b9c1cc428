"""
Security utilities for authentication and authorization
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
import logging
import math
import time
import uuid

from app.config import settings
from app.core.database import get_session
from app.core.exceptions import AuthenticationError, AuthorizationError, AccountLockedError
from app.core.redis import KeyValueStore, get_kv_store
from app.models.user import User

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# OAuth2 scheme
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_PREFIX}/auth/login")


class SecurityManager:
    """
    Security manager for authentication and authorization
    """

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """
        Verify a plain password against a hashed password
        """
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def hash_password(password: str) -> str:
        """
        Hash a password
        """
        return pwd_context.hash(password)

    @staticmethod
    def _create_token(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
        to_encode = data.copy()
        to_encode.update({
            "exp": datetime.now(timezone.utc) + expires_delta,
            "type": token_type,
            "iat": int(time.time()),
            "jti": uuid.uuid4().hex,  # Blacklist key
        })
        return jwt.encode(
            to_encode,
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM
        )

    @staticmethod
    def create_access_token(
        data: Dict[str, Any],
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """
        Create a JWT access token
        """
        return SecurityManager._create_token(
            data,
            "access",
            expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
        )

    @staticmethod
    def create_refresh_token(
        data: Dict[str, Any],
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """
        Create a JWT refresh token
        """
        return SecurityManager._create_token(
            data,
            "refresh",
            expires_delta or timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)
        )

    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        """
        Decode and verify a JWT token
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM]
            )
        except JWTError as e:
            logger.warning(f"JWT decode error: {e}")
            raise AuthenticationError("Could not validate credentials")

    @staticmethod
    def verify_token_type(payload: Dict[str, Any], expected_type: str):
        """
        Verify token type (access or refresh)
        """
        if payload.get("type") != expected_type:
            raise AuthenticationError(f"Invalid token type. Expected {expected_type}")

    @staticmethod
    async def is_token_blacklisted(store: KeyValueStore, payload: Dict[str, Any]) -> bool:
        jti = payload.get("jti")
        if not jti:
            return False
        return await store.get(f"blacklist:{jti}") is not None

    @staticmethod
    async def blacklist_token(store: KeyValueStore, payload: Dict[str, Any]):
        """
        Blacklist a decoded token until it would have expired anyway
        """
        jti = payload.get("jti")
        if not jti:
            return
        ttl = max(1, int(payload.get("exp", 0) - time.time()))
        await store.set(f"blacklist:{jti}", "1", ttl)


# Create global security manager
security_manager = SecurityManager()


class LoginGuard:
    """
    Failed-login counter with a temporary lockout, kept in the key-value store
    """

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.max_attempts = settings.LOGIN_MAX_ATTEMPTS
        self.lockout_seconds = settings.LOGIN_LOCKOUT_SECONDS

    @staticmethod
    def attempts_key(email: str) -> str:
        return f"login_attempts:{email}"

    @staticmethod
    def lockout_key(email: str) -> str:
        return f"banned:{email}"

    async def ensure_not_locked(self, email: str):
        locked_until = await self.store.get(self.lockout_key(email))
        if locked_until is None:
            return
        remaining = float(locked_until) - time.time()
        if remaining <= 0:
            await self.store.delete(self.lockout_key(email))
            return
        raise AccountLockedError(math.ceil(remaining / 3600))

    async def record_failure(self, email: str) -> int:
        """
        Count a failed attempt; locks the email once the limit is reached.

        Returns:
            Attempts left before the lockout
        """
        key = self.attempts_key(email)
        attempts = await self.store.incr(key)
        if attempts == 1:
            await self.store.expire(key, self.lockout_seconds)

        if attempts >= self.max_attempts:
            await self.store.set(
                self.lockout_key(email),
                time.time() + self.lockout_seconds,
                self.lockout_seconds
            )
            await self.store.delete(key)
            logger.warning(f"Login locked for {email} after {attempts} failed attempts")
            raise AccountLockedError(math.ceil(self.lockout_seconds / 3600))
        return self.max_attempts - attempts

    async def reset(self, email: str):
        await self.store.delete(self.attempts_key(email))


async def get_token_payload(
    token: str = Depends(oauth2_scheme),
    store: KeyValueStore = Depends(get_kv_store)
) -> Dict[str, Any]:
    """
    Verified access-token claims, rejecting blacklisted tokens
    """
    payload = security_manager.decode_token(token)
    security_manager.verify_token_type(payload, "access")
    if await security_manager.is_token_blacklisted(store, payload):
        raise AuthenticationError("Token has been invalidated")
    return payload


async def get_current_user(
    payload: Dict[str, Any] = Depends(get_token_payload),
    db: AsyncSession = Depends(get_session)
) -> User:
    """
    Get current user from JWT token
    """
    user_id = payload.get("sub")
    if user_id is None:
        raise AuthenticationError("Could not validate credentials")

    try:
        user = await db.get(User, uuid.UUID(user_id))
    except ValueError:
        raise AuthenticationError("Could not validate credentials")
    if not user:
        raise AuthenticationError("User not found")
    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """
    Require admin role for endpoint
    """
    if not current_user.is_admin:
        raise AuthorizationError("Admin access required")
    return current_user


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    return security_manager.create_access_token(data, expires_delta)


def create_refresh_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    return security_manager.create_refresh_token(data, expires_delta)
