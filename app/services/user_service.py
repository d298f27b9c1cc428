"""
User directory
"""

from typing import List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_

from app.config import settings
from app.core.database import db_manager
from app.core.exceptions import NotFoundError, ConflictError, ValidationError
from app.core.security import security_manager
from app.models.base import utcnow
from app.models.user import User
from app.schemas.user import UserCreate, UserUpdate

logger = logging.getLogger(__name__)


def email_domain_allowed(email: str) -> bool:
    """An empty ALLOWED_EMAIL_DOMAINS accepts any domain"""
    if not settings.ALLOWED_EMAIL_DOMAINS:
        return True
    domain = email.rsplit("@", 1)[-1].lower()
    return domain in [d.lower() for d in settings.ALLOWED_EMAIL_DOMAINS]


class UserService:
    """
    User lookups and account administration
    """

    def __init__(self):
        self.db_manager = db_manager

    async def find_by_id(self, db: AsyncSession, user_id: UUID) -> Optional[User]:
        return await db.get(User, user_id)

    async def find_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        return await db.scalar(select(User).where(User.email == email.lower()))

    async def get_user(self, db: AsyncSession, user_id: UUID) -> User:
        user = await self.find_by_id(db, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def email_exists(self, db: AsyncSession, email: str) -> bool:
        return await self.find_by_email(db, email) is not None

    async def create_user(self, db: AsyncSession, user_data: UserCreate, is_admin: bool = False) -> User:
        email = user_data.email.lower()
        if not email_domain_allowed(email):
            raise ValidationError(
                f"Email domain must be one of: {', '.join(settings.ALLOWED_EMAIL_DOMAINS)}",
                field="email"
            )
        if await self.email_exists(db, email):
            raise ConflictError("Email already registered", details={"email": email})

        async with self.db_manager.transaction(db):
            user = User(
                email=email,
                password_hash=security_manager.hash_password(user_data.password),
                first_name=user_data.first_name,
                last_name=user_data.last_name,
                phone_number=user_data.phone_number,
                is_admin=is_admin,
                no_show_count=0,
                is_banned=False
            )
            db.add(user)
            await db.flush()

        logger.info(f"User {user.id} created")
        return user

    async def update_user(self, db: AsyncSession, user_id: UUID, patch: UserUpdate) -> User:
        """Apply the fields sent by the client; admins may also pass UserAdminUpdate"""
        changes = patch.model_dump(exclude_unset=True)
        async with self.db_manager.transaction(db):
            user = await self.get_user(db, user_id)
            for field, value in changes.items():
                if value is None and field not in ("phone_number",):
                    continue
                setattr(user, field, value)

        logger.info(f"User {user.id} updated: {sorted(changes)}")
        return user

    async def set_banned(self, db: AsyncSession, user_id: UUID, is_banned: bool) -> User:
        async with self.db_manager.transaction(db):
            user = await self.get_user(db, user_id)
            user.is_banned = is_banned

        logger.warning(f"User {user.id} {'banned' if is_banned else 'unbanned'}")
        return user

    async def reset_no_show_count(self, db: AsyncSession, user_id: UUID) -> User:
        async with self.db_manager.transaction(db):
            user = await self.get_user(db, user_id)
            user.no_show_count = 0

        logger.info(f"No-show count reset for user {user.id}")
        return user

    async def update_last_sign_in(self, db: AsyncSession, user_id: UUID) -> User:
        async with self.db_manager.transaction(db):
            user = await self.get_user(db, user_id)
            user.last_sign_in_at = utcnow()
        return user

    async def paginate_users(
        self,
        db: AsyncSession,
        page: int = 1,
        per_page: int = 20,
        search: Optional[str] = None
    ) -> Tuple[List[User], int]:
        """Newest accounts first, optionally filtered by name or email"""
        conditions = []
        if search and search.strip():
            term = f"%{search.strip()}%"
            conditions.append(or_(
                User.first_name.ilike(term),
                User.last_name.ilike(term),
                User.email.ilike(term)
            ))

        total = await db.scalar(select(func.count(User.id)).where(*conditions))
        result = await db.execute(
            select(User)
            .where(*conditions)
            .order_by(User.created_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total

    async def count_users(self, db: AsyncSession) -> int:
        return await db.scalar(select(func.count(User.id)))


user_service = UserService()


