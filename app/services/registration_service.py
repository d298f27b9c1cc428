"""
Registration and waitlist engine

Every state change locks the session row, mutates registrations and the
session's capacity counters in one transaction, and only then sends
notifications.
"""

from typing import Any, Dict, List, Optional, Tuple
from datetime import timedelta
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from sqlalchemy import select, func, inspect

from app.config import settings
from app.core.database import db_manager
from app.core.exceptions import (
    NotFoundError,
    BusinessRuleError,
    SessionClosedError,
    DuplicateRegistrationError,
    UserBannedError,
    RateLimitError,
)
from app.core.logging import get_logger
from app.core.metrics import record_registration_event
from app.core.redis import KeyValueStore, hit_rate_limit
from app.models.base import utcnow
from app.models.user import User
from app.models.session import Session, SessionStatus
from app.models.registration import (
    Registration,
    RegistrationStatus,
    ACTIVE_STATUSES,
    CONFIRMED_POSITION,
)
from app.schemas.registration import RegistrationHistoryQuery
from app.schemas.session import SessionResponse
from app.services.email_service import NotificationKind, session_context, email_service

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60

# Rows that hold (or held) a confirmed seat
SEATED_STATUSES = (
    RegistrationStatus.REGISTERED,
    RegistrationStatus.COMPLETED,
    RegistrationStatus.NO_SHOW,
)


async def lock_session(db: AsyncSession, session_id: UUID, include_deleted: bool = False) -> Session:
    """
    Load a session with a row lock held until the surrounding transaction ends.

    The identity map copy is refreshed so that capacity counters read under
    the lock are current.
    """
    stmt = (
        select(Session)
        .where(Session.id == session_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if not include_deleted:
        stmt = stmt.where(Session.active())
    session = await db.scalar(stmt)
    if session is None:
        raise NotFoundError("Session", session_id)
    return session


class RegistrationService:
    """
    Registration/waitlist state machine
    """

    def __init__(self, notifier=None, kv_store: Optional[KeyValueStore] = None):
        self.notifier = notifier or email_service
        self.kv_store = kv_store
        self.db_manager = db_manager

    async def create_registration(
        self,
        db: AsyncSession,
        user_id: UUID,
        session_id: UUID
    ) -> Registration:
        """
        Register a user for a session.

        Takes a free seat when one exists (position 0, REGISTERED), otherwise
        appends the user to the end of the waitlist.
        """
        log = get_logger(__name__, user_id=user_id, session_id=session_id)

        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        if user.is_banned:
            raise UserBannedError(user_id)
        await self._check_rate_limit(user_id)

        try:
            async with self.db_manager.transaction(db):
                session = await lock_session(db, session_id)
                if not session.accepts_registrations:
                    raise SessionClosedError(session.id, session.status.value)

                existing = await db.scalar(
                    select(Registration.id).where(
                        Registration.user_id == user_id,
                        Registration.session_id == session_id,
                        Registration.status.in_(ACTIVE_STATUSES),
                        Registration.active()
                    )
                )
                if existing is not None:
                    raise DuplicateRegistrationError(session_id)

                if session.spots_available > 0:
                    registration = Registration(
                        user_id=user_id,
                        session_id=session_id,
                        position=CONFIRMED_POSITION,
                        status=RegistrationStatus.REGISTERED,
                        has_attended=False
                    )
                    session.spots_available -= 1
                    if session.spots_available == 0:
                        session.status = SessionStatus.FULL
                else:
                    last_position = await db.scalar(
                        select(func.max(Registration.position)).where(
                            Registration.session_id == session_id,
                            Registration.status == RegistrationStatus.WAITLISTED,
                            Registration.active()
                        )
                    )
                    registration = Registration(
                        user_id=user_id,
                        session_id=session_id,
                        position=(last_position or 0) + 1,
                        status=RegistrationStatus.WAITLISTED,
                        has_attended=False
                    )

                db.add(registration)
                await db.flush()
        except IntegrityError as e:
            # Concurrent insert won the partial unique index
            raise DuplicateRegistrationError(session_id) from e

        if registration.status == RegistrationStatus.REGISTERED:
            record_registration_event("registered")
            log.info(f"Registration {registration.id} confirmed, {session.spots_available} spots left")
        else:
            record_registration_event("waitlisted")
            log.info(f"Registration {registration.id} waitlisted at position {registration.position}")
            await self._notify(
                NotificationKind.ADDED,
                [user.email],
                {**session_context(session), "position": registration.position, "user_name": user.full_name}
            )

        return registration

    async def cancel_registration(self, db: AsyncSession, registration_id: UUID) -> Registration:
        """
        Cancel an active registration.

        A freed seat goes to the first waitlisted user who is not banned; if
        there is nobody to promote the seat returns to the session. Remaining
        waitlist positions are compacted so they stay 1..N.
        """
        promoted: Optional[Tuple[Registration, str]] = None

        async with self.db_manager.transaction(db):
            session_id = await db.scalar(
                select(Registration.session_id).where(
                    Registration.id == registration_id,
                    Registration.active()
                )
            )
            if session_id is None:
                raise NotFoundError("Registration", registration_id)

            session = await lock_session(db, session_id, include_deleted=True)

            # Re-read under the session lock, a concurrent cancel may have won
            registration = await db.scalar(
                select(Registration)
                .where(Registration.id == registration_id, Registration.active())
                .execution_options(populate_existing=True)
            )
            if registration is None:
                raise NotFoundError("Registration", registration_id)
            if registration.status not in ACTIVE_STATUSES:
                raise BusinessRuleError(
                    f"Cannot cancel a registration with status {registration.status.value}",
                    details={"registration_id": str(registration_id), "status": registration.status.value}
                )

            log = get_logger(__name__, registration_id=registration.id, session_id=session.id)

            if registration.status == RegistrationStatus.REGISTERED:
                promoted = await self._release_seat(db, session)
            else:
                await self._compact_waitlist(db, session.id, registration.position)

            registration.status = RegistrationStatus.CANCELLED
            registration.last_cancellation = utcnow()
            registration.soft_delete()

        record_registration_event("cancelled")
        log.info(f"Registration {registration.id} cancelled")

        if promoted is not None:
            promoted_registration, email = promoted
            record_registration_event("promoted")
            log.info(f"Registration {promoted_registration.id} promoted from the waitlist")
            await self._notify(NotificationKind.PROMOTED, [email], session_context(session))

        return registration

    async def mark_attendance(
        self,
        db: AsyncSession,
        registration_id: UUID,
        has_attended: bool
    ) -> Registration:
        """
        Record attendance and recalculate the user's no-show count
        """
        async with self.db_manager.transaction(db):
            session_id = await db.scalar(
                select(Registration.session_id).where(
                    Registration.id == registration_id,
                    Registration.active()
                )
            )
            if session_id is None:
                raise NotFoundError("Registration", registration_id)
            await lock_session(db, session_id, include_deleted=True)

            registration = await db.scalar(
                select(Registration)
                .where(Registration.id == registration_id, Registration.active())
                .execution_options(populate_existing=True)
            )
            if registration is None:
                raise NotFoundError("Registration", registration_id)
            if registration.status == RegistrationStatus.WAITLISTED:
                raise BusinessRuleError(
                    "Cannot mark attendance for a waitlisted registration",
                    details={"registration_id": str(registration_id)}
                )

            registration.has_attended = has_attended
            registration.status = (
                RegistrationStatus.COMPLETED if has_attended else RegistrationStatus.NO_SHOW
            )
            await db.flush()

            user = await db.get(User, registration.user_id, with_for_update=True)
            user.no_show_count = await self.count_no_shows(db, registration.user_id)

        record_registration_event("completed" if has_attended else "no_show")
        logger.info(
            f"Attendance for registration {registration.id} marked as {registration.status.value}, "
            f"user {user.id} now has {user.no_show_count} no-shows"
        )
        return registration

    async def _release_seat(
        self,
        db: AsyncSession,
        session: Session
    ) -> Optional[Tuple[Registration, str]]:
        """Hand a freed seat to the waitlist or back to the session"""
        candidate = (
            await db.execute(
                select(Registration, User.email)
                .join(User, Registration.user_id == User.id)
                .where(
                    Registration.session_id == session.id,
                    Registration.status == RegistrationStatus.WAITLISTED,
                    Registration.active(),
                    User.is_banned.is_(False)
                )
                .order_by(Registration.position)
                .limit(1)
            )
        ).first()

        if candidate is None:
            # A closed session keeps zero spots
            if session.status != SessionStatus.CLOSED:
                session.spots_available = min(session.spots_available + 1, session.spots_total)
                session.status = SessionStatus.OPEN
            return None

        waitlisted, email = candidate
        former_position = waitlisted.position
        waitlisted.status = RegistrationStatus.REGISTERED
        waitlisted.position = CONFIRMED_POSITION
        await db.flush()
        await self._compact_waitlist(db, session.id, former_position)
        return waitlisted, email

    async def _compact_waitlist(self, db: AsyncSession, session_id: UUID, removed_position: int):
        """Close the gap left at removed_position"""
        result = await db.execute(
            select(Registration).where(
                Registration.session_id == session_id,
                Registration.status == RegistrationStatus.WAITLISTED,
                Registration.active(),
                Registration.position > removed_position
            )
        )
        for row in result.scalars():
            row.position -= 1

    async def _check_rate_limit(self, user_id: UUID):
        if not settings.RATE_LIMIT_ENABLED or self.kv_store is None:
            return
        limit = settings.RATE_LIMIT_REGISTRATION_PER_MINUTE
        is_limited, count = await hit_rate_limit(
            self.kv_store, f"registration:{user_id}", limit, RATE_LIMIT_WINDOW_SECONDS
        )
        if is_limited:
            logger.warning(f"User {user_id} hit the registration rate limit ({count} attempts)")
            raise RateLimitError(limit, RATE_LIMIT_WINDOW_SECONDS)

    async def _notify(self, kind: NotificationKind, recipients: List[str], context: Dict[str, Any]):
        """Best-effort dispatch after commit"""
        try:
            delivered = await self.notifier.notify(kind, recipients, context)
        except Exception as e:
            logger.error(f"Notifier raised while sending {kind.value}: {e}", exc_info=True)
            return
        if not delivered:
            logger.warning(f"{kind.value} notification not delivered to {len(recipients)} recipients")

    # Queries

    async def get_registration(self, db: AsyncSession, registration_id: UUID) -> Registration:
        registration = await db.scalar(
            select(Registration).where(
                Registration.id == registration_id,
                Registration.active()
            )
        )
        if registration is None:
            raise NotFoundError("Registration", registration_id)
        return registration

    async def get_session_registrations(self, db: AsyncSession, session_id: UUID) -> List[Registration]:
        """Confirmed (seated) registrations of a session"""
        await self._ensure_session(db, session_id)
        result = await db.execute(
            select(Registration)
            .options(selectinload(Registration.user))
            .where(
                Registration.session_id == session_id,
                Registration.status.in_(SEATED_STATUSES),
                Registration.active()
            )
            .order_by(Registration.position, Registration.created_at)
        )
        return list(result.scalars().all())

    async def get_session_waitlist(self, db: AsyncSession, session_id: UUID) -> List[Registration]:
        await self._ensure_session(db, session_id)
        result = await db.execute(
            select(Registration)
            .options(selectinload(Registration.user))
            .where(
                Registration.session_id == session_id,
                Registration.status == RegistrationStatus.WAITLISTED,
                Registration.active()
            )
            .order_by(Registration.position)
        )
        return list(result.scalars().all())

    async def get_user_history(
        self,
        db: AsyncSession,
        user_id: UUID,
        query: Optional[RegistrationHistoryQuery] = None
    ) -> List[Registration]:
        """
        A user's registrations, newest first.

        Cancelled registrations are tombstoned but still part of the history,
        so this read does not filter on deleted_at.
        """
        query = query or RegistrationHistoryQuery()
        stmt = (
            select(Registration)
            .join(Session, Registration.session_id == Session.id)
            .where(Registration.user_id == user_id)
            .order_by(Registration.created_at.desc())
        )
        if query.status:
            stmt = stmt.where(Registration.status.in_([RegistrationStatus(s) for s in query.status]))
        if query.after_date:
            stmt = stmt.where(Session.date >= query.after_date)
        if query.include_session:
            stmt = stmt.options(selectinload(Registration.session))
        if query.include_user:
            stmt = stmt.options(selectinload(Registration.user))

        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def count_recent_cancellations(self, db: AsyncSession, user_id: UUID, days: int = 30) -> int:
        since = utcnow() - timedelta(days=days)
        return await db.scalar(
            select(func.count(Registration.id)).where(
                Registration.user_id == user_id,
                Registration.status == RegistrationStatus.CANCELLED,
                Registration.last_cancellation >= since
            )
        )

    async def count_no_shows(self, db: AsyncSession, user_id: UUID) -> int:
        return await db.scalar(
            select(func.count(Registration.id)).where(
                Registration.user_id == user_id,
                Registration.status == RegistrationStatus.NO_SHOW,
                Registration.active()
            )
        )

    async def _ensure_session(self, db: AsyncSession, session_id: UUID):
        exists = await db.scalar(
            select(Session.id).where(Session.id == session_id, Session.active())
        )
        if exists is None:
            raise NotFoundError("Session", session_id)

    def format_registration(self, registration: Registration) -> Dict[str, Any]:
        """
        Response dict for a registration.

        Related user/session are only embedded when they were eager-loaded.
        """
        unloaded = inspect(registration).unloaded
        data = {
            "id": registration.id,
            "user_id": registration.user_id,
            "session_id": registration.session_id,
            "position": registration.position,
            "status": registration.status,
            "has_attended": registration.has_attended,
            "last_cancellation": registration.last_cancellation,
            "created_at": registration.created_at,
            "updated_at": registration.updated_at,
            "user": None,
            "session": None,
        }
        if "user" not in unloaded and registration.user is not None:
            user = registration.user
            data["user"] = {
                "id": user.id,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "email": user.email,
                "phone_number": user.phone_number,
                "no_show_count": user.no_show_count,
            }
        if "session" not in unloaded and registration.session is not None:
            data["session"] = SessionResponse.model_validate(registration.session)
        return data
