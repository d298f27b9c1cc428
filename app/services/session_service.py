"""
Session management: CRUD, capacity-aware updates and archival
"""

from typing import Any, Dict, List, Optional, Tuple
from datetime import date, datetime
from uuid import UUID
from zoneinfo import ZoneInfo
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_, cast, String

from app.config import settings
from app.core.database import db_manager
from app.core.exceptions import NotFoundError, ValidationError, CapacityConflictError
from app.core.metrics import SESSIONS_ARCHIVED
from app.models.base import utcnow
from app.models.user import User
from app.models.session import Session, SessionStatus, ZERO_SPOT_STATUSES
from app.models.registration import Registration, RegistrationStatus, ACTIVE_STATUSES
from app.schemas.session import (
    SessionCreate,
    SessionUpdate,
    SessionQuery,
    SessionSortField,
    SortOrder,
)
from app.services.email_service import NotificationKind, session_context, email_service
from app.services.registration_service import lock_session

logger = logging.getLogger(__name__)

# Changes registrants are told about
SIGNIFICANT_FIELDS = ("status", "date", "time", "location", "spots_total")


def club_now() -> datetime:
    return datetime.now(ZoneInfo(settings.SCHEDULER_TIMEZONE))


class SessionService:
    """
    Session service
    """

    def __init__(self, notifier=None):
        self.notifier = notifier or email_service
        self.db_manager = db_manager

    async def create_session(self, db: AsyncSession, session_data: SessionCreate) -> Session:
        data = session_data.model_dump()
        status = SessionStatus(data.pop("status") or SessionStatus.OPEN)
        spots_available = data.pop("spots_available")
        if spots_available is None:
            spots_available = data["spots_total"]
        if status in ZERO_SPOT_STATUSES:
            spots_available = 0

        async with self.db_manager.transaction(db):
            session = Session(**data, status=status, spots_available=spots_available, is_archived=False)
            db.add(session)
            await db.flush()

        logger.info(f"Session {session.id} created: {session.name} on {session.date} at {session.time}")
        return session

    async def get_session(self, db: AsyncSession, session_id: UUID) -> Session:
        session = await db.scalar(
            select(Session).where(Session.id == session_id, Session.active())
        )
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    async def list_sessions(self, db: AsyncSession) -> List[Session]:
        result = await db.execute(
            select(Session)
            .where(Session.active())
            .order_by(Session.date, Session.time)
        )
        return list(result.scalars().all())

    async def paginate_sessions(self, db: AsyncSession, query: SessionQuery) -> Tuple[List[Session], int]:
        """
        Filtered, sorted page of sessions.

        Returns:
            Tuple of (sessions, total matching rows)
        """
        conditions = [Session.active()]
        if query.search and query.search.strip():
            term = f"%{query.search.strip()}%"
            conditions.append(or_(Session.name.ilike(term), Session.location.ilike(term)))
        if query.location:
            conditions.append(Session.location == query.location)
        if query.skill_levels:
            # skill_levels is a JSON array, match sessions offering any of the requested levels
            as_text = cast(Session.skill_levels, String)
            conditions.append(or_(*[as_text.like(f'%"{level}"%') for level in query.skill_levels]))
        if query.date:
            conditions.append(Session.date == query.date)
        if query.has_spots:
            conditions.append(Session.spots_available > 0)

        total = await db.scalar(select(func.count(Session.id)).where(*conditions))

        stmt = select(Session).where(*conditions)
        if query.sort_by:
            column = getattr(Session, SessionSortField(query.sort_by).value)
            if SortOrder(query.sort_order) == SortOrder.DESC:
                stmt = stmt.order_by(column.desc())
            else:
                stmt = stmt.order_by(column.asc())
        else:
            stmt = stmt.order_by(Session.date, Session.time)

        stmt = stmt.offset((query.page - 1) * query.limit).limit(query.limit)
        result = await db.execute(stmt)
        return list(result.scalars().all()), total

    async def update_session(self, db: AsyncSession, session_id: UUID, patch: SessionUpdate) -> Session:
        """
        Merge the fields present in the patch, then re-derive capacity.

        Rules applied after the merge:
        - spots_total may not drop below the number of REGISTERED rows
        - spots_available moves with the capacity delta, clamped to [0, spots_total],
          unless the patch sets it explicitly
        - an explicit OPEN recomputes free seats from the registered count
        - FULL and CLOSED always mean zero free seats
        """
        changes = patch.model_dump(exclude_unset=True)

        async with self.db_manager.transaction(db):
            session = await lock_session(db, session_id)
            before = {field: getattr(session, field) for field in SIGNIFICANT_FIELDS}

            registered = await self._count_registered(db, session.id)
            new_total = changes.pop("spots_total", session.spots_total)
            if new_total < registered:
                raise CapacityConflictError(new_total, registered)

            explicit_spots = changes.pop("spots_available", None)
            if explicit_spots is not None and explicit_spots > new_total:
                raise ValidationError("spots_available cannot exceed spots_total", field="spots_available")

            explicit_status = changes.pop("status", None)
            for field, value in changes.items():
                setattr(session, field, value)

            delta = new_total - session.spots_total
            session.spots_total = new_total
            if explicit_spots is not None:
                session.spots_available = explicit_spots
            else:
                session.spots_available = max(0, min(session.spots_available + delta, new_total))

            if explicit_status is not None:
                session.status = SessionStatus(explicit_status)
                if session.status == SessionStatus.OPEN and explicit_spots is None:
                    session.spots_available = new_total - registered
            elif session.status == SessionStatus.FULL and session.spots_available > 0:
                session.status = SessionStatus.OPEN
            elif session.status == SessionStatus.OPEN and session.spots_available == 0:
                session.status = SessionStatus.FULL

            if session.status in ZERO_SPOT_STATUSES:
                session.spots_available = 0

            changed_fields = [
                field for field in SIGNIFICANT_FIELDS if getattr(session, field) != before[field]
            ]
            recipients = await self._registrant_emails(db, session.id, (RegistrationStatus.REGISTERED,))

        logger.info(
            f"Session {session.id} updated: status={session.status.value}, "
            f"spots={session.spots_available}/{session.spots_total}"
        )
        if changed_fields:
            await self._notify(
                NotificationKind.SESSION_CHANGED,
                recipients,
                {**session_context(session), "changed_fields": changed_fields}
            )
        return session

    async def delete_session(self, db: AsyncSession, session_id: UUID) -> Session:
        """
        Soft delete a session together with its registrations
        """
        async with self.db_manager.transaction(db):
            session = await lock_session(db, session_id)
            recipients = await self._registrant_emails(db, session.id, ACTIVE_STATUSES)

            result = await db.execute(
                select(Registration).where(
                    Registration.session_id == session.id,
                    Registration.active()
                )
            )
            registrations = list(result.scalars().all())
            for registration in registrations:
                registration.soft_delete()
            session.soft_delete()

        logger.info(f"Soft deleted session {session.id} and {len(registrations)} registrations")
        await self._notify(NotificationKind.SESSION_CANCELLED, recipients, session_context(session))
        return session

    async def archive_session(self, db: AsyncSession, session_id: UUID) -> Session:
        async with self.db_manager.transaction(db):
            session = await lock_session(db, session_id)
            session.is_archived = True
            session.status = SessionStatus.CLOSED
            session.spots_available = 0

        SESSIONS_ARCHIVED.inc()
        logger.info(f"Session {session.id} archived")
        return session

    async def auto_archive_past_sessions(self, db: AsyncSession, today: Optional[date] = None) -> int:
        """
        Archive every live session dated before today in one statement.

        Returns:
            Number of sessions archived
        """
        today = today or club_now().date()
        async with self.db_manager.transaction(db):
            result = await db.execute(
                update(Session)
                .where(
                    Session.is_archived.is_(False),
                    Session.active(),
                    Session.date < today
                )
                .values(
                    is_archived=True,
                    status=SessionStatus.CLOSED,
                    spots_available=0,
                    updated_at=utcnow()
                )
                .execution_options(synchronize_session=False)
            )

        archived = result.rowcount or 0
        SESSIONS_ARCHIVED.inc(archived)
        logger.info(f"Archived {archived} past sessions dated before {today.isoformat()}")
        return archived

    async def count_active_sessions(self, db: AsyncSession) -> int:
        return await db.scalar(
            select(func.count(Session.id)).where(
                Session.status == SessionStatus.OPEN,
                Session.active()
            )
        )

    async def get_user_sessions(self, db: AsyncSession, user_id: UUID, kind: str) -> List[Session]:
        """Sessions the user holds a live registration for, upcoming or past"""
        now = club_now()
        today, current_time = now.date(), now.time().replace(tzinfo=None)

        stmt = (
            select(Session)
            .join(Registration, Registration.session_id == Session.id)
            .where(
                Registration.user_id == user_id,
                Registration.active(),
                Session.active()
            )
        )
        if kind == "upcoming":
            stmt = stmt.where(
                or_(Session.date > today, (Session.date == today) & (Session.time > current_time))
            )
        elif kind == "past":
            stmt = stmt.where(
                or_(Session.date < today, (Session.date == today) & (Session.time <= current_time))
            )
        else:
            raise ValidationError("Session type must be 'upcoming' or 'past'", field="type")

        result = await db.execute(stmt.order_by(Session.date, Session.time))
        return list(result.scalars().all())

    async def _count_registered(self, db: AsyncSession, session_id: UUID) -> int:
        return await db.scalar(
            select(func.count(Registration.id)).where(
                Registration.session_id == session_id,
                Registration.status == RegistrationStatus.REGISTERED,
                Registration.active()
            )
        )

    async def _registrant_emails(self, db: AsyncSession, session_id: UUID, statuses) -> List[str]:
        result = await db.execute(
            select(User.email)
            .join(Registration, Registration.user_id == User.id)
            .where(
                Registration.session_id == session_id,
                Registration.status.in_(statuses),
                Registration.active()
            )
        )
        return list(result.scalars().all())

    async def _notify(self, kind: NotificationKind, recipients: List[str], context: Dict[str, Any]):
        if not recipients:
            return
        try:
            delivered = await self.notifier.notify(kind, recipients, context)
        except Exception as e:
            logger.error(f"Notifier raised while sending {kind.value}: {e}", exc_info=True)
            return
        if not delivered:
            logger.warning(f"{kind.value} notification not delivered to {len(recipients)} recipients")


# Service used by the scheduler, outside of request scope
session_service = SessionService()
