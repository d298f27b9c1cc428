"""
Registration endpoints
"""

from typing import Annotated, Any, List
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.exceptions import AuthorizationError
from app.core.redis import KeyValueStore, get_kv_store
from app.core.security import get_current_user, require_admin
from app.models.user import User
from app.schemas.registration import (
    RegistrationCreate,
    RegistrationResponse,
    RegistrationHistoryQuery,
    MarkAttendance,
)
from app.services.email_service import get_notifier
from app.services.registration_service import RegistrationService

router = APIRouter()


def get_registration_service(
    notifier=Depends(get_notifier),
    kv_store: KeyValueStore = Depends(get_kv_store)
) -> RegistrationService:
    return RegistrationService(notifier=notifier, kv_store=kv_store)


def _respond(service: RegistrationService, registrations) -> List[RegistrationResponse]:
    return [RegistrationResponse(**service.format_registration(r)) for r in registrations]


@router.post("", response_model=RegistrationResponse, status_code=201)
async def register_for_session(
    registration_data: RegistrationCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    Register for a session

    Takes a free seat if there is one, otherwise joins the waitlist. Admins
    may register another member by passing user_id.
    """
    user_id = registration_data.user_id or current_user.id
    if user_id != current_user.id and not current_user.is_admin:
        raise AuthorizationError("Only admins can register other users")

    registration = await service.create_registration(db, user_id, registration_data.session_id)
    return RegistrationResponse(**service.format_registration(registration))


@router.get("/current", response_model=List[RegistrationResponse])
async def get_current_user_registrations(
    query: Annotated[RegistrationHistoryQuery, Query()],
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    The caller's registration history
    """
    registrations = await service.get_user_history(db, current_user.id, query)
    return _respond(service, registrations)


@router.get("/session/{session_id}", response_model=List[RegistrationResponse])
async def get_session_registrations(
    session_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    Confirmed registrations for a session (admin only)
    """
    registrations = await service.get_session_registrations(db, session_id)
    return _respond(service, registrations)


@router.get("/session/{session_id}/waitlist", response_model=List[RegistrationResponse])
async def get_session_waitlist(
    session_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    Waitlist for a session in position order (admin only)
    """
    registrations = await service.get_session_waitlist(db, session_id)
    return _respond(service, registrations)


@router.get("/user/{user_id}", response_model=List[RegistrationResponse])
async def get_user_registrations(
    user_id: UUID,
    query: Annotated[RegistrationHistoryQuery, Query()],
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    A member's registration history (the member themselves or an admin)
    """
    if user_id != current_user.id and not current_user.is_admin:
        raise AuthorizationError("Not allowed to view this user's registrations")

    registrations = await service.get_user_history(db, user_id, query)
    return _respond(service, registrations)


@router.delete("/{registration_id}", response_model=RegistrationResponse)
async def cancel_registration(
    registration_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    Cancel a registration (owner or admin)

    Cancelling a confirmed seat promotes the first eligible waitlisted member.
    """
    registration = await service.get_registration(db, registration_id)
    if registration.user_id != current_user.id and not current_user.is_admin:
        raise AuthorizationError("Not allowed to cancel this registration")

    registration = await service.cancel_registration(db, registration_id)
    return RegistrationResponse(**service.format_registration(registration))


@router.post("/{registration_id}/attendance", response_model=RegistrationResponse)
async def mark_attendance(
    registration_id: UUID,
    attendance: MarkAttendance,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    Mark attendance and update the member's no-show count (admin only)
    """
    registration = await service.mark_attendance(db, registration_id, attendance.has_attended)
    return RegistrationResponse(**service.format_registration(registration))
