"""
Registration schemas
"""

from pydantic import Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime, date

from app.schemas.base import BaseSchema, IDSchema, TimestampSchema
from app.schemas.session import SessionResponse
from app.models.registration import RegistrationStatus


class RegistrationCreate(BaseSchema):
    """
    Registration request. ``user_id`` defaults to the caller; only admins may
    register someone else.
    """
    session_id: UUID
    user_id: Optional[UUID] = None


class MarkAttendance(BaseSchema):
    has_attended: bool


class RegistrationUser(BaseSchema):
    """Registrant summary embedded in admin listings"""
    id: UUID
    first_name: str
    last_name: str
    email: str
    phone_number: Optional[str] = None
    no_show_count: int


class RegistrationResponse(IDSchema, TimestampSchema):
    """Registration response schema"""
    user_id: UUID
    session_id: UUID
    position: int = Field(..., description="0 = registered, 1+ = waitlist position")
    status: RegistrationStatus
    has_attended: bool
    last_cancellation: Optional[datetime] = None
    user: Optional[RegistrationUser] = None
    session: Optional[SessionResponse] = None


class RegistrationHistoryQuery(BaseSchema):
    """Filters for a user's registration history"""
    status: Optional[List[RegistrationStatus]] = None
    after_date: Optional[date] = None
    include_session: bool = False
    include_user: bool = False
