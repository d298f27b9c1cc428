"""
Pydantic schemas for request and response validation
"""

from app.schemas.user import (
    UserCreate,
    UserUpdate,
    UserResponse,
    Token
)
from app.schemas.session import (
    SessionCreate,
    SessionUpdate,
    SessionResponse,
    SessionQuery
)
from app.schemas.registration import (
    RegistrationCreate,
    RegistrationResponse,
    MarkAttendance
)
from app.schemas.response import (
    ErrorResponse,
    PaginatedResponse,
    CountResponse,
    MessageResponse
)

__all__ = [
    "UserCreate",
    "UserUpdate",
    "UserResponse",
    "Token",
    "SessionCreate",
    "SessionUpdate",
    "SessionResponse",
    "SessionQuery",
    "RegistrationCreate",
    "RegistrationResponse",
    "MarkAttendance",
    "ErrorResponse",
    "PaginatedResponse",
    "CountResponse",
    "MessageResponse"
]
