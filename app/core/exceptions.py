"""
Custom application exceptions
"""

from typing import Optional, Dict, Any


class ClubException(Exception):
    """Base exception for the club application"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(ClubException):
    """Authentication related errors"""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_ERROR",
            status_code=401,
            details=details
        )


class AuthorizationError(ClubException):
    """Authorization related errors"""

    def __init__(self, message: str = "Not authorized", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_FORBIDDEN",
            status_code=403,
            details=details
        )


class NotFoundError(ClubException):
    """Resource not found errors"""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id {identifier} not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource}
        )


class ValidationError(ClubException):
    """Validation errors"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class ConflictError(ClubException):
    """Resource conflict errors"""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="CONFLICT",
            status_code=409,
            details=details
        )


class BusinessRuleError(ClubException):
    """A request that is well formed but not allowed in the current state"""

    def __init__(self, message: str, code: str = "BUSINESS_RULE_VIOLATION", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code=code,
            status_code=400,
            details=details
        )


class SessionClosedError(BusinessRuleError):
    """Session does not accept registrations"""

    def __init__(self, session_id: Any, status: str):
        super().__init__(
            message=f"Session is {status.lower()} and does not accept registrations",
            code="SESSION_CLOSED",
            details={"session_id": str(session_id), "status": status}
        )


class DuplicateRegistrationError(ConflictError):
    """User already holds an active registration for the session"""

    def __init__(self, session_id: Any):
        super().__init__(
            message="User already registered for this session",
            details={"session_id": str(session_id)}
        )


class CapacityConflictError(ConflictError):
    """Capacity reduction would orphan confirmed registrants"""

    def __init__(self, requested: int, registered: int):
        super().__init__(
            message=(
                f"Cannot reduce capacity to {requested}: "
                f"{registered} users are already registered"
            ),
            details={"requested_spots_total": requested, "registered_count": registered}
        )


class UserBannedError(ClubException):
    """Banned users cannot register"""

    def __init__(self, user_id: Any):
        super().__init__(
            message="User is banned from registering for sessions",
            code="USER_BANNED",
            status_code=403,
            details={"user_id": str(user_id)}
        )


class RateLimitError(ClubException):
    """Rate limit exceeded error"""

    def __init__(self, limit: int, window: int):
        super().__init__(
            message=f"Rate limit exceeded. Max {limit} requests per {window} seconds",
            code="RATE_LIMIT_EXCEEDED",
            status_code=429,
            details={"limit": limit, "window": window}
        )


class AccountLockedError(ClubException):
    """Too many failed login attempts"""

    def __init__(self, hours_remaining: int):
        super().__init__(
            message=(
                "This email has been temporarily banned due to too many failed attempts. "
                f"Please try again in {hours_remaining} hours."
            ),
            code="ACCOUNT_LOCKED",
            status_code=400,
            details={"hours_remaining": hours_remaining}
        )


class ExternalServiceError(ClubException):
    """External service error"""

    def __init__(self, service: str, message: str = None):
        super().__init__(
            message=message or f"External service {service} is unavailable",
            code="EXTERNAL_SERVICE_ERROR",
            status_code=503,
            details={"service": service}
        )
