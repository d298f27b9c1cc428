"""
Database models
"""

from app.models.user import User, MembershipLevel
from app.models.session import Session, SessionStatus, SkillLevel
from app.models.registration import Registration, RegistrationStatus

__all__ = [
    "User",
    "MembershipLevel",
    "Session",
    "SessionStatus",
    "SkillLevel",
    "Registration",
    "RegistrationStatus"
]
