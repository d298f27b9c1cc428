"""
API endpoints module
"""

from . import auth, users, sessions, registrations, health

__all__ = [
    "auth",
    "users",
    "sessions",
    "registrations",
    "health"
]
