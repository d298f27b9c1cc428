"""
Main API Router
Aggregates all API endpoints for v1
"""

from fastapi import APIRouter
from app.api.v1.endpoints import (
    auth,
    users,
    sessions,
    registrations,
    health
)

api_router = APIRouter()

# Include all routers
api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(sessions.router, prefix="/session", tags=["sessions"])
api_router.include_router(registrations.router, prefix="/registration", tags=["registrations"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
