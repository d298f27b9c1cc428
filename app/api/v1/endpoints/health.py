"""
Health check endpoints
"""

from typing import Any
import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session, check_db
from app.core.redis import KeyValueStore, get_kv_store
from app.services.scheduler import get_scheduler_status
from app.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/live")
async def liveness() -> Any:
    """
    Kubernetes liveness probe
    """
    return {"status": "alive", "service": "courtside-api"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),
    store: KeyValueStore = Depends(get_kv_store)
) -> Any:
    """
    Kubernetes readiness probe - checks all dependencies
    """
    checks = {
        "database": False,
        "redis": False,
        "api": True
    }

    try:
        checks["database"] = await check_db(db)
    except Exception as e:
        logger.warning(f"Database readiness check failed: {e}")

    try:
        await store.get("health:ping")
        checks["redis"] = True
    except Exception as e:
        logger.warning(f"Redis readiness check failed: {e}")

    all_healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content={
            "status": "ready" if all_healthy else "not ready",
            "checks": checks,
            "scheduler": get_scheduler_status(),
            "version": settings.APP_VERSION
        }
    )
