"""
Session endpoints
"""

from typing import Annotated, Any, List
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.security import get_current_user, require_admin
from app.models.user import User
from app.schemas.response import PaginatedResponse, PaginationMeta, CountResponse
from app.schemas.session import (
    SessionCreate,
    SessionUpdate,
    SessionResponse,
    SessionQuery,
    ArchiveResult,
)
from app.services.email_service import get_notifier
from app.services.session_service import SessionService

router = APIRouter()


def get_session_service(notifier=Depends(get_notifier)) -> SessionService:
    return SessionService(notifier=notifier)


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(
    session_data: SessionCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    service: SessionService = Depends(get_session_service)
) -> Any:
    """
    Create a session (admin only)
    """
    return await service.create_session(db, session_data)


@router.get("", response_model=List[SessionResponse])
async def list_sessions(
    db: AsyncSession = Depends(get_session),
    service: SessionService = Depends(get_session_service)
) -> Any:
    """
    All live sessions ordered by date and time
    """
    return await service.list_sessions(db)


@router.get("/paginate", response_model=PaginatedResponse[SessionResponse])
async def paginate_sessions(
    query: Annotated[SessionQuery, Query()],
    db: AsyncSession = Depends(get_session),
    service: SessionService = Depends(get_session_service)
) -> Any:
    """
    Search and filter sessions page by page
    """
    sessions, total = await service.paginate_sessions(db, query)
    return PaginatedResponse[SessionResponse](
        data=[SessionResponse.model_validate(s) for s in sessions],
        pagination=PaginationMeta.build(query.page, query.limit, total)
    )


@router.get("/active/count", response_model=CountResponse)
async def count_active_sessions(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    service: SessionService = Depends(get_session_service)
) -> Any:
    """
    Number of sessions currently open for registration (admin only)
    """
    return CountResponse(count=await service.count_active_sessions(db))


@router.post("/archive-past-sessions", response_model=ArchiveResult)
async def archive_past_sessions(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    service: SessionService = Depends(get_session_service)
) -> Any:
    """
    Run the archival job now (admin only)
    """
    archived = await service.auto_archive_past_sessions(db)
    return ArchiveResult(
        archived_count=archived,
        message=f"Successfully archived {archived} past sessions"
    )


@router.get("/user/{kind}", response_model=List[SessionResponse])
async def get_user_sessions(
    kind: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: SessionService = Depends(get_session_service)
) -> Any:
    """
    The caller's upcoming or past sessions
    """
    return await service.get_user_sessions(db, current_user.id, kind)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session_by_id(
    session_id: UUID,
    db: AsyncSession = Depends(get_session),
    service: SessionService = Depends(get_session_service)
) -> Any:
    return await service.get_session(db, session_id)


@router.put("/{session_id}", response_model=SessionResponse)
async def update_session(
    session_id: UUID,
    patch: SessionUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    service: SessionService = Depends(get_session_service)
) -> Any:
    """
    Partially update a session (admin only)

    Only the fields present in the body are changed. Capacity changes keep
    spots_available consistent with the confirmed registrations.
    """
    return await service.update_session(db, session_id, patch)


@router.delete("/{session_id}", response_model=SessionResponse)
async def delete_session(
    session_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    service: SessionService = Depends(get_session_service)
) -> Any:
    """
    Soft delete a session and its registrations (admin only)
    """
    return await service.delete_session(db, session_id)


@router.post("/{session_id}/archive", response_model=SessionResponse)
async def archive_session(
    session_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    service: SessionService = Depends(get_session_service)
) -> Any:
    return await service.archive_session(db, session_id)
