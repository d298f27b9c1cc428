"""
Base model class with common fields
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Uuid, func
import uuid

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseModel(Base):
    """
    Abstract base model with common fields
    """
    __abstract__ = True

    id = Column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False
    )
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )


class SoftDeleteMixin:
    """
    Tombstone column. Rows with deleted_at set are invisible to every query
    that goes through ``active()``.
    """

    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    @classmethod
    def active(cls):
        return cls.deleted_at.is_(None)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def soft_delete(self):
        self.deleted_at = utcnow()
