"""
Registration model
"""

from sqlalchemy import Column, Integer, Boolean, ForeignKey, DateTime, Enum, Index, Uuid, text
from sqlalchemy.orm import relationship
import enum

from app.models.base import BaseModel, SoftDeleteMixin


class RegistrationStatus(str, enum.Enum):
    REGISTERED = "REGISTERED"
    WAITLISTED = "WAITLISTED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


ACTIVE_STATUSES = (RegistrationStatus.REGISTERED, RegistrationStatus.WAITLISTED)

# One REGISTERED or WAITLISTED row per (user, session); finished rows do not count
LIVE_ACTIVE_CLAUSE = "deleted_at IS NULL AND status IN ('REGISTERED', 'WAITLISTED')"

# Position of a confirmed seat; waitlist ranks start at 1
CONFIRMED_POSITION = 0


class Registration(SoftDeleteMixin, BaseModel):
    """
    One user's claim on one session: a confirmed seat or a waitlist rank
    """
    __tablename__ = "registrations"
    __table_args__ = (
        Index(
            "uq_registration_user_session_live",
            "user_id",
            "session_id",
            unique=True,
            postgresql_where=text(LIVE_ACTIVE_CLAUSE),
            sqlite_where=text(LIVE_ACTIVE_CLAUSE),
        ),
        Index("ix_registration_session_status_position", "session_id", "status", "position"),
    )

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    session_id = Column(Uuid(as_uuid=True), ForeignKey("sessions.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=CONFIRMED_POSITION)  # 0 = seat, 1+ = waitlist rank
    status = Column(
        Enum(RegistrationStatus),
        default=RegistrationStatus.REGISTERED,
        nullable=False,
        index=True
    )
    has_attended = Column(Boolean, default=False, nullable=False)
    last_cancellation = Column(DateTime(timezone=True))

    # Relationships
    user = relationship("User", back_populates="registrations")
    session = relationship("Session", back_populates="registrations")

    @property
    def is_active(self) -> bool:
        return not self.is_deleted and self.status in ACTIVE_STATUSES

    def __repr__(self):
        return (
            f"<Registration(id={self.id}, user_id={self.user_id}, session_id={self.session_id}, "
            f"status={self.status}, position={self.position})>"
        )
