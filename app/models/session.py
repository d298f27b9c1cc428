"""
Session model
"""

from sqlalchemy import (
    Column, String, Integer, Text, Date, Time, Boolean, Enum, JSON, CheckConstraint
)
from sqlalchemy.orm import relationship
import enum

from app.models.base import BaseModel, SoftDeleteMixin


class SessionStatus(str, enum.Enum):
    OPEN = "OPEN"              # Open for registrations
    FULL = "FULL"              # Full but waitlist available
    VIEW_ONLY = "VIEW_ONLY"    # Can view but can't register
    CLOSED = "CLOSED"          # No registrations or waitlist


class SkillLevel(str, enum.Enum):
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"


# Statuses that reject new registrations outright
REGISTRATION_BLOCKING_STATUSES = (SessionStatus.CLOSED, SessionStatus.VIEW_ONLY)

# Statuses that imply no free seat
ZERO_SPOT_STATUSES = (SessionStatus.FULL, SessionStatus.CLOSED)


class Session(SoftDeleteMixin, BaseModel):
    """
    A scheduled club session with a fixed number of seats
    """
    __tablename__ = "sessions"
    __table_args__ = (
        CheckConstraint("spots_total >= 1", name="ck_sessions_spots_total_positive"),
        CheckConstraint(
            "spots_available >= 0 AND spots_available <= spots_total",
            name="ck_sessions_spots_available_range"
        ),
    )

    name = Column(String(255), nullable=False, index=True)
    location = Column(String(255), nullable=False)
    date = Column(Date, nullable=False, index=True)
    time = Column(Time, nullable=False)
    skill_levels = Column(JSON, nullable=False, default=list)
    spots_total = Column(Integer, nullable=False)
    spots_available = Column(Integer, nullable=False)
    status = Column(
        Enum(SessionStatus),
        default=SessionStatus.OPEN,
        nullable=False,
        index=True
    )
    is_archived = Column(Boolean, default=False, nullable=False, index=True)
    notes = Column(Text)

    # Relationships
    registrations = relationship("Registration", back_populates="session")

    @property
    def accepts_registrations(self) -> bool:
        return self.status not in REGISTRATION_BLOCKING_STATUSES

    def __repr__(self):
        return (
            f"<Session(id={self.id}, name={self.name}, status={self.status}, "
            f"spots={self.spots_available}/{self.spots_total})>"
        )
