"""
User model
"""

from sqlalchemy import Column, String, Boolean, Enum, Integer, DateTime
from sqlalchemy.orm import relationship
import enum

from app.models.base import BaseModel


class MembershipLevel(str, enum.Enum):
    STANDARD = "STANDARD"
    PREMIUM = "PREMIUM"


class User(BaseModel):
    """
    Club member account
    """
    __tablename__ = "users"

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone_number = Column(String(20))
    password_hash = Column(String(255), nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    no_show_count = Column(Integer, default=0, nullable=False)
    is_banned = Column(Boolean, default=False, nullable=False, index=True)
    membership_level = Column(
        Enum(MembershipLevel),
        default=MembershipLevel.STANDARD,
        nullable=False
    )
    last_sign_in_at = Column(DateTime(timezone=True))

    # Relationships
    registrations = relationship("Registration", back_populates="user")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, is_admin={self.is_admin})>"
