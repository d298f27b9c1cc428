"""
Session schemas
"""

from pydantic import Field, field_validator, model_validator
from typing import Optional, List
import datetime as dt
import enum

from app.schemas.base import BaseSchema, IDSchema, TimestampSchema
from app.models.session import SessionStatus, SkillLevel


class SessionBase(BaseSchema):
    """Base session schema"""
    name: str = Field(..., min_length=1, max_length=255)
    location: str = Field(..., min_length=1, max_length=255)
    date: dt.date
    time: dt.time
    skill_levels: List[SkillLevel] = Field(..., min_length=1)
    spots_total: int = Field(..., ge=1)
    notes: Optional[str] = None


class SessionCreate(SessionBase):
    """Session creation schema"""
    spots_available: Optional[int] = Field(None, ge=0)
    status: SessionStatus = SessionStatus.OPEN

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Sunday Morning Tennis",
                "location": "NYU Tennis Courts",
                "date": "2024-03-20",
                "time": "14:00",
                "skill_levels": ["INTERMEDIATE", "ADVANCED"],
                "spots_total": 12,
                "notes": "Please bring your own racket. Water will be provided."
            }
        }
    }

    @model_validator(mode='after')
    def validate_spots(self):
        if self.spots_available is not None and self.spots_available > self.spots_total:
            raise ValueError('spots_available cannot exceed spots_total')
        return self


class SessionUpdate(BaseSchema):
    """
    Patch for a session. Every field is optional; the service merges only the
    fields present in the request (``model_dump(exclude_unset=True)``).
    """
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    location: Optional[str] = Field(None, min_length=1, max_length=255)
    date: Optional[dt.date] = None
    time: Optional[dt.time] = None
    skill_levels: Optional[List[SkillLevel]] = Field(None, min_length=1)
    spots_total: Optional[int] = Field(None, ge=1)
    spots_available: Optional[int] = Field(None, ge=0)
    status: Optional[SessionStatus] = None
    notes: Optional[str] = None

    @field_validator('name', 'location', 'date', 'time', 'skill_levels', 'spots_total', 'spots_available', 'status')
    def reject_explicit_null(cls, v):
        if v is None:
            raise ValueError('field cannot be null')
        return v


class SessionResponse(SessionBase, IDSchema, TimestampSchema):
    """Session response schema"""
    spots_available: int
    status: SessionStatus
    is_archived: bool


class SessionSortField(str, enum.Enum):
    DATE = "date"
    TIME = "time"
    NAME = "name"
    LOCATION = "location"
    SPOTS_AVAILABLE = "spots_available"
    CREATED_AT = "created_at"


class SortOrder(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


class SessionQuery(BaseSchema):
    """Filters for the paginated session listing"""
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    search: Optional[str] = None
    location: Optional[str] = None
    skill_levels: Optional[List[SkillLevel]] = None
    date: Optional[dt.date] = None
    has_spots: bool = False
    sort_by: Optional[SessionSortField] = None
    sort_order: SortOrder = SortOrder.ASC


class ArchiveResult(BaseSchema):
    archived_count: int
    message: str
