"""
User schemas
"""

from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime
import re

from app.schemas.base import BaseSchema, IDSchema, TimestampSchema
from app.models.user import MembershipLevel


class UserBase(BaseSchema):
    """Base user schema"""
    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)


class UserCreate(UserBase):
    """User creation schema"""
    password: str = Field(..., min_length=8, max_length=100)

    model_config = {
        "json_schema_extra": {
            "example": {
                "email": "john.doe@nyu.edu",
                "first_name": "John",
                "last_name": "Doe",
                "phone_number": "+15551234567",
                "password": "Demo123!"
            }
        }
    }

    @field_validator('password')
    def validate_password(cls, v):
        if not re.match(r'^(?=.*[A-Za-z])(?=.*\d)(?=.*[@$!%*#?&])[A-Za-z\d@$!%*#?&]{8,}$', v):
            raise ValueError('Password must contain at least one letter, one number, and one special character')
        return v

    @field_validator('phone_number')
    def validate_phone(cls, v):
        if v and not re.match(r'^\+?[1-9]\d{1,14}$', v):
            raise ValueError('Invalid phone number format')
        return v


class UserUpdate(BaseSchema):
    """Profile patch; only fields sent by the client are applied"""
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)


class UserAdminUpdate(UserUpdate):
    """Fields only an admin may change"""
    is_admin: Optional[bool] = None
    membership_level: Optional[MembershipLevel] = None


class BanUpdate(BaseSchema):
    is_banned: bool


class UserResponse(IDSchema, TimestampSchema):
    """User response schema"""
    email: str
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    is_admin: bool
    is_banned: bool
    no_show_count: int
    membership_level: MembershipLevel
    last_sign_in_at: Optional[datetime] = None


class Token(BaseModel):
    """Token response"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserResponse


class TokenRefresh(BaseModel):
    refresh_token: str
