"""User schemas (DTOs)."""

from datetime import datetime
from enum import StrEnum

from pydantic import ConfigDict, EmailStr, Field, field_validator

from src.config.roles import UserRole
from src.shared.schemas import CamelModel
from src.shared.validators.password import validate_password_strength


NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50


def clean_email(value):
    """Strip and lower-case an email before EmailStr validation."""
    if isinstance(value, str):
        return value.strip().lower()
    return value


# Request schemas
class UserCreateRequest(CamelModel):
    """User creation by an administrator."""

    name: str = Field(..., min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH)
    email: EmailStr
    password: str = Field(..., min_length=8, description="At least 8 characters with a letter and a number")
    role: UserRole = UserRole.USER
    phone: str | None = Field(None, max_length=30)
    avatar: str | None = Field(None, max_length=500)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return clean_email(value)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value):
        """Validate password strength using shared validator."""
        return validate_password_strength(value)


class ProfileUpdateRequest(CamelModel):
    """Fields a user may send when updating their own profile.

    Which of them the caller may actually change is decided by the role's
    allow-list in the service layer.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(None, min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=30)
    avatar: str | None = Field(None, max_length=500)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return clean_email(value)


class UserUpdateRequest(ProfileUpdateRequest):
    """Fields an administrator may send when updating another user."""

    role: UserRole | None = None
    is_active: bool | None = None
    password: str | None = Field(None, min_length=8)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value):
        if value is None:
            return value
        return validate_password_strength(value)


class SortField(StrEnum):
    NAME = "name"
    EMAIL = "email"
    ROLE = "role"
    CREATED_AT = "createdAt"
    LAST_LOGIN_AT = "lastLoginAt"


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"


# Response schemas
class UserResponse(CamelModel):
    """User response. Never carries the password hash."""

    id: int
    name: str
    email: EmailStr
    role: UserRole
    is_active: bool
    is_email_verified: bool
    phone: str | None = None
    avatar: str | None = None
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class UserStatsResponse(CamelModel):
    """Account counts for the admin dashboard."""

    total: int
    active: int
    inactive: int
    verified: int
    unverified: int
    by_role: dict[str, int]
