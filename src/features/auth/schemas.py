"""Authentication schemas (DTOs)."""

from datetime import datetime

from pydantic import EmailStr, Field, field_validator

from src.features.user.schemas import NAME_MAX_LENGTH, NAME_MIN_LENGTH, UserResponse, clean_email
from src.shared.schemas import CamelModel
from src.shared.validators.password import validate_password_strength

# Used when the email local part is too short to be a name
DEFAULT_DISPLAY_NAME = "Customer"


# Request schemas
class RegisterRequest(CamelModel):
    """Self-service registration.

    ``name`` falls back to the local part of the email when omitted.
    """

    name: str | None = Field(None, min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH)
    email: EmailStr
    password: str = Field(..., min_length=8, description="At least 8 characters with a letter and a number")

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return clean_email(value)

    @field_validator("password")
    @classmethod
    def check_password_strength(cls, value: str) -> str:
        """Validate password strength using shared validator."""
        return validate_password_strength(value)

    @property
    def display_name(self) -> str:
        """``name``, or the email local part cut to the name length limits."""
        if self.name:
            return self.name
        local_part = self.email.split("@", 1)[0][:NAME_MAX_LENGTH]
        if len(local_part) < NAME_MIN_LENGTH:
            return DEFAULT_DISPLAY_NAME
        return local_part


class LoginRequest(CamelModel):
    """Login with email and password.

    Strength rules are not applied here, so a bad guess is rejected with the
    same 401 as any other wrong password.
    """

    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return clean_email(value)


class RefreshTokenRequest(CamelModel):
    """Refresh token in the body; the ``refreshToken`` cookie is used when absent."""

    refresh_token: str | None = None


class ForgotPasswordRequest(CamelModel):
    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return clean_email(value)


class ResetPasswordRequest(CamelModel):
    password: str = Field(..., min_length=8)

    @field_validator("password")
    @classmethod
    def check_password_strength(cls, value: str) -> str:
        return validate_password_strength(value)


class ChangePasswordRequest(CamelModel):
    """Password change request."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, description="At least 8 characters with a letter and a number")

    @field_validator("new_password")
    @classmethod
    def check_password_strength(cls, value: str) -> str:
        """Validate password strength using shared validator."""
        return validate_password_strength(value)


# Response schemas
class TokenInfo(CamelModel):
    token: str
    expires: datetime


class AccessTokens(CamelModel):
    """Tokens returned in a JSON body. The refresh token only travels in a cookie."""

    access: TokenInfo


class AuthTokens(AccessTokens):
    """Access and refresh pair as issued."""

    refresh: TokenInfo


class AuthResponse(CamelModel):
    """Register and login response."""

    user: UserResponse
    tokens: AccessTokens


class RefreshResponse(CamelModel):
    tokens: AccessTokens
