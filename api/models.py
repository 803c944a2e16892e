"""
API request and response models for tokengate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from auth.models import AuthenticationResult, User
from auth.tokens import PASSWORD_MAX_BYTES, password_too_long

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"
# Deliberately loose: one @, no whitespace, a dot in the domain. Ownership is
# proven by the activation mail, not by the regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# Identifier fields are trimmed; passwords are taken exactly as typed.
_Username = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=3, max_length=64, pattern=USERNAME_PATTERN)
]
_Email = Annotated[str, StringConstraints(strip_whitespace=True, max_length=320, pattern=EMAIL_PATTERN)]


def _check_password_bytes(value: str) -> str:
    """bcrypt reads at most 72 bytes; reject anything longer instead of truncating."""
    if password_too_long(value):
        raise ValueError(f"password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    username: _Username
    email: _Email
    password: str = Field(min_length=8, max_length=PASSWORD_MAX_BYTES)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64)]
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_BYTES)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class RefreshTokenRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh/token."""

    refresh_token: str = Field(min_length=1, max_length=128)
    username: str = Field(min_length=1, max_length=64)


class LogoutRequest(BaseModel):
    """Request body for POST /api/v1/auth/logout."""

    refresh_token: str = Field(min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AuthenticationResponse(BaseModel):
    """Response for login and refresh.

    refresh_token is null on refresh: the refresh token is not rotated.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    username: str
    expires_at: datetime
    refresh_token: Optional[str] = None

    @classmethod
    def from_result(cls, result: AuthenticationResult) -> "AuthenticationResponse":
        return cls(
            access_token=result.access_token,
            username=result.username,
            expires_at=result.expires_at,
            refresh_token=result.refresh_token,
        )


class UserResponse(BaseModel):
    """Public view of a User -- never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    created_at: str
    enabled: bool

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            created_at=user.created_at or "",
            enabled=user.enabled,
        )


class LoggedInResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    logged_in: bool


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
