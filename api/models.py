"""
API request and response models for the auth service REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
Nothing here has a password_hash field, so no response can carry one.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import LoginResult, Permission, TokenPair, UserProfile, UserRole
from auth.passwords import BCRYPT_MAX_BYTES, password_too_long

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
# Deliverability is the notification service's problem.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt only reads the first 72 bytes. PASSWORD_MAX bounds characters;
# _password_bytes bounds the UTF-8 encoding, which is what bcrypt sees.
PASSWORD_MIN = 8
PASSWORD_MAX = 72


def _password_bytes(value: str) -> str:
    if password_too_long(value):
        raise ValueError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes as UTF-8.")
    return value


def _dedupe(values: list) -> list:
    seen: set = set()
    result: list = []
    for v in values:
        if v not in seen:
            seen.add(v)
            result.append(v)
    return result


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    organizationId: str = Field(min_length=1, max_length=64)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)
    name: str = Field(min_length=1, max_length=255)
    title: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=64)
    timezone: Optional[str] = Field(default=None, max_length=64)
    role: UserRole
    permissions: list[Permission] = Field(default_factory=list)

    @field_validator("permissions", mode="before")
    @classmethod
    def dedupe_permissions(cls, values: list) -> list:
        """Collapse duplicate tags before enum validation; order is irrelevant."""
        return _dedupe(list(values or []))

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _password_bytes(value)


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    # No strip, no min length: the password is checked, not validated.
    password: str = Field(max_length=PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _password_bytes(value)


class RefreshTokenRequest(BaseModel):
    refreshToken: str = Field(min_length=1, max_length=128)


class LogoutRequest(BaseModel):
    refreshToken: str = Field(min_length=1, max_length=128)


class ChangePasswordRequest(BaseModel):
    currentPassword: str = Field(max_length=PASSWORD_MAX)
    newPassword: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)

    @field_validator("currentPassword", "newPassword")
    @classmethod
    def passwords_fit_bcrypt(cls, value: str) -> str:
        return _password_bytes(value)


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


class ConfirmResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=4096)
    newPassword: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)

    @field_validator("newPassword")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _password_bytes(value)


class UserUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/users/{id}. Omitted fields stay unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    title: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=64)
    timezone: Optional[str] = Field(default=None, max_length=64)
    role: Optional[UserRole] = None


class PermissionsUpdateRequest(BaseModel):
    permissions: list[Permission]

    @field_validator("permissions", mode="before")
    @classmethod
    def dedupe_permissions(cls, values: list) -> list:
        return _dedupe(list(values or []))


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserProfileResponse(BaseModel):
    """Public user profile. There is no password hash field on this model."""

    model_config = ConfigDict(frozen=True)

    id: str
    organizationId: str
    email: str
    name: str
    title: Optional[str] = None
    phone: Optional[str] = None
    timezone: Optional[str] = None
    role: UserRole
    permissions: list[str]
    isActive: bool
    lastLogin: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserProfileResponse":
        """Factory Method: the domain -> transport mapping lives with the model."""
        return cls(
            id=profile.id,
            organizationId=profile.organization_id,
            email=profile.email,
            name=profile.name,
            title=profile.title,
            phone=profile.phone,
            timezone=profile.timezone,
            role=profile.role,
            permissions=sorted(profile.permissions),
            isActive=profile.is_active,
            lastLogin=profile.last_login,
            createdAt=profile.created_at,
            updatedAt=profile.updated_at,
        )


class TokenPairResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    accessToken: str
    refreshToken: str
    expiresIn: int
    tokenType: str = "bearer"

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairResponse":
        return cls(
            accessToken=pair.access_token,
            refreshToken=pair.refresh_token,
            expiresIn=pair.expires_in,
            tokenType=pair.token_type,
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserProfileResponse
    tokens: TokenPairResponse

    @classmethod
    def from_result(cls, result: LoginResult) -> "LoginResponse":
        return cls(
            user=UserProfileResponse.from_profile(result.user),
            tokens=TokenPairResponse.from_pair(result.tokens),
        )


class VerifyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserProfileResponse


class SuccessResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True


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

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
