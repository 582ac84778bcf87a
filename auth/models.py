"""
auth/models.py -- Domain dataclasses for credential and session entities.

Pattern: Data class (pure data containers, near-zero logic). Stores and the
session service do the work; these types own the domain shape.

User carries password_hash and therefore never leaves the store/service
boundary. Everything handed to callers is a UserProfile, built by
User.to_profile(), which has no hash field at all -- stripping is structural,
not a matter of remembering to pop a key.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    CLIENT_ADMIN = "CLIENT_ADMIN"
    CLIENT_USER = "CLIENT_USER"
    SUPPLIER_ADMIN = "SUPPLIER_ADMIN"
    SUPPLIER_USER = "SUPPLIER_USER"
    SYSTEM = "SYSTEM"


class Permission(str, Enum):
    # Client
    CREATE_REQUEST = "CREATE_REQUEST"
    EDIT_REQUEST = "EDIT_REQUEST"
    DELETE_REQUEST = "DELETE_REQUEST"
    PUBLISH_REQUEST = "PUBLISH_REQUEST"
    VIEW_REQUESTS = "VIEW_REQUESTS"
    AWARD_BID = "AWARD_BID"
    MANAGE_USERS = "MANAGE_USERS"
    MANAGE_BILLING = "MANAGE_BILLING"

    # Supplier
    VIEW_OPPORTUNITIES = "VIEW_OPPORTUNITIES"
    SUBMIT_BID = "SUBMIT_BID"
    EDIT_BID = "EDIT_BID"
    DELETE_BID = "DELETE_BID"
    VIEW_BIDS = "VIEW_BIDS"

    # Platform
    MANAGE_ORGANIZATIONS = "MANAGE_ORGANIZATIONS"
    MANAGE_SYSTEM = "MANAGE_SYSTEM"


# Never self-assignable: public registration refuses them, and only a platform
# ADMIN may grant them later. Privileged accounts come from the operator CLI.
PRIVILEGED_ROLES = frozenset({UserRole.ADMIN, UserRole.SYSTEM})
USER_ADMIN_PERMISSIONS = frozenset(
    {Permission.MANAGE_USERS.value, Permission.MANAGE_ORGANIZATIONS.value, Permission.MANAGE_SYSTEM.value}
)
PLATFORM_PERMISSIONS = frozenset({Permission.MANAGE_ORGANIZATIONS.value, Permission.MANAGE_SYSTEM.value})


def normalize_permissions(permissions) -> frozenset[str]:
    """Return the permission tags as a frozenset of plain strings.

    Accepts Permission members or raw strings; duplicates collapse. Unknown
    tags raise ValueError so a typo cannot silently grant nothing.
    """
    return frozenset(Permission(p).value for p in permissions)


@dataclass
class User:
    """Identity record as held by the credential store.

    id is a UUID4 string assigned by the store on create. email is unique and
    compared exactly as stored (case-sensitive). permissions is a frozenset so
    order never matters and duplicates cannot exist.
    """

    organization_id: str
    email: str
    password_hash: str
    name: str
    role: UserRole
    permissions: frozenset[str] = field(default_factory=frozenset)
    title: str | None = None
    phone: str | None = None
    timezone: str | None = None
    is_active: bool = True
    id: str | None = None
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_profile(self) -> UserProfile:
        return UserProfile(
            id=self.id or "",
            organization_id=self.organization_id,
            email=self.email,
            name=self.name,
            title=self.title,
            phone=self.phone,
            timezone=self.timezone,
            role=self.role,
            permissions=self.permissions,
            is_active=self.is_active,
            last_login=self.last_login,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class UserProfile:
    """Outward-facing projection of a User. Has no password_hash field."""

    id: str
    organization_id: str
    email: str
    name: str
    role: UserRole
    permissions: frozenset[str]
    is_active: bool
    title: str | None = None
    phone: str | None = None
    timezone: str | None = None
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class RefreshToken:
    """A store-backed, single-use-per-rotation bearer credential.

    token is an opaque UUID4 string (122 random bits). It is looked up by exact
    match; nothing about the value is self-describing.
    """

    user_id: str
    token: str
    expires_at: datetime
    id: str | None = None
    created_at: datetime | None = None
    revoked_at: datetime | None = None

    def is_live(self, now: datetime) -> bool:
        """Live iff never revoked and not yet expired (expires_at is exclusive)."""
        return self.revoked_at is None and self.expires_at > now


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access-token lifetime in seconds
    token_type: str = "bearer"


@dataclass(frozen=True)
class AccessTokenPayload:
    """Claims carried by a verified access token."""

    sub: str
    org: str
    role: str
    permissions: frozenset[str]
    iat: int
    exp: int


@dataclass(frozen=True)
class LoginResult:
    user: UserProfile
    tokens: TokenPair


@dataclass
class RegisterUser:
    """Input for SessionService.register()."""

    organization_id: str
    email: str
    password: str
    name: str
    role: UserRole
    permissions: frozenset[str] = field(default_factory=frozenset)
    title: str | None = None
    phone: str | None = None
    timezone: str | None = None


@dataclass
class UpdateUser:
    """Partial profile update for UserService.update_user(). None means "leave unchanged"."""

    name: str | None = None
    title: str | None = None
    phone: str | None = None
    timezone: str | None = None
    role: UserRole | None = None

    def changes(self) -> dict:
        return {k: v for k, v in vars(self).items() if v is not None}
