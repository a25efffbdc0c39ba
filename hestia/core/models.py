"""
Core data models for identity and access control.

Users, roles, role assignments, and the server-side records behind
refresh tokens and one-time (email verification / password reset) tokens.
Roles reference their parent by id, never by object, so the hierarchy
can be validated and serialized cheaply.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from hestia.core.permissions import AccountStatus, Permission
from hestia.core.utils import generate_id, utc_now


# =============================================================================
# Users
# =============================================================================


class User(BaseModel):
    """
    An identity record.

    ``version`` is bumped on every stored change and is the token for
    conditional updates (lockout counters, status transitions).
    """

    id: str = Field(default_factory=lambda: generate_id("user"))
    email: str  # Always normalized (see utils.normalize_email)
    name: str = ""
    password_hash: str

    status: AccountStatus = AccountStatus.PENDING_VERIFICATION
    email_verified: bool = False

    # Lockout
    failed_login_attempts: int = 0
    locked_until: datetime | None = None

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_login_at: datetime | None = None
    deleted_at: datetime | None = None

    version: int = 0

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None or self.status == AccountStatus.DELETED

    def is_locked(self, now: datetime) -> bool:
        """Locked and still inside the cool-down window."""
        return (
            self.status == AccountStatus.LOCKED
            and self.locked_until is not None
            and self.locked_until > now
        )

    @property
    def unlocked_status(self) -> AccountStatus:
        """Status the account returns to once a lockout ends."""
        if self.email_verified:
            return AccountStatus.ACTIVE
        return AccountStatus.PENDING_VERIFICATION


class UserResponse(BaseModel):
    """User data returned to clients (no sensitive fields)."""

    id: str
    email: str
    name: str
    status: AccountStatus
    email_verified: bool
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> UserResponse:
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            status=user.status,
            email_verified=user.email_verified,
            created_at=user.created_at,
        )


# =============================================================================
# Roles
# =============================================================================


class Role(BaseModel):
    """
    A named bundle of permissions with at most one parent.

    ``priority`` is carried for a future deny-rule extension; with purely
    additive grants it never affects a decision.
    """

    id: str = Field(default_factory=lambda: generate_id("role"))
    name: str
    description: str = ""
    parent_id: str | None = None
    permissions: set[Permission] = Field(default_factory=set)
    priority: int = 0

    is_system: bool = False
    tenant_id: str | None = None  # Owning tenant for custom roles

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = 0


class RoleAssignment(BaseModel):
    """Grant of a role to a user inside a tenant (None = global scope)."""

    id: str = Field(default_factory=lambda: generate_id("asg"))
    user_id: str
    role_id: str
    tenant_id: str | None = None

    is_active: bool = True
    expires_at: datetime | None = None
    assigned_by: str | None = None  # Audit only

    created_at: datetime = Field(default_factory=utc_now)
    revoked_at: datetime | None = None

    def is_effective(self, now: datetime) -> bool:
        """Active and not past its expiry."""
        if not self.is_active:
            return False
        return self.expires_at is None or self.expires_at > now


# =============================================================================
# Token records
# =============================================================================


class RefreshTokenRecord(BaseModel):
    """
    Server-side half of a refresh token.

    The signed token only carries ``id`` (as jti); this record decides
    whether it can still be redeemed.
    """

    id: str
    user_id: str
    issued_at: datetime
    expires_at: datetime

    redeemed_at: datetime | None = None
    revoked_at: datetime | None = None
    replaced_by: str | None = None

    def is_redeemable(self, now: datetime) -> bool:
        return (
            self.redeemed_at is None
            and self.revoked_at is None
            and self.expires_at > now
        )


class TokenPurpose(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class OneTimeToken(BaseModel):
    """Single-use token; ``id`` is the SHA-256 digest of the raw token."""

    id: str
    user_id: str
    purpose: TokenPurpose
    expires_at: datetime
    created_at: datetime = Field(default_factory=utc_now)
    consumed_at: datetime | None = None


# =============================================================================
# API-facing models
# =============================================================================


class TokenPair(BaseModel):
    """Access and refresh token pair."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # Seconds until the access token expires
    user_id: str
