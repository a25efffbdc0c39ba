"""
Storage abstraction layer.

All persistence for the auth core goes through this interface. This allows
swapping implementations (in-memory → PostgreSQL, DynamoDB, ...) without
changing application code.

Conditional operations are the contract that makes the core safe under
concurrent requests for the same user:
- update_user        → UPDATE users SET ... WHERE id = :id AND version = :expected
- conditional_redeem → UPDATE refresh_tokens SET redeemed_at = :now
                       WHERE id = :id AND redeemed_at IS NULL AND revoked_at IS NULL
                       AND expires_at > :now
- consume_one_time_token → same shape on one_time_tokens.consumed_at
Each must be a single atomic statement in a real backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from hestia.core.models import (
    OneTimeToken,
    RefreshTokenRecord,
    Role,
    RoleAssignment,
    TokenPurpose,
    User,
)


class AuthStore(ABC):
    """
    Storage for users, roles, role assignments and token records.

    Returned models are copies: mutating them never changes stored state.
    Writes go through the explicit methods below.
    """

    # =========================================================================
    # Users
    # =========================================================================

    @abstractmethod
    async def get_user_by_id(self, user_id: str) -> User | None:
        """Get a user by ID."""
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> User | None:
        """Get a user by normalized email."""
        pass

    @abstractmethod
    async def create_user(self, user: User) -> User:
        """
        Insert a new user.

        Raises EmailTaken if the email is already registered.
        """
        pass

    @abstractmethod
    async def update_user(
        self,
        user_id: str,
        expected_version: int,
        changes: dict[str, Any],
    ) -> User | None:
        """
        Conditionally update a user.

        Applies ``changes`` only if the stored version equals
        ``expected_version``, then bumps the version.

        Returns:
            The updated user, or None if the version did not match.

        Raises:
            UserNotFound: no such user
        """
        pass

    # =========================================================================
    # Roles
    # =========================================================================

    @abstractmethod
    async def get_role(self, role_id: str) -> Role | None:
        """Get a role (including its parent link) by ID."""
        pass

    @abstractmethod
    async def save_role(self, role: Role) -> Role:
        """Insert or replace a role, bumping its version."""
        pass

    @abstractmethod
    async def delete_role(self, role_id: str) -> bool:
        """Delete a role. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def list_roles(self, tenant_id: str | None = None) -> list[Role]:
        """System roles plus the custom roles owned by ``tenant_id`` (None = global custom roles)."""
        pass

    # =========================================================================
    # Role assignments
    # =========================================================================

    @abstractmethod
    async def get_role_assignments(
        self,
        user_id: str,
        tenant_id: str | None,
    ) -> list[RoleAssignment]:
        """
        All assignments of a user scoped to exactly ``tenant_id``.

        ``tenant_id=None`` selects global (null-tenant) assignments only.
        Inactive and expired assignments are included; filtering is the
        resolver's job.
        """
        pass

    @abstractmethod
    async def list_user_assignments(self, user_id: str) -> list[RoleAssignment]:
        """Every assignment of a user, across all tenants."""
        pass

    @abstractmethod
    async def get_assignment(self, assignment_id: str) -> RoleAssignment | None:
        pass

    @abstractmethod
    async def create_assignment(self, assignment: RoleAssignment) -> RoleAssignment:
        """
        Insert an assignment.

        If an active assignment for the same (user, role, tenant) exists,
        it is updated in place instead, keeping one active row per triple.
        """
        pass

    @abstractmethod
    async def update_assignment(
        self,
        assignment_id: str,
        changes: dict[str, Any],
    ) -> RoleAssignment | None:
        pass

    # =========================================================================
    # Refresh tokens
    # =========================================================================

    @abstractmethod
    async def create_refresh_token(self, record: RefreshTokenRecord) -> None:
        pass

    @abstractmethod
    async def get_refresh_token(self, token_id: str) -> RefreshTokenRecord | None:
        pass

    @abstractmethod
    async def conditional_redeem(
        self,
        token_id: str,
        now: datetime,
        replaced_by: str | None = None,
    ) -> RefreshTokenRecord | None:
        """
        Atomically mark a refresh token redeemed.

        Succeeds only if the token exists, is not redeemed, not revoked
        and not expired at ``now``. Under concurrent calls exactly one
        caller gets the record back; every other caller gets None.
        """
        pass

    @abstractmethod
    async def revoke_refresh_token(self, token_id: str, now: datetime) -> bool:
        """Permanently invalidate a refresh token. False if unknown."""
        pass

    @abstractmethod
    async def revoke_user_refresh_tokens(self, user_id: str, now: datetime) -> int:
        """Revoke every still-redeemable refresh token of a user."""
        pass

    # =========================================================================
    # One-time tokens (email verification, password reset)
    # =========================================================================

    @abstractmethod
    async def create_one_time_token(self, token: OneTimeToken) -> None:
        pass

    @abstractmethod
    async def consume_one_time_token(
        self,
        token_id: str,
        purpose: TokenPurpose,
        now: datetime,
    ) -> OneTimeToken | None:
        """
        Atomically consume a one-time token.

        Succeeds once, only for the right purpose and before expiry.
        """
        pass

    @abstractmethod
    async def discard_one_time_tokens(self, user_id: str, purpose: TokenPurpose) -> int:
        """Drop every unconsumed token of a user for one purpose."""
        pass
