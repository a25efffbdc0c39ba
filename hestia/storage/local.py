"""
In-memory storage implementation for development and tests.

A single asyncio.Lock serialises writes. No await happens between the
check and the write of a conditional operation, so each one is atomic
with respect to other coroutines on the loop.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from hestia.core.errors import EmailTaken, UserNotFound
from hestia.core.models import (
    OneTimeToken,
    RefreshTokenRecord,
    Role,
    RoleAssignment,
    TokenPurpose,
    User,
)
from hestia.core.utils import normalize_email, utc_now
from hestia.storage.base import AuthStore


class InMemoryAuthStore(AuthStore):
    """In-memory auth store."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._users: dict[str, User] = {}
        self._users_by_email: dict[str, str] = {}  # email -> user_id
        self._roles: dict[str, Role] = {}
        self._assignments: dict[str, RoleAssignment] = {}
        self._refresh_tokens: dict[str, RefreshTokenRecord] = {}
        self._one_time_tokens: dict[str, OneTimeToken] = {}

    # =========================================================================
    # Users
    # =========================================================================

    async def get_user_by_id(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def get_user_by_email(self, email: str) -> User | None:
        user_id = self._users_by_email.get(normalize_email(email))
        return await self.get_user_by_id(user_id) if user_id else None

    async def create_user(self, user: User) -> User:
        async with self._lock:
            email = normalize_email(user.email)
            if email in self._users_by_email:
                raise EmailTaken(f"Email already registered: {email}")
            stored = user.model_copy(update={"email": email, "version": 1}, deep=True)
            self._users[stored.id] = stored
            self._users_by_email[email] = stored.id
            return stored.model_copy(deep=True)

    async def update_user(
        self,
        user_id: str,
        expected_version: int,
        changes: dict[str, Any],
    ) -> User | None:
        async with self._lock:
            current = self._users.get(user_id)
            if current is None:
                raise UserNotFound(f"User not found: {user_id}")
            if current.version != expected_version:
                return None
            updated = current.model_copy(
                update={
                    **changes,
                    "version": current.version + 1,
                    "updated_at": utc_now(),
                },
                deep=True,
            )
            self._users[user_id] = updated
            return updated.model_copy(deep=True)

    # =========================================================================
    # Roles
    # =========================================================================

    async def get_role(self, role_id: str) -> Role | None:
        role = self._roles.get(role_id)
        return role.model_copy(deep=True) if role else None

    async def save_role(self, role: Role) -> Role:
        async with self._lock:
            current = self._roles.get(role.id)
            version = current.version + 1 if current else 1
            stored = role.model_copy(update={"version": version}, deep=True)
            self._roles[stored.id] = stored
            return stored.model_copy(deep=True)

    async def delete_role(self, role_id: str) -> bool:
        async with self._lock:
            return self._roles.pop(role_id, None) is not None

    async def list_roles(self, tenant_id: str | None = None) -> list[Role]:
        return [
            role.model_copy(deep=True)
            for role in self._roles.values()
            if role.is_system or role.tenant_id == tenant_id
        ]

    # =========================================================================
    # Role assignments
    # =========================================================================

    async def get_role_assignments(
        self,
        user_id: str,
        tenant_id: str | None,
    ) -> list[RoleAssignment]:
        return [
            a.model_copy(deep=True)
            for a in self._assignments.values()
            if a.user_id == user_id and a.tenant_id == tenant_id
        ]

    async def list_user_assignments(self, user_id: str) -> list[RoleAssignment]:
        return [
            a.model_copy(deep=True)
            for a in self._assignments.values()
            if a.user_id == user_id
        ]

    async def get_assignment(self, assignment_id: str) -> RoleAssignment | None:
        assignment = self._assignments.get(assignment_id)
        return assignment.model_copy(deep=True) if assignment else None

    async def create_assignment(self, assignment: RoleAssignment) -> RoleAssignment:
        async with self._lock:
            for existing in self._assignments.values():
                if (
                    existing.is_active
                    and existing.user_id == assignment.user_id
                    and existing.role_id == assignment.role_id
                    and existing.tenant_id == assignment.tenant_id
                ):
                    existing.expires_at = assignment.expires_at
                    existing.assigned_by = assignment.assigned_by
                    return existing.model_copy(deep=True)

            stored = assignment.model_copy(deep=True)
            self._assignments[stored.id] = stored
            return stored.model_copy(deep=True)

    async def update_assignment(
        self,
        assignment_id: str,
        changes: dict[str, Any],
    ) -> RoleAssignment | None:
        async with self._lock:
            current = self._assignments.get(assignment_id)
            if current is None:
                return None
            updated = current.model_copy(update=changes, deep=True)
            self._assignments[assignment_id] = updated
            return updated.model_copy(deep=True)

    # =========================================================================
    # Refresh tokens
    # =========================================================================

    async def create_refresh_token(self, record: RefreshTokenRecord) -> None:
        async with self._lock:
            self._refresh_tokens[record.id] = record.model_copy(deep=True)

    async def get_refresh_token(self, token_id: str) -> RefreshTokenRecord | None:
        record = self._refresh_tokens.get(token_id)
        return record.model_copy(deep=True) if record else None

    async def conditional_redeem(
        self,
        token_id: str,
        now: datetime,
        replaced_by: str | None = None,
    ) -> RefreshTokenRecord | None:
        async with self._lock:
            record = self._refresh_tokens.get(token_id)
            if record is None or not record.is_redeemable(now):
                return None
            record.redeemed_at = now
            record.replaced_by = replaced_by
            return record.model_copy(deep=True)

    async def revoke_refresh_token(self, token_id: str, now: datetime) -> bool:
        async with self._lock:
            record = self._refresh_tokens.get(token_id)
            if record is None:
                return False
            if record.revoked_at is None:
                record.revoked_at = now
            return True

    async def revoke_user_refresh_tokens(self, user_id: str, now: datetime) -> int:
        async with self._lock:
            count = 0
            for record in self._refresh_tokens.values():
                if record.user_id == user_id and record.is_redeemable(now):
                    record.revoked_at = now
                    count += 1
            return count

    # =========================================================================
    # One-time tokens
    # =========================================================================

    async def create_one_time_token(self, token: OneTimeToken) -> None:
        async with self._lock:
            self._one_time_tokens[token.id] = token.model_copy(deep=True)

    async def consume_one_time_token(
        self,
        token_id: str,
        purpose: TokenPurpose,
        now: datetime,
    ) -> OneTimeToken | None:
        async with self._lock:
            token = self._one_time_tokens.get(token_id)
            if (
                token is None
                or token.purpose != purpose
                or token.consumed_at is not None
                or token.expires_at <= now
            ):
                return None
            token.consumed_at = now
            return token.model_copy(deep=True)

    async def discard_one_time_tokens(self, user_id: str, purpose: TokenPurpose) -> int:
        async with self._lock:
            stale = [
                token_id
                for token_id, token in self._one_time_tokens.items()
                if token.user_id == user_id
                and token.purpose == purpose
                and token.consumed_at is None
            ]
            for token_id in stale:
                del self._one_time_tokens[token_id]
            return len(stale)


# =============================================================================
# Factory
# =============================================================================


def create_local_storage() -> AuthStore:
    """Create an AuthStore backed by process memory."""
    return InMemoryAuthStore()
