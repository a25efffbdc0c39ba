"""
Auth context - the "who, where" of each request.

This is the lightweight object route handlers receive. The decision point
has already checked the route's required permission by the time a handler
sees it; ``can()`` is for finer checks inside a handler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from hestia.core.errors import Forbidden, Unauthorized
from hestia.core.permissions import Permission, parse_permission

if TYPE_CHECKING:
    from hestia.auth.assignments import AssignmentResolver


@dataclass
class AuthContext:
    """
    Authorization context for a request.

    Usage in routes:
        async def my_route(ctx: AuthContext = Depends(current_context)):
            if await ctx.can(Permission.FEATURE_RECIPE):
                ...
    """

    user_id: str | None = None
    tenant_id: str | None = None
    resolver: AssignmentResolver | None = field(default=None, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    async def can(self, permission: Permission | str) -> bool:
        """Check one permission in this request's tenant."""
        if self.user_id is None or self.resolver is None:
            return False
        return await self.resolver.has_permission(
            self.user_id,
            self.tenant_id,
            parse_permission(permission),
        )

    async def permissions(self) -> frozenset[Permission]:
        """Every permission the user holds in this request's tenant."""
        if self.user_id is None or self.resolver is None:
            return frozenset()
        return await self.resolver.effective_permissions(self.user_id, self.tenant_id)

    async def ensure(self, permission: Permission | str) -> None:
        """Raise unless the user holds ``permission``."""
        if self.user_id is None:
            raise Unauthorized("anonymous context")
        if not await self.can(permission):
            raise Forbidden(f"user {self.user_id} lacks {permission}")

    def require_user(self) -> str:
        if self.user_id is None:
            raise Unauthorized("anonymous context")
        return self.user_id
