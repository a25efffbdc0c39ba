"""
Role assignments: which roles a user holds in which tenant.

A tenant-scoped query sees only assignments made in exactly that tenant;
a query with ``tenant_id=None`` sees only global assignments. Expired and
revoked assignments are simply absent grants.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from hestia.auth.roles import RoleGraph
from hestia.config import Settings, get_settings
from hestia.core.errors import AssignmentNotFound, RoleCycleError, RoleNotFound
from hestia.core.events import EventBus
from hestia.core.models import RoleAssignment
from hestia.core.permissions import Permission
from hestia.core.utils import bounded, utc_now
from hestia.storage.base import AuthStore

logger = logging.getLogger(__name__)


class AssignmentResolver:
    """Computes a user's effective permissions inside a tenant."""

    def __init__(
        self,
        store: AuthStore,
        graph: RoleGraph,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        events: EventBus | None = None,
    ):
        self.store = store
        self.graph = graph
        self.settings = settings or get_settings()
        self._clock = clock
        self.events = events

    async def _store_call(self, awaitable, what: str):
        return await bounded(awaitable, self.settings.dependency_timeout_seconds, what)

    async def _effective_assignments(
        self,
        user_id: str,
        tenant_id: str | None,
    ) -> list[RoleAssignment]:
        assignments = await self._store_call(
            self.store.get_role_assignments(user_id, tenant_id),
            "assignment lookup",
        )
        now = self._clock()
        return [
            a for a in assignments
            if a.tenant_id == tenant_id and a.is_effective(now)
        ]

    async def _role_permissions(self, assignment: RoleAssignment) -> frozenset[Permission]:
        try:
            return await self.graph.resolve_permissions(assignment.role_id)
        except RoleNotFound:
            # The role was deleted after the grant was made
            logger.warning(
                "Assignment %s references missing role %s",
                assignment.id,
                assignment.role_id,
            )
            return frozenset()
        except RoleCycleError:
            logger.error(
                "Assignment %s references role %s whose hierarchy is corrupt",
                assignment.id,
                assignment.role_id,
            )
            return frozenset()

    # =========================================================================
    # Queries
    # =========================================================================

    async def effective_permissions(
        self,
        user_id: str,
        tenant_id: str | None = None,
    ) -> frozenset[Permission]:
        """Union of the resolved permissions of every effective assignment."""
        permissions: set[Permission] = set()
        for assignment in await self._effective_assignments(user_id, tenant_id):
            permissions.update(await self._role_permissions(assignment))
        return frozenset(permissions)

    async def has_permission(
        self,
        user_id: str,
        tenant_id: str | None,
        permission: Permission,
    ) -> bool:
        """Same answer as ``permission in effective_permissions(...)``, stops at the first grant."""
        for assignment in await self._effective_assignments(user_id, tenant_id):
            if permission in await self._role_permissions(assignment):
                return True
        return False

    async def list_assignments(
        self,
        user_id: str,
        tenant_id: str | None = None,
        *,
        include_inactive: bool = False,
    ) -> list[RoleAssignment]:
        if include_inactive:
            assignments = await self._store_call(
                self.store.list_user_assignments(user_id),
                "assignment listing",
            )
            return [a for a in assignments if a.tenant_id == tenant_id]
        return await self._effective_assignments(user_id, tenant_id)

    # =========================================================================
    # Grants
    # =========================================================================

    async def assign_role(
        self,
        user_id: str,
        role_id: str,
        tenant_id: str | None = None,
        *,
        expires_at: datetime | None = None,
        assigned_by: str | None = None,
    ) -> RoleAssignment:
        """
        Grant a role to a user in a tenant.

        Re-granting an active (user, role, tenant) triple updates its
        expiry instead of creating a duplicate.
        """
        role = await self.graph.get_role(role_id)
        if role.tenant_id is not None and role.tenant_id != tenant_id:
            raise RoleNotFound(f"Role {role_id} does not belong to tenant {tenant_id}")

        assignment = await self._store_call(
            self.store.create_assignment(
                RoleAssignment(
                    user_id=user_id,
                    role_id=role_id,
                    tenant_id=tenant_id,
                    expires_at=expires_at,
                    assigned_by=assigned_by,
                )
            ),
            "assignment create",
        )
        logger.info("Role %s assigned to user %s in tenant %s", role_id, user_id, tenant_id)
        if self.events:
            await self.events.emit(
                "role.assigned",
                user_id=user_id,
                tenant_id=tenant_id,
                role_id=role_id,
                assignment_id=assignment.id,
                assigned_by=assigned_by,
            )
        return assignment

    async def get_assignment(self, assignment_id: str) -> RoleAssignment:
        assignment = await self._store_call(
            self.store.get_assignment(assignment_id),
            "assignment lookup",
        )
        if assignment is None:
            raise AssignmentNotFound(f"Assignment not found: {assignment_id}")
        return assignment

    async def revoke_assignment(
        self,
        assignment_id: str,
        *,
        revoked_by: str | None = None,
    ) -> RoleAssignment:
        updated = await self._store_call(
            self.store.update_assignment(
                assignment_id,
                {"is_active": False, "revoked_at": self._clock()},
            ),
            "assignment update",
        )
        if updated is None:
            raise AssignmentNotFound(f"Assignment not found: {assignment_id}")

        logger.info("Assignment %s revoked by %s", assignment_id, revoked_by)
        if self.events:
            await self.events.emit(
                "role.revoked",
                user_id=updated.user_id,
                tenant_id=updated.tenant_id,
                role_id=updated.role_id,
                assignment_id=assignment_id,
                revoked_by=revoked_by,
            )
        return updated
