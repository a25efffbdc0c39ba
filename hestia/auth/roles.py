"""
Role hierarchy.

Roles form a forest: each role has at most one parent, referenced by id.
A role's effective permissions are its own grants unioned with every
ancestor's grants. There are no deny rules, so ``priority`` never changes
the result.

Resolved sets are memoised. Every write clears the memo before and after
the store write and bumps a generation counter; a resolution only stores
its result if no write happened while it ran. A reader never sees a
result older than the last completed write.
"""

from __future__ import annotations

import logging
from typing import Iterable

from hestia.config import Settings, get_settings
from hestia.core.errors import RoleCycleError, RoleImmutable, RoleInUse, RoleNotFound
from hestia.core.events import EventBus
from hestia.core.models import Role
from hestia.core.permissions import Permission, parse_permissions
from hestia.core.utils import bounded, utc_now
from hestia.storage.base import AuthStore

logger = logging.getLogger(__name__)


class RoleGraph:
    """Queryable role forest backed by an AuthStore."""

    def __init__(
        self,
        store: AuthStore,
        settings: Settings | None = None,
        events: EventBus | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.events = events
        self._cache: dict[str, frozenset[Permission]] = {}
        self._generation = 0

    async def _load(self, role_id: str) -> Role:
        role = await bounded(
            self.store.get_role(role_id),
            self.settings.dependency_timeout_seconds,
            "role lookup",
        )
        if role is None:
            raise RoleNotFound(f"Role not found: {role_id}")
        return role

    async def get_role(self, role_id: str) -> Role:
        return await self._load(role_id)

    # =========================================================================
    # Reads
    # =========================================================================

    async def ancestors(self, role_id: str) -> list[Role]:
        """
        The role followed by its parent chain, nearest first.

        Raises RoleCycleError if the chain revisits a role or grows past
        ``max_role_depth``.
        """
        chain: list[Role] = []
        seen: set[str] = set()
        current: str | None = role_id

        while current is not None:
            if current in seen:
                logger.error("Role cycle detected at %s while resolving %s", current, role_id)
                raise RoleCycleError(f"Cycle through role {current}")
            if len(chain) >= self.settings.max_role_depth:
                raise RoleCycleError(f"Role chain from {role_id} exceeds max depth")
            seen.add(current)
            role = await self._load(current)
            chain.append(role)
            current = role.parent_id

        return chain

    async def resolve_permissions(self, role_id: str) -> frozenset[Permission]:
        """Own permissions unioned with every ancestor's."""
        cached = self._cache.get(role_id)
        if cached is not None:
            return cached

        generation = self._generation
        permissions: set[Permission] = set()
        for role in await self.ancestors(role_id):
            permissions.update(role.permissions)
        resolved = frozenset(permissions)

        if generation == self._generation:
            self._cache[role_id] = resolved
        return resolved

    async def list_roles(self, tenant_id: str | None = None) -> list[Role]:
        return await bounded(
            self.store.list_roles(tenant_id),
            self.settings.dependency_timeout_seconds,
            "role listing",
        )

    # =========================================================================
    # Writes
    # =========================================================================

    def invalidate(self) -> None:
        """Drop every memoised resolution."""
        self._generation += 1
        self._cache.clear()

    async def _save(self, role: Role) -> Role:
        self.invalidate()
        try:
            return await bounded(
                self.store.save_role(role),
                self.settings.dependency_timeout_seconds,
                "role save",
            )
        finally:
            self.invalidate()

    async def _check_parent(self, role_id: str, parent_id: str | None) -> None:
        """Reject a parent whose ancestor chain contains ``role_id``."""
        if parent_id is None:
            return
        if parent_id == role_id:
            raise RoleCycleError(f"Role {role_id} cannot be its own parent")
        for ancestor in await self.ancestors(parent_id):
            if ancestor.id == role_id:
                raise RoleCycleError(f"Parent {parent_id} descends from {role_id}")

    @staticmethod
    def _check_scope(role: Role, parent: Role) -> None:
        # Custom roles may inherit from system roles or their own tenant's roles
        if parent.tenant_id is not None and parent.tenant_id != role.tenant_id:
            raise RoleNotFound(f"Role not found: {parent.id}")

    @staticmethod
    def _ensure_mutable(role: Role, allow_system: bool) -> None:
        if role.is_system and not allow_system:
            raise RoleImmutable(f"Role {role.id} is a system role")

    async def create_role(
        self,
        name: str,
        permissions: Iterable[Permission | str] = (),
        parent_id: str | None = None,
        *,
        role_id: str | None = None,
        description: str = "",
        priority: int = 0,
        tenant_id: str | None = None,
        is_system: bool = False,
    ) -> Role:
        """Create a role. The parent must exist and the result stays acyclic."""
        fields = {
            "name": name,
            "description": description,
            "parent_id": parent_id,
            "permissions": set(parse_permissions(permissions)),
            "priority": priority,
            "tenant_id": None if is_system else tenant_id,
            "is_system": is_system,
        }
        if role_id:
            fields["id"] = role_id
        role = Role(**fields)

        if parent_id is not None:
            self._check_scope(role, await self._load(parent_id))
            await self._check_parent(role.id, parent_id)

        saved = await self._save(role)
        logger.info("Role %s (%s) created, parent=%s", saved.id, saved.name, parent_id)
        if self.events:
            await self.events.emit("role.created", tenant_id=saved.tenant_id, role_id=saved.id)
        return saved

    async def update_role(
        self,
        role_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        permissions: Iterable[Permission | str] | None = None,
        priority: int | None = None,
        allow_system: bool = False,
    ) -> Role:
        """Edit a role's own fields (use set_parent to move it)."""
        role = await self._load(role_id)
        self._ensure_mutable(role, allow_system)

        changes: dict = {"updated_at": utc_now()}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if permissions is not None:
            changes["permissions"] = set(parse_permissions(permissions))
        if priority is not None:
            changes["priority"] = priority

        saved = await self._save(role.model_copy(update=changes, deep=True))
        logger.info("Role %s updated", role_id)
        if self.events:
            await self.events.emit("role.updated", tenant_id=saved.tenant_id, role_id=role_id)
        return saved

    async def set_parent(
        self,
        role_id: str,
        parent_id: str | None,
        *,
        allow_system: bool = False,
    ) -> Role:
        """
        Reparent a role.

        Runs a bounded ancestor walk from the new parent and refuses the
        move if it would close a cycle.
        """
        role = await self._load(role_id)
        self._ensure_mutable(role, allow_system)
        if parent_id is not None:
            self._check_scope(role, await self._load(parent_id))
        await self._check_parent(role_id, parent_id)

        saved = await self._save(
            role.model_copy(update={"parent_id": parent_id, "updated_at": utc_now()}, deep=True)
        )
        logger.info("Role %s reparented to %s", role_id, parent_id)
        if self.events:
            await self.events.emit(
                "role.reparented",
                tenant_id=saved.tenant_id,
                role_id=role_id,
                parent_id=parent_id,
            )
        return saved

    async def delete_role(self, role_id: str, *, allow_system: bool = False) -> None:
        """
        Delete a role that no other role inherits from.

        Assignments still pointing at it stop granting anything.
        """
        role = await self._load(role_id)
        self._ensure_mutable(role, allow_system)

        children = [r.id for r in await self.list_roles(role.tenant_id) if r.parent_id == role_id]
        if children:
            raise RoleInUse(f"Role {role_id} is the parent of {', '.join(children)}")

        self.invalidate()
        try:
            await bounded(
                self.store.delete_role(role_id),
                self.settings.dependency_timeout_seconds,
                "role delete",
            )
        finally:
            self.invalidate()
        logger.info("Role %s deleted", role_id)
        if self.events:
            await self.events.emit("role.deleted", tenant_id=role.tenant_id, role_id=role_id)
