# =============================================================================
# Admin API Routes
# =============================================================================
#
# Tenant administration. The tenant comes from the X-Tenant-ID header;
# without it the request operates on global (platform) scope.
#
# Roles (manage_roles):
#   GET    /admin/roles                      - System + tenant roles
#   POST   /admin/roles                      - Create a tenant role
#   GET    /admin/roles/{role_id}            - Role, ancestors, resolved permissions
#   PATCH  /admin/roles/{role_id}            - Edit a tenant role
#   PUT    /admin/roles/{role_id}/parent     - Reparent (cycle checked)
#   DELETE /admin/roles/{role_id}            - Delete a leaf tenant role
#
# Assignments (manage_user_roles):
#   GET    /admin/users/{user_id}/assignments
#   POST   /admin/users/{user_id}/assignments
#   DELETE /admin/assignments/{assignment_id}
#
# Account status (manage_user_status, held in global scope):
#   POST   /admin/users/{user_id}/unlock
#   POST   /admin/users/{user_id}/suspend
#
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from fastapi import Depends
from pydantic import BaseModel, Field

from hestia.auth.context import AuthContext
from hestia.auth.policies import SecuredRouter, current_context, get_container
from hestia.container import AuthContainer
from hestia.core.errors import AssignmentNotFound, Forbidden, RoleNotFound
from hestia.core.models import Role, RoleAssignment, UserResponse
from hestia.core.permissions import Permission

secured = SecuredRouter(prefix="/admin", tags=["admin"])
router = secured.router


# =============================================================================
# Request/Response Models
# =============================================================================

class CreateRoleRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    parent_id: str | None = None
    permissions: list[Permission] = []
    priority: int = 0


class UpdateRoleRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    permissions: list[Permission] | None = None
    priority: int | None = None


class SetParentRequest(BaseModel):
    parent_id: str | None = None


class RoleDetail(BaseModel):
    role: Role
    ancestors: list[str]
    effective_permissions: list[str]


class AssignRoleRequest(BaseModel):
    role_id: str
    expires_at: datetime | None = None


# =============================================================================
# Helpers
# =============================================================================

async def _tenant_role(container: AuthContainer, role_id: str, tenant_id: str | None) -> Role:
    """A role visible from ``tenant_id``; other tenants' roles do not exist here."""
    role = await container.roles.get_role(role_id)
    if not role.is_system and role.tenant_id != tenant_id:
        raise RoleNotFound(f"Role {role_id} not visible from tenant {tenant_id}")
    return role


async def _tenant_assignment(
    container: AuthContainer,
    assignment_id: str,
    tenant_id: str | None,
) -> RoleAssignment:
    assignment = await container.resolver.get_assignment(assignment_id)
    if assignment.tenant_id != tenant_id:
        raise AssignmentNotFound(f"Assignment {assignment_id} not in tenant {tenant_id}")
    return assignment


async def _ensure_grantable(ctx: AuthContext, permissions: Iterable[Permission]) -> None:
    """Administrators can only hand out permissions they hold in the tenant."""
    missing = set(permissions) - await ctx.permissions()
    if missing:
        raise Forbidden(
            f"user {ctx.user_id} cannot grant {sorted(p.value for p in missing)} in {ctx.tenant_id}"
        )


async def _ensure_platform(ctx: AuthContext, permission: Permission) -> None:
    """Account status is platform-wide, so the permission must be held globally."""
    await AuthContext(user_id=ctx.user_id, resolver=ctx.resolver).ensure(permission)


# =============================================================================
# Roles
# =============================================================================

@secured.get("/roles", permission=Permission.MANAGE_ROLES, response_model=list[Role])
async def list_roles(
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    return await container.roles.list_roles(ctx.tenant_id)


@secured.post("/roles", permission=Permission.MANAGE_ROLES, response_model=Role, status_code=201)
async def create_role(
    data: CreateRoleRequest,
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    granted = set(data.permissions)
    if data.parent_id is not None:
        await _tenant_role(container, data.parent_id, ctx.tenant_id)
        granted |= await container.roles.resolve_permissions(data.parent_id)
    await _ensure_grantable(ctx, granted)
    return await container.roles.create_role(
        data.name,
        data.permissions,
        data.parent_id,
        description=data.description,
        priority=data.priority,
        tenant_id=ctx.tenant_id,
    )


@secured.get("/roles/{role_id}", permission=Permission.MANAGE_ROLES, response_model=RoleDetail)
async def get_role(
    role_id: str,
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    role = await _tenant_role(container, role_id, ctx.tenant_id)
    ancestors = await container.roles.ancestors(role_id)
    permissions = await container.roles.resolve_permissions(role_id)
    return RoleDetail(
        role=role,
        ancestors=[r.id for r in ancestors[1:]],
        effective_permissions=sorted(p.value for p in permissions),
    )


@secured.patch("/roles/{role_id}", permission=Permission.MANAGE_ROLES, response_model=Role)
async def update_role(
    role_id: str,
    data: UpdateRoleRequest,
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    await _tenant_role(container, role_id, ctx.tenant_id)
    if data.permissions is not None:
        await _ensure_grantable(ctx, data.permissions)
    return await container.roles.update_role(
        role_id,
        name=data.name,
        description=data.description,
        permissions=data.permissions,
        priority=data.priority,
    )


@secured.put("/roles/{role_id}/parent", permission=Permission.MANAGE_ROLES, response_model=Role)
async def set_role_parent(
    role_id: str,
    data: SetParentRequest,
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    await _tenant_role(container, role_id, ctx.tenant_id)
    if data.parent_id is not None:
        await _tenant_role(container, data.parent_id, ctx.tenant_id)
        await _ensure_grantable(ctx, await container.roles.resolve_permissions(data.parent_id))
    return await container.roles.set_parent(role_id, data.parent_id)


@secured.delete("/roles/{role_id}", permission=Permission.MANAGE_ROLES, status_code=204)
async def delete_role(
    role_id: str,
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    await _tenant_role(container, role_id, ctx.tenant_id)
    await container.roles.delete_role(role_id)


# =============================================================================
# Assignments
# =============================================================================

@secured.get(
    "/users/{user_id}/assignments",
    permission=Permission.MANAGE_USER_ROLES,
    response_model=list[RoleAssignment],
)
async def list_user_assignments(
    user_id: str,
    include_inactive: bool = False,
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    return await container.resolver.list_assignments(
        user_id,
        ctx.tenant_id,
        include_inactive=include_inactive,
    )


@secured.post(
    "/users/{user_id}/assignments",
    permission=Permission.MANAGE_USER_ROLES,
    response_model=RoleAssignment,
    status_code=201,
)
async def assign_role(
    user_id: str,
    data: AssignRoleRequest,
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    await container.auth.get_user(user_id)
    await _tenant_role(container, data.role_id, ctx.tenant_id)
    await _ensure_grantable(ctx, await container.roles.resolve_permissions(data.role_id))
    return await container.resolver.assign_role(
        user_id,
        data.role_id,
        ctx.tenant_id,
        expires_at=data.expires_at,
        assigned_by=ctx.user_id,
    )


@secured.delete(
    "/assignments/{assignment_id}",
    permission=Permission.MANAGE_USER_ROLES,
    response_model=RoleAssignment,
)
async def revoke_assignment(
    assignment_id: str,
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    await _tenant_assignment(container, assignment_id, ctx.tenant_id)
    return await container.resolver.revoke_assignment(assignment_id, revoked_by=ctx.user_id)


# =============================================================================
# Account status
# =============================================================================

@secured.post(
    "/users/{user_id}/unlock",
    permission=Permission.MANAGE_USER_STATUS,
    response_model=UserResponse,
)
async def unlock_user(
    user_id: str,
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    await _ensure_platform(ctx, Permission.MANAGE_USER_STATUS)
    return UserResponse.from_user(await container.auth.unlock(user_id))


@secured.post(
    "/users/{user_id}/suspend",
    permission=Permission.MANAGE_USER_STATUS,
    response_model=UserResponse,
)
async def suspend_user(
    user_id: str,
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    await _ensure_platform(ctx, Permission.MANAGE_USER_STATUS)
    return UserResponse.from_user(await container.auth.suspend(user_id))
