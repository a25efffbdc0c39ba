"""
Policies - the single path every authorization decision flows through.

Design:
- `AuthorizationDecisionPoint.authorize()` turns (token, permission, tenant)
  into ALLOW / UNAUTHORIZED / FORBIDDEN
- Each route declares its rule (public, or required permission) when it is
  registered on a `SecuredRouter`; the rules live in a `RouteTable`
- `current_context` is the one FastAPI dependency: it looks up the matched
  route's rule, skips the decision point for public routes, and resolves
  to an AuthContext otherwise

Usage:
    router = SecuredRouter(prefix="/recipes", tags=["recipes"])

    @router.get("/{recipe_id}", permission=Permission.READ_RECIPE)
    async def get_recipe(recipe_id: str, ctx: AuthContext = Depends(current_context)):
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from hestia.auth.assignments import AssignmentResolver
from hestia.auth.context import AuthContext
from hestia.auth.tokens import TokenIssuer
from hestia.core.errors import Forbidden, TokenInvalid, Unauthorized
from hestia.core.permissions import Permission
from hestia.integrations.sentry import set_user

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-ID"
TENANT_PATH_PARAM = "tenant_id"


# =============================================================================
# Decision point
# =============================================================================


class Decision(str, Enum):
    ALLOW = "allow"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of one decision. ``user_id`` is set whenever the token verified."""

    decision: Decision
    user_id: str | None = None

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOW

    def raise_for_decision(self) -> str:
        """Return the user id on ALLOW, raise Unauthorized/Forbidden otherwise."""
        if self.decision == Decision.UNAUTHORIZED:
            raise Unauthorized("missing or invalid access token")
        if self.decision == Decision.FORBIDDEN:
            raise Forbidden(f"user {self.user_id} denied")
        return self.user_id


class AuthorizationDecisionPoint:
    """Verifies the caller's token, then asks the resolver for the permission."""

    def __init__(self, issuer: TokenIssuer, resolver: AssignmentResolver):
        self.issuer = issuer
        self.resolver = resolver

    async def authorize(
        self,
        access_token: str | None,
        required_permission: Permission | None = None,
        tenant_id: str | None = None,
    ) -> AuthorizationResult:
        """
        Decide one request.

        No token or a token that fails verification is UNAUTHORIZED; a
        verified caller without the permission is FORBIDDEN. With no
        required permission only authentication is checked.
        """
        if not access_token:
            return AuthorizationResult(Decision.UNAUTHORIZED)

        try:
            user_id = self.issuer.verify_access_token(access_token)
        except TokenInvalid:
            return AuthorizationResult(Decision.UNAUTHORIZED)

        if required_permission is None:
            return AuthorizationResult(Decision.ALLOW, user_id)

        if await self.resolver.has_permission(user_id, tenant_id, required_permission):
            return AuthorizationResult(Decision.ALLOW, user_id)

        logger.info(
            "Denied %s to user %s in tenant %s",
            required_permission.value,
            user_id,
            tenant_id,
        )
        return AuthorizationResult(Decision.FORBIDDEN, user_id)


# =============================================================================
# Route capability table
# =============================================================================


@dataclass(frozen=True)
class RouteRule:
    requires_auth: bool = True
    permission: Permission | None = None


PUBLIC = RouteRule(requires_auth=False)
AUTHENTICATED = RouteRule()


class RouteTable:
    """
    Maps (method, path template) to the rule that guards it.

    Routes missing from the table require authentication.
    """

    def __init__(self):
        self._rules: dict[tuple[str, str], RouteRule] = {}

    def register(self, method: str, path: str, rule: RouteRule) -> None:
        key = (method.upper(), path)
        if key in self._rules and self._rules[key] != rule:
            raise ValueError(f"Conflicting rules for {method} {path}")
        self._rules[key] = rule

    def merge(self, other: RouteTable) -> None:
        for (method, path), rule in other._rules.items():
            self.register(method, path, rule)

    def lookup(self, method: str, path: str) -> RouteRule:
        return self._rules.get((method.upper(), path), AUTHENTICATED)

    def is_public(self, method: str, path: str) -> bool:
        return not self.lookup(method, path).requires_auth

    def __len__(self) -> int:
        return len(self._rules)


class SecuredRouter:
    """
    An APIRouter whose routes declare their rule as they are registered.

    Every route gets ``current_context`` as a dependency, so nothing on
    this router is reachable without passing through the table.
    """

    def __init__(self, prefix: str = "", tags: list[str] | None = None):
        self.router = APIRouter(
            prefix=prefix,
            tags=tags,
            dependencies=[Depends(current_context)],
        )
        self.rules = RouteTable()

    def route(
        self,
        method: str,
        path: str,
        *,
        public: bool = False,
        permission: Permission | None = None,
        **kwargs: Any,
    ) -> Callable:
        if public and permission is not None:
            raise ValueError(f"Public route {method} {path} cannot require {permission.value}")
        self.rules.register(
            method,
            self.router.prefix + path,
            RouteRule(requires_auth=not public, permission=permission),
        )
        return self.router.api_route(path, methods=[method], **kwargs)

    def get(self, path: str, **kwargs: Any) -> Callable:
        return self.route("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Callable:
        return self.route("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> Callable:
        return self.route("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Callable:
        return self.route("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Callable:
        return self.route("DELETE", path, **kwargs)


# =============================================================================
# FastAPI dependencies
# =============================================================================


# Optional bearer (doesn't fail if no token)
optional_bearer = HTTPBearer(auto_error=False)


def get_container(request: Request):
    """The AuthContainer the app was built with."""
    return request.app.state.container


def extract_tenant_id(request: Request) -> str | None:
    """Tenant from the X-Tenant-ID header, else the ``tenant_id`` path parameter."""
    header = request.headers.get(TENANT_HEADER)
    if header and header.strip():
        return header.strip()
    return request.path_params.get(TENANT_PATH_PARAM) or None


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


async def current_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
) -> AuthContext:
    """
    Authorize the request against its route rule.

    Raises:
        Unauthorized: no or invalid access token
        Forbidden: verified caller without the route's permission
    """
    container = get_container(request)
    table: RouteTable = request.app.state.route_table
    rule = table.lookup(request.method, _route_template(request))
    tenant_id = extract_tenant_id(request)

    if not rule.requires_auth:
        return AuthContext(tenant_id=tenant_id, resolver=container.resolver)

    token = credentials.credentials if credentials else None
    result = await container.decision_point.authorize(token, rule.permission, tenant_id)
    user_id = result.raise_for_decision()
    set_user(user_id)
    return AuthContext(user_id=user_id, tenant_id=tenant_id, resolver=container.resolver)
