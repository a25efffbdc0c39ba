"""
Identity and access control.

Design principles:
1. Every password check goes through PasswordVerifier
2. Every permission check goes through AssignmentResolver
3. Routes declare public/permission rules when they are registered
4. Tokens fail closed, and all failures look the same from outside

The HTTP routers live in hestia.auth.routes and hestia.auth.admin; they
need the container, so they are imported by the app, not from here.
"""

from hestia.auth.context import AuthContext
from hestia.auth.passwords import PasswordVerifier, validate_password_policy
from hestia.auth.tokens import TokenIssuer
from hestia.auth.roles import RoleGraph
from hestia.auth.assignments import AssignmentResolver
from hestia.auth.service import AuthenticationService, RegistrationData
from hestia.auth.policies import (
    AuthorizationDecisionPoint,
    AuthorizationResult,
    Decision,
    RouteRule,
    RouteTable,
    SecuredRouter,
    current_context,
    extract_tenant_id,
)

__all__ = [
    # Components
    "PasswordVerifier",
    "validate_password_policy",
    "TokenIssuer",
    "RoleGraph",
    "AssignmentResolver",
    "AuthenticationService",
    "RegistrationData",
    "AuthorizationDecisionPoint",
    # Request handling
    "AuthContext",
    "AuthorizationResult",
    "Decision",
    "RouteRule",
    "RouteTable",
    "SecuredRouter",
    "current_context",
    "extract_tenant_id",
]
