"""
Core module - fundamental data models and infrastructure.

This module contains:
- models: Users, roles, assignments, token records
- permissions: The closed permission enumeration and account states
- errors: The error taxonomy shared by every layer
- events: Audit event bus
- utils: Shared utility functions
"""

from hestia.core.errors import (
    AuthError,
    InvalidCredentials,
    AccountLocked,
    EmailTaken,
    WeakPassword,
    TokenInvalid,
    Unauthorized,
    Forbidden,
    DependencyUnavailable,
    NotFound,
    UserNotFound,
    RoleNotFound,
    AssignmentNotFound,
    RoleCycleError,
    RoleImmutable,
    RoleInUse,
    ConcurrentUpdateError,
)

from hestia.core.permissions import (
    AccountStatus,
    Permission,
    PERMISSION_GROUPS,
    parse_permission,
    parse_permissions,
)

from hestia.core.models import (
    User,
    UserResponse,
    Role,
    RoleAssignment,
    RefreshTokenRecord,
    OneTimeToken,
    TokenPurpose,
    TokenPair,
)

from hestia.core.events import (
    Event,
    EventBus,
)

from hestia.core.utils import (
    generate_id,
    utc_now,
    normalize_email,
)

__all__ = [
    # Errors
    "AuthError",
    "InvalidCredentials",
    "AccountLocked",
    "EmailTaken",
    "WeakPassword",
    "TokenInvalid",
    "Unauthorized",
    "Forbidden",
    "DependencyUnavailable",
    "NotFound",
    "UserNotFound",
    "RoleNotFound",
    "AssignmentNotFound",
    "RoleCycleError",
    "RoleImmutable",
    "RoleInUse",
    "ConcurrentUpdateError",
    # Permissions
    "AccountStatus",
    "Permission",
    "PERMISSION_GROUPS",
    "parse_permission",
    "parse_permissions",
    # Models
    "User",
    "UserResponse",
    "Role",
    "RoleAssignment",
    "RefreshTokenRecord",
    "OneTimeToken",
    "TokenPurpose",
    "TokenPair",
    # Events
    "Event",
    "EventBus",
    # Utils
    "generate_id",
    "utc_now",
    "normalize_email",
]
