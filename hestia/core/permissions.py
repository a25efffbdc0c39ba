"""
Permissions and account states.

This defines WHAT users can do, not HOW we check it.
Roles bundle permissions (auth/roles.py), assignments grant roles to users
inside a tenant (auth/assignments.py), and auth/policies.py does the checking.
"""

from __future__ import annotations

from enum import Enum


class AccountStatus(str, Enum):
    """Lifecycle of a user account."""

    PENDING_VERIFICATION = "pending_verification"  # Registered, email not yet verified
    ACTIVE = "active"
    SUSPENDED = "suspended"  # Disabled by an administrator
    LOCKED = "locked"        # Too many failed logins, see locked_until
    DELETED = "deleted"      # Soft-deleted, kept while referenced


class Permission(str, Enum):
    """
    Atomic capabilities.

    There is no wildcard expansion: a role must be granted each permission
    it needs. Inheritance between roles is the only aggregation mechanism.
    """

    # User management
    CREATE_USER = "create_user"
    READ_USER = "read_user"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"
    LIST_USERS = "list_users"
    MANAGE_USER_ROLES = "manage_user_roles"
    MANAGE_USER_STATUS = "manage_user_status"

    # Profiles
    CREATE_PROFILE = "create_profile"
    READ_PROFILE = "read_profile"
    UPDATE_PROFILE = "update_profile"
    DELETE_PROFILE = "delete_profile"
    VIEW_ALL_PROFILES = "view_all_profiles"

    # Authentication
    AUTHENTICATE = "authenticate"
    REFRESH_TOKEN = "refresh_token"
    REVOKE_TOKEN = "revoke_token"
    RESET_PASSWORD = "reset_password"
    CHANGE_PASSWORD = "change_password"

    # Admin
    ACCESS_ADMIN_PANEL = "access_admin_panel"
    MANAGE_SYSTEM_SETTINGS = "manage_system_settings"
    VIEW_SYSTEM_LOGS = "view_system_logs"
    MANAGE_TENANTS = "manage_tenants"
    MANAGE_ROLES = "manage_roles"
    ACCESS_ANALYTICS = "access_analytics"

    # Content
    CREATE_CONTENT = "create_content"
    READ_CONTENT = "read_content"
    UPDATE_CONTENT = "update_content"
    DELETE_CONTENT = "delete_content"
    MODERATE_CONTENT = "moderate_content"
    PUBLISH_CONTENT = "publish_content"

    # Recipes
    CREATE_RECIPE = "create_recipe"
    READ_RECIPE = "read_recipe"
    UPDATE_RECIPE = "update_recipe"
    DELETE_RECIPE = "delete_recipe"
    APPROVE_RECIPE = "approve_recipe"
    FEATURE_RECIPE = "feature_recipe"

    # Ingredients
    CREATE_INGREDIENT = "create_ingredient"
    READ_INGREDIENT = "read_ingredient"
    UPDATE_INGREDIENT = "update_ingredient"
    DELETE_INGREDIENT = "delete_ingredient"
    APPROVE_INGREDIENT = "approve_ingredient"

    # Shopping lists
    CREATE_SHOPPING_LIST = "create_shopping_list"
    READ_SHOPPING_LIST = "read_shopping_list"
    UPDATE_SHOPPING_LIST = "update_shopping_list"
    DELETE_SHOPPING_LIST = "delete_shopping_list"
    SHARE_SHOPPING_LIST = "share_shopping_list"


# =============================================================================
# Resource groups
# =============================================================================


PERMISSION_GROUPS: dict[str, frozenset[Permission]] = {
    "user": frozenset({
        Permission.CREATE_USER,
        Permission.READ_USER,
        Permission.UPDATE_USER,
        Permission.DELETE_USER,
        Permission.LIST_USERS,
        Permission.MANAGE_USER_ROLES,
        Permission.MANAGE_USER_STATUS,
    }),
    "profile": frozenset({
        Permission.CREATE_PROFILE,
        Permission.READ_PROFILE,
        Permission.UPDATE_PROFILE,
        Permission.DELETE_PROFILE,
        Permission.VIEW_ALL_PROFILES,
    }),
    "authentication": frozenset({
        Permission.AUTHENTICATE,
        Permission.REFRESH_TOKEN,
        Permission.REVOKE_TOKEN,
        Permission.RESET_PASSWORD,
        Permission.CHANGE_PASSWORD,
    }),
    "admin": frozenset({
        Permission.ACCESS_ADMIN_PANEL,
        Permission.MANAGE_SYSTEM_SETTINGS,
        Permission.VIEW_SYSTEM_LOGS,
        Permission.MANAGE_TENANTS,
        Permission.MANAGE_ROLES,
        Permission.ACCESS_ANALYTICS,
    }),
    "content": frozenset({
        Permission.CREATE_CONTENT,
        Permission.READ_CONTENT,
        Permission.UPDATE_CONTENT,
        Permission.DELETE_CONTENT,
        Permission.MODERATE_CONTENT,
        Permission.PUBLISH_CONTENT,
    }),
    "recipe": frozenset({
        Permission.CREATE_RECIPE,
        Permission.READ_RECIPE,
        Permission.UPDATE_RECIPE,
        Permission.DELETE_RECIPE,
        Permission.APPROVE_RECIPE,
        Permission.FEATURE_RECIPE,
    }),
    "ingredient": frozenset({
        Permission.CREATE_INGREDIENT,
        Permission.READ_INGREDIENT,
        Permission.UPDATE_INGREDIENT,
        Permission.DELETE_INGREDIENT,
        Permission.APPROVE_INGREDIENT,
    }),
    "shopping_list": frozenset({
        Permission.CREATE_SHOPPING_LIST,
        Permission.READ_SHOPPING_LIST,
        Permission.UPDATE_SHOPPING_LIST,
        Permission.DELETE_SHOPPING_LIST,
        Permission.SHARE_SHOPPING_LIST,
    }),
}


def resource_of(permission: Permission | str) -> str:
    """Name of the resource group a permission belongs to."""
    permission = parse_permission(permission)
    for resource, members in PERMISSION_GROUPS.items():
        if permission in members:
            return resource
    raise ValueError(f"Permission {permission.value} has no resource group")


def parse_permission(value: Permission | str) -> Permission:
    """
    Coerce a string to a Permission.

    Raises ValueError for strings outside the closed enumeration.
    """
    if isinstance(value, Permission):
        return value
    return Permission(value)


def parse_permissions(values) -> frozenset[Permission]:
    """Coerce an iterable of strings to a set of Permissions."""
    return frozenset(parse_permission(v) for v in values or ())
