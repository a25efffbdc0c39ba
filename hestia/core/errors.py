"""
Error taxonomy for identity and access control.

Every error carries a stable ``kind`` and a generic ``public_message``.
The constructor message is for logs only and never crosses the API boundary.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all errors raised by the auth core."""

    kind: str = "auth_error"
    status_code: int = 400
    public_message: str = "Request could not be processed"


class InvalidCredentials(AuthError):
    """Unknown email, wrong password, or account not allowed to log in."""

    kind = "invalid_credentials"
    status_code = 401
    public_message = "Invalid email or password"


class AccountLocked(AuthError):
    """Too many failed logins; the account is cooling down."""

    kind = "account_locked"
    status_code = 423
    public_message = "Account temporarily locked, try again later"


class EmailTaken(AuthError):
    kind = "email_taken"
    status_code = 409
    public_message = "Email already registered"


class WeakPassword(AuthError):
    kind = "weak_password"
    status_code = 422
    public_message = "Password does not meet the password policy"


class TokenInvalid(AuthError):
    """
    Expired, malformed, tampered, revoked, or already-redeemed token.

    External callers cannot tell the cases apart.
    """

    kind = "token_invalid"
    status_code = 401
    public_message = "Invalid or expired token"


class Unauthorized(AuthError):
    """No credentials, or credentials that could not be verified."""

    kind = "unauthorized"
    status_code = 401
    public_message = "Authentication required"


class Forbidden(AuthError):
    """Verified identity without the required permission."""

    kind = "forbidden"
    status_code = 403
    public_message = "Permission denied"


class DependencyUnavailable(AuthError):
    """The store or crypto provider did not answer in time. Retryable."""

    kind = "dependency_unavailable"
    status_code = 503
    public_message = "Service temporarily unavailable, retry later"


class NotFound(AuthError):
    kind = "not_found"
    status_code = 404
    public_message = "Not found"


class UserNotFound(NotFound):
    pass


class RoleNotFound(NotFound):
    pass


class AssignmentNotFound(NotFound):
    pass


class RoleCycleError(AuthError):
    """Following parent links from a role would not terminate."""

    kind = "role_cycle"
    status_code = 409
    public_message = "Role hierarchy would contain a cycle"


class RoleImmutable(AuthError):
    """System roles cannot be edited by tenant administrators."""

    kind = "role_immutable"
    status_code = 403
    public_message = "System roles cannot be modified"


class ConcurrentUpdateError(AuthError):
    """A conditional update kept losing to concurrent writers."""

    kind = "dependency_unavailable"
    status_code = 503
    public_message = "Service temporarily unavailable, retry later"


class RoleInUse(AuthError):
    """A role that other roles still inherit from cannot be deleted."""

    kind = "role_in_use"
    status_code = 409
    public_message = "Role is still referenced by other roles"
