# =============================================================================
# Auth API Routes
# =============================================================================
#
# Public:
#   POST /auth/register            - Create account, returns tokens
#   POST /auth/login               - Get tokens
#   POST /auth/refresh             - Rotate refresh token
#   POST /auth/verify-email        - Verify email address
#   POST /auth/resend-verification - Send a new verification link
#   POST /auth/forgot-password     - Request password reset
#   POST /auth/reset-password      - Reset password with token
#   POST /auth/authorize           - Decide (token, permission, tenant)
#
# Authenticated:
#   POST /auth/logout              - Revoke one refresh token
#   POST /auth/logout-all          - Revoke every refresh token
#   POST /auth/change-password     - Change password
#   GET  /auth/me                  - Current user
#   GET  /auth/me/permissions      - Effective permissions in the request tenant
#
# =============================================================================

from __future__ import annotations

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr

from hestia.auth.context import AuthContext
from hestia.auth.policies import (
    SecuredRouter,
    current_context,
    get_container,
    optional_bearer,
)
from hestia.auth.service import RegistrationData
from hestia.container import AuthContainer
from hestia.core.errors import TokenInvalid
from hestia.core.models import TokenPair, UserResponse
from hestia.core.permissions import Permission

secured = SecuredRouter(prefix="/auth", tags=["auth"])
router = secured.router


# =============================================================================
# Request/Response Models
# =============================================================================

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenRequest(BaseModel):
    token: str


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class AuthorizeRequest(BaseModel):
    permission: Permission | None = None
    tenant_id: str | None = None


class AuthorizeResponse(BaseModel):
    decision: str
    user_id: str | None = None


class PermissionsResponse(BaseModel):
    user_id: str
    tenant_id: str | None
    permissions: list[str]


class MessageResponse(BaseModel):
    message: str


# =============================================================================
# Public Endpoints
# =============================================================================

@secured.post("/register", public=True, response_model=TokenPair, status_code=201)
async def register(data: RegistrationData, container: AuthContainer = Depends(get_container)):
    """
    Create a new account.

    Returns access and refresh tokens; email verification can happen later.
    """
    return await container.auth.register(data)


@secured.post("/login", public=True, response_model=TokenPair)
async def login(data: LoginRequest, container: AuthContainer = Depends(get_container)):
    return await container.auth.login(data.email, data.password)


@secured.post("/refresh", public=True, response_model=TokenPair)
async def refresh(data: RefreshRequest, container: AuthContainer = Depends(get_container)):
    """Exchange a refresh token for a new pair. Each refresh token works once."""
    return await container.auth.refresh(data.refresh_token)


@secured.post("/verify-email", public=True)
async def verify_email(data: TokenRequest, container: AuthContainer = Depends(get_container)):
    """Unknown, expired and already used tokens all report verified=false."""
    return {"verified": await container.auth.verify_email(data.token)}


@secured.post("/resend-verification", public=True, response_model=MessageResponse)
async def resend_verification(data: EmailRequest, container: AuthContainer = Depends(get_container)):
    """Always succeeds, to prevent email enumeration."""
    await container.auth.resend_verification(data.email)
    return MessageResponse(message="If the account needs verification, a new link has been sent")


@secured.post("/forgot-password", public=True, response_model=MessageResponse)
async def forgot_password(data: EmailRequest, container: AuthContainer = Depends(get_container)):
    """Always succeeds, to prevent email enumeration."""
    await container.auth.request_password_reset(data.email)
    return MessageResponse(message="If an account exists with this email, a reset link has been sent")


@secured.post("/reset-password", public=True, response_model=MessageResponse)
async def reset_password(data: ResetPasswordRequest, container: AuthContainer = Depends(get_container)):
    if not await container.auth.reset_password(data.token, data.new_password):
        raise TokenInvalid("reset token rejected")
    return MessageResponse(message="Password reset successfully")


@secured.post("/authorize", public=True, response_model=AuthorizeResponse)
async def authorize(
    data: AuthorizeRequest,
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
    container: AuthContainer = Depends(get_container),
):
    """
    Ask for a decision without enforcing it.

    Other services use this to check a caller's bearer token against a
    permission in a tenant.
    """
    result = await container.decision_point.authorize(
        credentials.credentials if credentials else None,
        data.permission,
        data.tenant_id,
    )
    return AuthorizeResponse(decision=result.decision.value, user_id=result.user_id)


# =============================================================================
# Authenticated Endpoints
# =============================================================================

@secured.post("/logout", response_model=MessageResponse)
async def logout(
    data: RefreshRequest,
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    await container.auth.logout(data.refresh_token, user_id=ctx.user_id)
    return MessageResponse(message="Logged out successfully")


@secured.post("/logout-all")
async def logout_all(
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    """Log out from all devices."""
    revoked = await container.auth.logout_all(ctx.require_user())
    return {"revoked": revoked}


@secured.post("/change-password", response_model=MessageResponse)
async def change_password(
    data: ChangePasswordRequest,
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    await container.auth.change_password(ctx.require_user(), data.current_password, data.new_password)
    return MessageResponse(message="Password changed successfully")


@secured.get("/me", response_model=UserResponse)
async def get_current_user(
    ctx: AuthContext = Depends(current_context),
    container: AuthContainer = Depends(get_container),
):
    user = await container.auth.get_user(ctx.require_user())
    return UserResponse.from_user(user)


@secured.get("/me/permissions", response_model=PermissionsResponse)
async def get_current_permissions(ctx: AuthContext = Depends(current_context)):
    """Effective permissions in the tenant named by X-Tenant-ID (global if absent)."""
    permissions = await ctx.permissions()
    return PermissionsResponse(
        user_id=ctx.require_user(),
        tenant_id=ctx.tenant_id,
        permissions=sorted(p.value for p in permissions),
    )
