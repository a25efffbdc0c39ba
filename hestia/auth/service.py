# =============================================================================
# Authentication Service
# =============================================================================
#
# Account and session lifecycle:
#
#   register → pending_verification ──verify_email──→ active
#                     │                                  │
#                     └──── N failed logins ────→ locked ┘ (cool-down)
#
# A login attempt moves unauthenticated → credentials_checked → one of
# token_issued / rejected. Lockout counters are only ever changed through
# versioned conditional updates, so concurrent failures are all counted.
#
# =============================================================================

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import BaseModel, EmailStr

from hestia.auth.assignments import AssignmentResolver
from hestia.auth.passwords import PasswordVerifier, validate_password_policy
from hestia.auth.tokens import TokenIssuer
from hestia.config import Settings, get_settings
from hestia.core.errors import (
    AccountLocked,
    ConcurrentUpdateError,
    InvalidCredentials,
    TokenInvalid,
    UserNotFound,
    WeakPassword,
)
from hestia.core.events import EventBus
from hestia.core.models import OneTimeToken, TokenPair, TokenPurpose, User
from hestia.core.permissions import AccountStatus
from hestia.core.utils import bounded, normalize_email, token_digest, utc_now
from hestia.integrations.email import EmailService
from hestia.storage.base import AuthStore

logger = logging.getLogger(__name__)


class RegistrationData(BaseModel):
    """Profile submitted at sign-up."""

    email: EmailStr
    password: str
    name: str = ""


class AuthenticationService:
    """Login, registration, token refresh and the account lifecycle."""

    def __init__(
        self,
        store: AuthStore,
        verifier: PasswordVerifier,
        issuer: TokenIssuer,
        resolver: AssignmentResolver,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        events: EventBus | None = None,
        email: EmailService | None = None,
    ):
        self.store = store
        self.verifier = verifier
        self.issuer = issuer
        self.resolver = resolver
        self.settings = settings or get_settings()
        self._clock = clock
        self.events = events
        self.email = email

    async def _store_call(self, awaitable, what: str):
        return await bounded(awaitable, self.settings.dependency_timeout_seconds, what)

    async def _emit(self, event_type: str, user_id: str | None = None, **payload: Any) -> None:
        if self.events:
            await self.events.emit(event_type, user_id=user_id, **payload)

    # =========================================================================
    # Conditional updates
    # =========================================================================

    async def _conditional_update(
        self,
        user: User,
        mutate: Callable[[User], dict[str, Any] | None],
    ) -> User:
        """
        Apply ``mutate(user)`` with a compare-and-swap on ``user.version``.

        On conflict the user is reloaded and ``mutate`` runs again against
        the fresh state. ``mutate`` returns None when nothing needs to change.
        """
        current = user
        for _ in range(self.settings.conditional_update_attempts):
            changes = mutate(current)
            if not changes:
                return current
            updated = await self._store_call(
                self.store.update_user(current.id, current.version, changes),
                "user update",
            )
            if updated is not None:
                return updated
            current = await self._require_user(current.id)
        raise ConcurrentUpdateError(f"Gave up updating user {user.id} after conflicts")

    async def _require_user(self, user_id: str) -> User:
        user = await self._store_call(self.store.get_user_by_id(user_id), "user lookup")
        if user is None:
            raise UserNotFound(f"User not found: {user_id}")
        return user

    # =========================================================================
    # Account state checks
    # =========================================================================

    def _grace_expired(self, user: User, now: datetime) -> bool:
        if user.status != AccountStatus.PENDING_VERIFICATION:
            return False
        grace = timedelta(hours=self.settings.unverified_login_grace_hours)
        return now >= user.created_at + grace

    def _may_hold_session(self, user: User, now: datetime) -> bool:
        if user.is_deleted or user.status == AccountStatus.SUSPENDED:
            return False
        if user.is_locked(now):
            return False
        return not self._grace_expired(user, now)

    async def _release_elapsed_lock(self, user: User, now: datetime) -> User:
        """Return an account whose cool-down has passed to its prior status."""

        def mutate(u: User) -> dict[str, Any] | None:
            if u.status != AccountStatus.LOCKED or u.is_locked(now):
                return None
            return {
                "status": u.unlocked_status,
                "locked_until": None,
                "failed_login_attempts": 0,
            }

        released = await self._conditional_update(user, mutate)
        if released.status != AccountStatus.LOCKED:
            logger.info("Lockout for user %s elapsed", user.id)
        return released

    # =========================================================================
    # Login
    # =========================================================================

    async def login(self, email: str, password: str) -> TokenPair:
        """
        Check credentials and issue a token pair.

        Raises:
            InvalidCredentials: unknown email, wrong password, or an account
                that may not log in (deleted, suspended, unverified past
                the grace window)
            AccountLocked: inside a lockout cool-down
        """
        email = normalize_email(email)
        user = await self._store_call(self.store.get_user_by_email(email), "user lookup")
        now = self._clock()

        if user is None:
            await self.verifier.dummy_verify_async(password)
            await self._login_failed(None, "unknown email")
            raise InvalidCredentials("unknown email")

        if user.status == AccountStatus.LOCKED:
            if user.is_locked(now):
                logger.info("Login for locked user %s refused", user.id)
                await self._login_failed(user.id, "locked")
                raise AccountLocked(f"User {user.id} locked until {user.locked_until}")
            user = await self._release_elapsed_lock(user, now)

        if user.is_deleted or user.status == AccountStatus.SUSPENDED:
            await self.verifier.dummy_verify_async(password)
            await self._login_failed(user.id, user.status.value)
            raise InvalidCredentials(f"account {user.status.value}")

        if self._grace_expired(user, now):
            await self.verifier.dummy_verify_async(password)
            await self._login_failed(user.id, "unverified")
            raise InvalidCredentials("email verification grace period over")

        if not await self.verifier.verify_async(password, user.password_hash):
            await self._record_failure(user, now)
            raise InvalidCredentials("wrong password")

        user = await self._record_success(user, password, now)
        pair = await self.issuer.issue_pair(user.id)
        logger.info("User %s logged in", user.id)
        await self._emit("user.login_succeeded", user.id)
        return pair

    async def _login_failed(self, user_id: str | None, reason: str) -> None:
        logger.info("Login failed for user %s: %s", user_id or "<unknown>", reason)
        await self._emit("user.login_failed", user_id, reason=reason)

    async def _record_failure(self, user: User, now: datetime) -> None:
        threshold = self.settings.lockout_threshold
        lock_until = now + timedelta(minutes=self.settings.lockout_minutes)

        def mutate(u: User) -> dict[str, Any] | None:
            if u.is_locked(now):
                return None
            attempts = u.failed_login_attempts + 1
            changes: dict[str, Any] = {"failed_login_attempts": attempts}
            if attempts >= threshold:
                changes["status"] = AccountStatus.LOCKED
                changes["locked_until"] = lock_until
            return changes

        updated = await self._conditional_update(user, mutate)
        await self._login_failed(user.id, "wrong password")

        if updated.status == AccountStatus.LOCKED and updated.locked_until == lock_until:
            logger.warning(
                "User %s locked until %s after %d failed logins",
                user.id,
                lock_until.isoformat(),
                updated.failed_login_attempts,
            )
            await self._emit("user.locked", user.id, locked_until=lock_until.isoformat())

    async def _record_success(self, user: User, password: str, now: datetime) -> User:
        new_hash = None
        if self.verifier.needs_rehash(user.password_hash):
            new_hash = await self.verifier.hash_async(password)

        def mutate(u: User) -> dict[str, Any]:
            if u.is_locked(now):
                # Concurrent failures locked the account while we verified
                raise AccountLocked(f"User {u.id} locked until {u.locked_until}")
            changes: dict[str, Any] = {"failed_login_attempts": 0, "last_login_at": now}
            if new_hash:
                changes["password_hash"] = new_hash
            return changes

        return await self._conditional_update(user, mutate)

    # =========================================================================
    # Registration & email verification
    # =========================================================================

    async def register(self, data: RegistrationData) -> TokenPair:
        """
        Create a pending_verification account and sign it in.

        The default role is granted in global scope only; tenant roles come
        from an administrator. A verification link is emailed.
        """
        self._check_policy(data.password)
        # Fails before the account exists, so the email stays free
        await self.resolver.graph.get_role(self.settings.default_role_id)

        email = normalize_email(data.email)
        password_hash = await self.verifier.hash_async(data.password)
        now = self._clock()
        user = await self._store_call(
            self.store.create_user(
                User(
                    email=email,
                    name=data.name,
                    password_hash=password_hash,
                    status=AccountStatus.PENDING_VERIFICATION,
                    created_at=now,
                    updated_at=now,
                )
            ),
            "user create",
        )
        logger.info("User %s registered", user.id)

        await self.resolver.assign_role(
            user.id,
            self.settings.default_role_id,
            None,
            assigned_by="system",
        )
        await self._send_verification(user)
        await self._emit("user.registered", user.id)

        return await self.issuer.issue_pair(user.id)

    async def _issue_one_time_token(
        self,
        user_id: str,
        purpose: TokenPurpose,
        ttl: timedelta,
    ) -> str:
        """Store the digest of a fresh random token and return the raw token."""
        await self._store_call(
            self.store.discard_one_time_tokens(user_id, purpose),
            "one-time token discard",
        )
        raw = secrets.token_urlsafe(32)
        await self._store_call(
            self.store.create_one_time_token(
                OneTimeToken(
                    id=token_digest(raw),
                    user_id=user_id,
                    purpose=purpose,
                    expires_at=self._clock() + ttl,
                )
            ),
            "one-time token create",
        )
        return raw

    async def _consume_one_time_token(self, token: str, purpose: TokenPurpose) -> OneTimeToken | None:
        if not token:
            return None
        record = await self._store_call(
            self.store.consume_one_time_token(token_digest(token), purpose, self._clock()),
            "one-time token consume",
        )
        if record is None:
            logger.info("Rejected %s token", purpose.value)
        return record

    async def _send_verification(self, user: User) -> None:
        token = await self._issue_one_time_token(
            user.id,
            TokenPurpose.EMAIL_VERIFICATION,
            timedelta(hours=self.settings.email_verification_expire_hours),
        )
        if self.email:
            await self.email.send_verification(user.email, user.name, token)

    async def verify_email(self, token: str) -> bool:
        """
        Consume a verification token and mark the email verified.

        Returns False for unknown, expired or already used tokens.
        """
        record = await self._consume_one_time_token(token, TokenPurpose.EMAIL_VERIFICATION)
        if record is None:
            return False

        def mutate(u: User) -> dict[str, Any] | None:
            changes: dict[str, Any] = {}
            if not u.email_verified:
                changes["email_verified"] = True
            if u.status == AccountStatus.PENDING_VERIFICATION:
                changes["status"] = AccountStatus.ACTIVE
            return changes or None

        user = await self._conditional_update(await self._require_user(record.user_id), mutate)
        logger.info("User %s verified email", user.id)
        await self._emit("user.email_verified", user.id)
        if self.email:
            await self.email.send_email_verified(user.email)
        return True

    async def resend_verification(self, email: str) -> None:
        """Send a fresh verification link. Silent about unknown emails."""
        user = await self._store_call(
            self.store.get_user_by_email(normalize_email(email)),
            "user lookup",
        )
        if user is None or user.is_deleted or user.email_verified:
            return
        await self._send_verification(user)

    # =========================================================================
    # Sessions
    # =========================================================================

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Rotate a refresh token.

        The token's signature is verified before anything else, and its
        owner must still be allowed to hold a session.
        """
        user_id, _ = self.issuer.refresh_subject(refresh_token)
        user = await self._store_call(self.store.get_user_by_id(user_id), "user lookup")
        if user is None or not self._may_hold_session(user, self._clock()):
            logger.info("Refresh refused for user %s: account may not hold a session", user_id)
            raise TokenInvalid("account may not hold a session")
        return await self.issuer.redeem_refresh_token(refresh_token)

    async def logout(self, refresh_token: str, user_id: str | None = None) -> bool:
        """Revoke one refresh token, optionally only if ``user_id`` owns it."""
        owner, token_id = self.issuer.refresh_subject(refresh_token)
        if user_id is not None and owner != user_id:
            logger.warning("User %s tried to revoke a refresh token of %s", user_id, owner)
            raise TokenInvalid("refresh token belongs to another user")
        return await self.issuer.revoke(token_id)

    async def logout_all(self, user_id: str) -> int:
        """Revoke every refresh token of a user."""
        return await self.issuer.revoke_all(user_id)

    # =========================================================================
    # Passwords
    # =========================================================================

    async def request_password_reset(self, email: str) -> None:
        """Email a reset link. Silent about unknown emails."""
        user = await self._store_call(
            self.store.get_user_by_email(normalize_email(email)),
            "user lookup",
        )
        if user is None or user.is_deleted or user.status == AccountStatus.SUSPENDED:
            logger.info("Password reset requested for unknown or disabled account")
            return

        token = await self._issue_one_time_token(
            user.id,
            TokenPurpose.PASSWORD_RESET,
            timedelta(minutes=self.settings.password_reset_expire_minutes),
        )
        if self.email:
            await self.email.send_password_reset(user.email, token)
        logger.info("Password reset issued for user %s", user.id)

    def _check_policy(self, password: str) -> None:
        problems = validate_password_policy(password, self.settings)
        if problems:
            raise WeakPassword("; ".join(problems))

    async def reset_password(self, token: str, new_password: str) -> bool:
        """
        Set a new password with a reset token.

        Also lifts any lockout and ends every existing session.
        """
        self._check_policy(new_password)
        record = await self._consume_one_time_token(token, TokenPurpose.PASSWORD_RESET)
        if record is None:
            return False

        password_hash = await self.verifier.hash_async(new_password)

        def mutate(u: User) -> dict[str, Any]:
            changes: dict[str, Any] = {
                "password_hash": password_hash,
                "failed_login_attempts": 0,
                "locked_until": None,
            }
            if u.status == AccountStatus.LOCKED:
                changes["status"] = u.unlocked_status
            return changes

        user = await self._conditional_update(await self._require_user(record.user_id), mutate)
        await self.issuer.revoke_all(user.id)
        logger.info("User %s reset password", user.id)
        await self._emit("user.password_reset", user.id)
        return True

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """Change password after re-checking the current one; ends other sessions."""
        user = await self._require_user(user_id)
        if not await self.verifier.verify_async(current_password, user.password_hash):
            await self._login_failed(user_id, "wrong current password")
            raise InvalidCredentials("wrong current password")
        self._check_policy(new_password)

        password_hash = await self.verifier.hash_async(new_password)
        await self._conditional_update(user, lambda u: {"password_hash": password_hash})
        await self.issuer.revoke_all(user_id)
        logger.info("User %s changed password", user_id)
        await self._emit("user.password_changed", user_id)

    # =========================================================================
    # Administration
    # =========================================================================

    async def get_user(self, user_id: str) -> User:
        return await self._require_user(user_id)

    async def unlock(self, user_id: str) -> User:
        """Lift a lockout before its cool-down ends."""

        def mutate(u: User) -> dict[str, Any]:
            changes: dict[str, Any] = {"failed_login_attempts": 0, "locked_until": None}
            if u.status == AccountStatus.LOCKED:
                changes["status"] = u.unlocked_status
            return changes

        user = await self._conditional_update(await self._require_user(user_id), mutate)
        logger.info("User %s unlocked", user_id)
        await self._emit("user.unlocked", user_id)
        return user

    async def suspend(self, user_id: str) -> User:
        """Suspend an account and end all of its sessions."""
        user = await self._conditional_update(
            await self._require_user(user_id),
            lambda u: {"status": AccountStatus.SUSPENDED},
        )
        await self.issuer.revoke_all(user_id)
        logger.warning("User %s suspended", user_id)
        await self._emit("user.suspended", user_id)
        return user
