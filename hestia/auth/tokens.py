# =============================================================================
# Token Issuing & Validation
# =============================================================================
#
#   - Access tokens: short-lived, stateless, HS256 JWT
#       {sub, iat, exp, type="access", jti}
#   - Refresh tokens: long-lived JWT wrapping an opaque id (jti) that is
#     tracked server-side, single-use, rotated on every redemption
#
# Every verification failure is reported as TokenInvalid. The specific
# reason is only logged.
#
# =============================================================================

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

import jwt

from hestia.config import Settings, get_settings
from hestia.core.errors import TokenInvalid
from hestia.core.events import EventBus
from hestia.core.models import RefreshTokenRecord, TokenPair
from hestia.core.utils import bounded, generate_id, utc_now
from hestia.storage.base import AuthStore

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"
REQUIRED_CLAIMS = ["sub", "iat", "exp", "type", "jti"]


class TokenIssuer:
    """
    Mints and verifies access and refresh tokens.

    Token lifecycle: issued → valid → (expired | revoked) → terminal.
    Refresh tokens additionally go valid → redeemed on rotation.
    """

    def __init__(
        self,
        store: AuthStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        events: EventBus | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock
        self.events = events

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.jwt_access_token_expire_minutes)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(days=self.settings.jwt_refresh_token_expire_days)

    def _encode(self, claims: dict[str, Any]) -> str:
        return jwt.encode(
            claims,
            self.settings.jwt_secret_key,
            algorithm=self.settings.jwt_algorithm,
        )

    async def _store_call(self, awaitable, what: str):
        return await bounded(awaitable, self.settings.dependency_timeout_seconds, what)

    # =========================================================================
    # Issuing
    # =========================================================================

    def issue_access_token(self, user_id: str) -> str:
        """Create a signed access token for a user."""
        now = self._clock()
        return self._encode({
            "sub": str(user_id),
            "iat": int(now.timestamp()),
            "exp": int((now + self.access_ttl).timestamp()),
            "type": ACCESS,
            "jti": generate_id("at"),
        })

    async def issue_refresh_token(
        self,
        user_id: str,
        token_id: str | None = None,
    ) -> tuple[str, str]:
        """
        Persist a refresh token record and return (opaque_id, signed_token).

        ``token_id`` lets rotation reserve the successor id before the
        predecessor is marked redeemed.
        """
        now = self._clock()
        record = RefreshTokenRecord(
            id=token_id or generate_id("rt"),
            user_id=str(user_id),
            issued_at=now,
            expires_at=now + self.refresh_ttl,
        )
        await self._store_call(self.store.create_refresh_token(record), "refresh token create")

        token = self._encode({
            "sub": record.user_id,
            "iat": int(now.timestamp()),
            "exp": int(record.expires_at.timestamp()),
            "type": REFRESH,
            "jti": record.id,
        })
        return record.id, token

    async def issue_pair(self, user_id: str, refresh_id: str | None = None) -> TokenPair:
        """Create both access and refresh tokens."""
        _, refresh_token = await self.issue_refresh_token(user_id, token_id=refresh_id)
        return TokenPair(
            access_token=self.issue_access_token(user_id),
            refresh_token=refresh_token,
            expires_in=self.settings.access_token_ttl_seconds,
            user_id=str(user_id),
        )

    # =========================================================================
    # Verification
    # =========================================================================

    def _reject(self, expected_type: str, reason: str) -> TokenInvalid:
        logger.info("Rejected %s token: %s", expected_type, reason)
        return TokenInvalid(reason)

    def decode(self, token: str, expected_type: str = ACCESS) -> dict[str, Any]:
        """
        Verify signature, claims, type and validity window.

        Expiry and issued-at are checked against the injected clock, so
        no leeway is applied to expiry and ``jwt_clock_skew_seconds``
        only tolerates tokens issued slightly in the future.

        Raises:
            TokenInvalid: for any failure, whatever the cause
        """
        if not token or not isinstance(token, str):
            raise self._reject(expected_type, "missing token")

        try:
            claims = jwt.decode(
                token,
                self.settings.jwt_secret_key,
                algorithms=[self.settings.jwt_algorithm],
                options={
                    "require": REQUIRED_CLAIMS,
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as e:
            raise self._reject(expected_type, f"{e.__class__.__name__}: {e}") from e

        if claims.get("type") != expected_type:
            raise self._reject(expected_type, f"wrong type {claims.get('type')!r}")

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise self._reject(expected_type, "missing subject")

        try:
            exp = int(claims["exp"])
            iat = int(claims["iat"])
        except (TypeError, ValueError):
            raise self._reject(expected_type, "non-numeric exp/iat")

        now = self._clock().timestamp()
        if now >= exp:
            raise self._reject(expected_type, "expired")
        if iat > now + self.settings.jwt_clock_skew_seconds:
            raise self._reject(expected_type, "issued in the future")

        return claims

    def verify_access_token(self, token: str) -> str:
        """Return the user id of a valid access token, or raise TokenInvalid."""
        return self.decode(token, expected_type=ACCESS)["sub"]

    def refresh_subject(self, token: str) -> tuple[str, str]:
        """Verify a refresh token's signature and return (user_id, opaque_id)."""
        claims = self.decode(token, expected_type=REFRESH)
        return claims["sub"], claims["jti"]

    # =========================================================================
    # Rotation & revocation
    # =========================================================================

    async def redeem_refresh_token(self, token: str) -> TokenPair:
        """
        Exchange a refresh token for a new pair.

        The old token is marked redeemed by a single conditional update,
        so of several concurrent redemptions exactly one succeeds.
        """
        user_id, token_id = self.refresh_subject(token)
        successor_id = generate_id("rt")
        now = self._clock()

        record = await self._store_call(
            self.store.conditional_redeem(token_id, now, replaced_by=successor_id),
            "refresh token redeem",
        )
        if record is None:
            await self._explain_failed_redeem(token_id, user_id, now)
            raise TokenInvalid("refresh token not redeemable")

        if record.user_id != user_id:
            logger.error("Refresh token %s subject mismatch", token_id)
            raise TokenInvalid("subject mismatch")

        pair = await self.issue_pair(user_id, refresh_id=successor_id)
        if self.events:
            await self.events.emit("token.refreshed", user_id=user_id)
        return pair

    async def _explain_failed_redeem(self, token_id: str, user_id: str, now: datetime) -> None:
        record = await self._store_call(self.store.get_refresh_token(token_id), "refresh token lookup")
        if record is None:
            logger.warning("Refresh token %s is unknown", token_id)
        elif record.redeemed_at is not None:
            logger.warning(
                "Refresh token replay: %s for user %s was redeemed at %s",
                token_id,
                user_id,
                record.redeemed_at.isoformat(),
            )
            if self.events:
                await self.events.emit("token.replay_detected", user_id=user_id, token_id=token_id)
        elif record.revoked_at is not None:
            logger.info("Refresh token %s was revoked", token_id)
        else:
            logger.info("Refresh token %s expired at %s", token_id, record.expires_at.isoformat())

    async def revoke(self, token_id: str) -> bool:
        """Permanently invalidate a refresh token by opaque id."""
        revoked = await self._store_call(
            self.store.revoke_refresh_token(token_id, self._clock()),
            "refresh token revoke",
        )
        if revoked:
            logger.info("Refresh token %s revoked", token_id)
        return revoked

    async def revoke_token(self, token: str) -> bool:
        """Verify a refresh token, then revoke it."""
        _, token_id = self.refresh_subject(token)
        return await self.revoke(token_id)

    async def revoke_all(self, user_id: str) -> int:
        """Revoke every live refresh token of a user (logout everywhere)."""
        count = await self._store_call(
            self.store.revoke_user_refresh_tokens(user_id, self._clock()),
            "refresh token revoke",
        )
        logger.info("Revoked %d refresh tokens for user %s", count, user_id)
        return count

