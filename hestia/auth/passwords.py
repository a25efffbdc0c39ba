# =============================================================================
# Password Hashing
# =============================================================================
#
# scrypt (memory-hard) with a random salt per hash. The cost parameters
# are stored inside the hash so they can be raised later without
# invalidating existing credentials:
#
#   scrypt$<n>$<r>$<p>$<salt_hex>$<digest_hex>
#
# =============================================================================

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import secrets

from hestia.config import Settings, get_settings
from hestia.core.utils import bounded

logger = logging.getLogger(__name__)

SCHEME = "scrypt"
SALT_BYTES = 16
DIGEST_BYTES = 32
MAX_N = 2**20


class PasswordVerifier:
    """One-way hashing and constant-time verification of passwords."""

    def __init__(
        self,
        n: int | None = None,
        r: int | None = None,
        p: int | None = None,
        timeout: float | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.n = n or settings.password_scrypt_n
        self.r = r or settings.password_scrypt_r
        self.p = p or settings.password_scrypt_p
        self.timeout = timeout or settings.dependency_timeout_seconds
        if self.n < 2 or self.n & (self.n - 1):
            raise ValueError("scrypt n must be a power of two greater than 1")
        # Verified when the email is unknown, so both paths cost the same
        self._dummy_hash = self.hash(secrets.token_urlsafe(16))

    def _derive(self, password: str, salt: bytes, n: int, r: int, p: int) -> bytes:
        return hashlib.scrypt(
            password.encode("utf-8"),
            salt=salt,
            n=n,
            r=r,
            p=p,
            maxmem=256 * n * r + 1024 * 1024,
            dklen=DIGEST_BYTES,
        )

    def hash(self, password: str) -> str:
        """Hash a password with a fresh random salt."""
        salt = secrets.token_bytes(SALT_BYTES)
        digest = self._derive(password, salt, self.n, self.r, self.p)
        return f"{SCHEME}${self.n}${self.r}${self.p}${salt.hex()}${digest.hex()}"

    def verify(self, password: str, password_hash: str) -> bool:
        """
        Verify a password against its hash.

        Returns False for a mismatch or any malformed input; never raises
        for bad data.
        """
        if not password or not password_hash:
            return False
        try:
            scheme, n_str, r_str, p_str, salt_hex, digest_hex = password_hash.split("$")
            if scheme != SCHEME:
                return False
            n, r, p = int(n_str), int(r_str), int(p_str)
            if n > MAX_N or r > 64 or p > 16:
                return False
            salt = bytes.fromhex(salt_hex)
            expected = bytes.fromhex(digest_hex)
            computed = self._derive(password, salt, n, r, p)
        except (ValueError, TypeError):
            return False
        return hmac.compare_digest(computed, expected)

    def dummy_verify(self, password: str) -> bool:
        """Spend the cost of one verification. Always False."""
        self.verify(password or "x", self._dummy_hash)
        return False

    def needs_rehash(self, password_hash: str) -> bool:
        """Whether a stored hash was made with different cost parameters."""
        try:
            scheme, n_str, r_str, p_str, _, _ = password_hash.split("$")
            return (scheme, int(n_str), int(r_str), int(p_str)) != (SCHEME, self.n, self.r, self.p)
        except (ValueError, AttributeError):
            return True

    # =========================================================================
    # Async wrappers (KDF runs off the event loop, with a bounded timeout)
    # =========================================================================

    async def hash_async(self, password: str) -> str:
        return await bounded(
            asyncio.to_thread(self.hash, password),
            self.timeout,
            "password hashing",
        )

    async def verify_async(self, password: str, password_hash: str) -> bool:
        return await bounded(
            asyncio.to_thread(self.verify, password, password_hash),
            self.timeout,
            "password verification",
        )

    async def dummy_verify_async(self, password: str) -> bool:
        return await bounded(
            asyncio.to_thread(self.dummy_verify, password),
            self.timeout,
            "password verification",
        )


def validate_password_policy(password: str, settings: Settings | None = None) -> list[str]:
    """
    Check a new password against the password policy.

    Returns a list of problems (empty when the password is acceptable).
    """
    settings = settings or get_settings()
    problems: list[str] = []
    if len(password or "") < settings.password_min_length:
        problems.append(f"must be at least {settings.password_min_length} characters")
    if password and password.strip() != password:
        problems.append("must not start or end with whitespace")
    if password and password.isdigit():
        problems.append("must not be only digits")
    return problems
