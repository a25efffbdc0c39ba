"""
Tests for password hashing and the password policy.
"""

import asyncio

import pytest

from hestia.auth.passwords import PasswordVerifier, validate_password_policy
from hestia.core.errors import DependencyUnavailable


@pytest.fixture
def verifier(settings):
    return PasswordVerifier(settings=settings)


class TestPasswordVerifier:
    def test_hash_then_verify(self, verifier):
        hashed = verifier.hash("pa55word-long")
        assert verifier.verify("pa55word-long", hashed)
        assert not verifier.verify("pa55word-lonG", hashed)

    def test_hash_is_salted(self, verifier):
        assert verifier.hash("same password") != verifier.hash("same password")

    def test_hash_carries_parameters(self, verifier):
        scheme, n, r, p, salt, digest = verifier.hash("x" * 12).split("$")
        assert (scheme, n, r, p) == ("scrypt", "16", "1", "1")
        assert len(bytes.fromhex(salt)) == 16
        assert len(bytes.fromhex(digest)) == 32

    @pytest.mark.parametrize(
        "bad_hash",
        [
            "",
            "not-a-hash",
            "bcrypt$16$1$1$00$00",
            "scrypt$16$1$1$zz$00",
            "scrypt$sixteen$1$1$00$00",
            "scrypt$3$1$1$00$00",
            f"scrypt${2**30}$8$1$00$00",
        ],
    )
    def test_malformed_hash_is_false_not_error(self, verifier, bad_hash):
        assert verifier.verify("whatever-password", bad_hash) is False

    def test_empty_password_is_false(self, verifier):
        assert verifier.verify("", verifier.hash("something long")) is False

    def test_verifies_hash_made_with_other_cost(self, settings, verifier):
        stronger = PasswordVerifier(n=32, r=2, p=1, settings=settings)
        hashed = stronger.hash("portable password")
        assert verifier.verify("portable password", hashed)
        assert verifier.needs_rehash(hashed)
        assert not verifier.needs_rehash(verifier.hash("portable password"))

    def test_dummy_verify_is_always_false(self, verifier):
        assert verifier.dummy_verify("anything at all") is False

    def test_rejects_non_power_of_two_cost(self, settings):
        with pytest.raises(ValueError):
            PasswordVerifier(n=1000, settings=settings)

    @pytest.mark.asyncio
    async def test_async_wrappers(self, verifier):
        hashed = await verifier.hash_async("async password")
        assert await verifier.verify_async("async password", hashed)
        assert await verifier.dummy_verify_async("async password") is False

    @pytest.mark.asyncio
    async def test_timeout_surfaces_as_dependency_unavailable(self, verifier, monkeypatch):
        verifier.timeout = 0.01

        async def slow_thread(func, *args):
            await asyncio.sleep(1)

        monkeypatch.setattr(asyncio, "to_thread", slow_thread)
        with pytest.raises(DependencyUnavailable):
            await verifier.verify_async("pw", "scrypt$16$1$1$00$00")


class TestPasswordPolicy:
    def test_accepts_reasonable_password(self, settings):
        assert validate_password_policy("rhubarb crumble", settings) == []

    def test_rejects_short(self, settings):
        assert validate_password_policy("short", settings)

    def test_rejects_digits_only(self, settings):
        assert validate_password_policy("1234567890", settings)

    def test_rejects_surrounding_whitespace(self, settings):
        assert validate_password_policy(" padded password ", settings)
