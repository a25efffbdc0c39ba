"""
Tests for the authentication service: login, lockout, registration,
email verification, password flows and session rotation.
"""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from hestia.auth.passwords import PasswordVerifier
from hestia.auth.service import RegistrationData
from hestia.config_loader import seed_roles
from hestia.core.errors import (
    AccountLocked,
    EmailTaken,
    InvalidCredentials,
    RoleNotFound,
    TokenInvalid,
    WeakPassword,
)
from hestia.core.permissions import AccountStatus, Permission

EMAIL = "alice@example.com"
PASSWORD = "correct horse battery"


@pytest.fixture
def auth(seeded):
    return seeded.auth


@pytest_asyncio.fixture
async def alice(auth):
    """A freshly registered (still unverified) user."""
    return await auth.register(RegistrationData(email=EMAIL, password=PASSWORD, name="Alice"))


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_then_login(self, auth, alice):
        user = await auth.get_user(alice.user_id)
        assert user.status == AccountStatus.PENDING_VERIFICATION
        assert user.password_hash != PASSWORD

        pair = await auth.login(EMAIL, PASSWORD)
        assert auth.issuer.verify_access_token(pair.access_token) == alice.user_id

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, auth, alice):
        pair = await auth.login("  Alice@Example.COM ", PASSWORD)
        assert pair.user_id == alice.user_id

        with pytest.raises(EmailTaken):
            await auth.register(RegistrationData(email="ALICE@example.com", password=PASSWORD))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("password", ["short", "12345678901", " padded password "])
    async def test_weak_password(self, auth, password):
        with pytest.raises(WeakPassword):
            await auth.register(RegistrationData(email=EMAIL, password=password))
        assert await auth.store.get_user_by_email(EMAIL) is None

    @pytest.mark.asyncio
    async def test_default_role_granted_globally(self, seeded, alice):
        resolver = seeded.resolver
        assert await resolver.has_permission(alice.user_id, None, Permission.CREATE_RECIPE)
        assert await resolver.has_permission(alice.user_id, None, Permission.READ_RECIPE)
        assert not await resolver.has_permission(alice.user_id, None, Permission.MANAGE_ROLES)
        assert not await resolver.has_permission(alice.user_id, "T1", Permission.CREATE_RECIPE)
        assert not await resolver.has_permission(alice.user_id, "T2", Permission.READ_RECIPE)

    @pytest.mark.asyncio
    async def test_tenant_in_payload_is_ignored(self, seeded):
        data = RegistrationData.model_validate(
            {"email": EMAIL, "password": PASSWORD, "tenant_id": "T1"}
        )
        pair = await seeded.auth.register(data)

        assert await seeded.resolver.effective_permissions(pair.user_id, "T1") == frozenset()

    @pytest.mark.asyncio
    async def test_missing_default_role_leaves_email_free(self, container):
        with pytest.raises(RoleNotFound):
            await container.auth.register(RegistrationData(email=EMAIL, password=PASSWORD))
        assert await container.store.get_user_by_email(EMAIL) is None

        await seed_roles(container.roles)
        pair = await container.auth.register(RegistrationData(email=EMAIL, password=PASSWORD))
        assert pair.user_id

    @pytest.mark.asyncio
    async def test_verification_email_sent(self, email, alice):
        assert email.last_verification(EMAIL)


class TestLogin:
    @pytest.mark.asyncio
    async def test_wrong_password(self, auth, alice):
        with pytest.raises(InvalidCredentials):
            await auth.login(EMAIL, "wrong password")

    @pytest.mark.asyncio
    async def test_unknown_email_same_error(self, auth, alice):
        with pytest.raises(InvalidCredentials) as unknown:
            await auth.login("bob@example.com", PASSWORD)
        with pytest.raises(InvalidCredentials) as wrong:
            await auth.login(EMAIL, "wrong password")
        assert unknown.value.public_message == wrong.value.public_message

    @pytest.mark.asyncio
    async def test_failed_logins_are_audited(self, auth, seeded, alice):
        with pytest.raises(InvalidCredentials):
            await auth.login(EMAIL, "wrong password")

        events = seeded.events.get_history("user.login_failed", user_id=alice.user_id)
        assert len(events) == 1
        assert events[0].payload == {"reason": "wrong password"}

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, auth, alice):
        for _ in range(3):
            with pytest.raises(InvalidCredentials):
                await auth.login(EMAIL, "wrong password")

        await auth.login(EMAIL, PASSWORD)

        user = await auth.get_user(alice.user_id)
        assert user.failed_login_attempts == 0
        assert user.last_login_at is not None

    @pytest.mark.asyncio
    async def test_suspended_cannot_login(self, auth, alice):
        await auth.suspend(alice.user_id)
        with pytest.raises(InvalidCredentials):
            await auth.login(EMAIL, PASSWORD)

    @pytest.mark.asyncio
    async def test_weaker_hash_upgraded_on_login(self, auth, alice):
        old = PasswordVerifier(n=8, r=1, p=1, settings=auth.settings).hash(PASSWORD)
        user = await auth.get_user(alice.user_id)
        await auth.store.update_user(user.id, user.version, {"password_hash": old})

        await auth.login(EMAIL, PASSWORD)

        upgraded = (await auth.get_user(alice.user_id)).password_hash
        assert upgraded != old
        assert not auth.verifier.needs_rehash(upgraded)


class TestLockout:
    async def fail(self, auth, times):
        for _ in range(times):
            with pytest.raises(InvalidCredentials):
                await auth.login(EMAIL, "wrong password")

    @pytest.mark.asyncio
    async def test_locks_after_threshold(self, auth, seeded, alice):
        await self.fail(auth, 5)

        with pytest.raises(AccountLocked):
            await auth.login(EMAIL, PASSWORD)
        user = await auth.get_user(alice.user_id)
        assert user.status == AccountStatus.LOCKED
        assert len(seeded.events.get_history("user.locked")) == 1

    @pytest.mark.asyncio
    async def test_below_threshold_not_locked(self, auth, alice):
        await self.fail(auth, 4)
        await auth.login(EMAIL, PASSWORD)

    @pytest.mark.asyncio
    async def test_cool_down_elapses(self, auth, clock, alice):
        await self.fail(auth, 5)

        clock.advance(minutes=14)
        with pytest.raises(AccountLocked):
            await auth.login(EMAIL, PASSWORD)

        clock.advance(minutes=1)
        await auth.login(EMAIL, PASSWORD)
        user = await auth.get_user(alice.user_id)
        assert user.status == AccountStatus.PENDING_VERIFICATION
        assert user.failed_login_attempts == 0

    @pytest.mark.asyncio
    async def test_concurrent_failures_all_counted(self, auth, alice):
        async def attempt():
            with pytest.raises(InvalidCredentials):
                await auth.login(EMAIL, "wrong password")

        await asyncio.gather(*(attempt() for _ in range(5)))

        user = await auth.get_user(alice.user_id)
        assert user.failed_login_attempts == 5
        assert user.status == AccountStatus.LOCKED

    @pytest.mark.asyncio
    async def test_admin_unlock(self, auth, alice):
        await self.fail(auth, 5)
        await auth.unlock(alice.user_id)
        await auth.login(EMAIL, PASSWORD)


class TestEmailVerification:
    @pytest.mark.asyncio
    async def test_verify_is_single_use(self, auth, email, alice):
        token = email.last_verification(EMAIL)

        assert await auth.verify_email(token) is True
        assert await auth.verify_email(token) is False

        user = await auth.get_user(alice.user_id)
        assert user.email_verified
        assert user.status == AccountStatus.ACTIVE
        assert email.verified == [EMAIL]

    @pytest.mark.asyncio
    async def test_unknown_token(self, auth, alice):
        assert await auth.verify_email("not-a-token") is False
        assert await auth.verify_email("") is False

    @pytest.mark.asyncio
    async def test_expired_token(self, auth, email, clock, alice):
        clock.advance(hours=25)
        assert await auth.verify_email(email.last_verification(EMAIL)) is False

    @pytest.mark.asyncio
    async def test_resend_replaces_previous_link(self, auth, email, alice):
        first = email.last_verification(EMAIL)
        await auth.resend_verification(EMAIL)
        second = email.last_verification(EMAIL)

        assert first != second
        assert await auth.verify_email(first) is False
        assert await auth.verify_email(second) is True

    @pytest.mark.asyncio
    async def test_resend_unknown_email_is_silent(self, auth, email):
        await auth.resend_verification("nobody@example.com")
        assert email.verification_tokens == {}

    @pytest.mark.asyncio
    async def test_unverified_login_grace(self, auth, clock, alice):
        clock.advance(hours=71)
        await auth.login(EMAIL, PASSWORD)

        clock.advance(hours=1)
        with pytest.raises(InvalidCredentials):
            await auth.login(EMAIL, PASSWORD)

    @pytest.mark.asyncio
    async def test_verified_account_outlives_grace(self, auth, email, clock, alice):
        await auth.verify_email(email.last_verification(EMAIL))
        clock.advance(days=30)
        await auth.login(EMAIL, PASSWORD)


class TestSessions:
    @pytest.mark.asyncio
    async def test_refresh_rotates(self, auth, alice):
        rotated = await auth.refresh(alice.refresh_token)
        assert rotated.refresh_token != alice.refresh_token
        with pytest.raises(TokenInvalid):
            await auth.refresh(alice.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_denied_for_suspended(self, auth, alice):
        pair = await auth.login(EMAIL, PASSWORD)
        await auth.suspend(alice.user_id)
        with pytest.raises(TokenInvalid):
            await auth.refresh(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_denied_after_grace(self, auth, clock, alice):
        clock.advance(hours=73)
        with pytest.raises(TokenInvalid):
            await auth.refresh(alice.refresh_token)

    @pytest.mark.asyncio
    async def test_logout(self, auth, alice):
        assert await auth.logout(alice.refresh_token, alice.user_id)
        with pytest.raises(TokenInvalid):
            await auth.refresh(alice.refresh_token)

    @pytest.mark.asyncio
    async def test_logout_other_users_token(self, auth, alice):
        with pytest.raises(TokenInvalid):
            await auth.logout(alice.refresh_token, "user_someone_else")

    @pytest.mark.asyncio
    async def test_logout_all(self, auth, alice):
        second = await auth.login(EMAIL, PASSWORD)
        assert await auth.logout_all(alice.user_id) == 2
        for token in (alice.refresh_token, second.refresh_token):
            with pytest.raises(TokenInvalid):
                await auth.refresh(token)


class TestPasswords:
    @pytest.mark.asyncio
    async def test_reset_password(self, auth, email, alice):
        await auth.request_password_reset(EMAIL)
        token = email.last_reset(EMAIL)

        assert await auth.reset_password(token, "a brand new password") is True

        with pytest.raises(InvalidCredentials):
            await auth.login(EMAIL, PASSWORD)
        await auth.login(EMAIL, "a brand new password")
        with pytest.raises(TokenInvalid):
            await auth.refresh(alice.refresh_token)
        assert await auth.reset_password(token, "yet another password") is False

    @pytest.mark.asyncio
    async def test_reset_lifts_lockout(self, auth, email, alice):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                await auth.login(EMAIL, "wrong password")

        await auth.request_password_reset(EMAIL)
        await auth.reset_password(email.last_reset(EMAIL), "a brand new password")

        await auth.login(EMAIL, "a brand new password")

    @pytest.mark.asyncio
    async def test_reset_weak_password_keeps_token(self, auth, email, alice):
        await auth.request_password_reset(EMAIL)
        token = email.last_reset(EMAIL)

        with pytest.raises(WeakPassword):
            await auth.reset_password(token, "short")
        assert await auth.reset_password(token, "a brand new password") is True

    @pytest.mark.asyncio
    async def test_reset_expires(self, auth, email, clock, alice):
        await auth.request_password_reset(EMAIL)
        clock.advance(minutes=61)
        assert await auth.reset_password(email.last_reset(EMAIL), "a brand new password") is False

    @pytest.mark.asyncio
    async def test_reset_unknown_email_is_silent(self, auth, email):
        await auth.request_password_reset("nobody@example.com")
        assert email.reset_tokens == {}

    @pytest.mark.asyncio
    async def test_change_password(self, auth, alice):
        await auth.change_password(alice.user_id, PASSWORD, "a brand new password")

        await auth.login(EMAIL, "a brand new password")
        with pytest.raises(TokenInvalid):
            await auth.refresh(alice.refresh_token)

    @pytest.mark.asyncio
    async def test_change_password_wrong_current(self, auth, alice):
        with pytest.raises(InvalidCredentials):
            await auth.change_password(alice.user_id, "not my password", "a brand new password")
        await auth.login(EMAIL, PASSWORD)
