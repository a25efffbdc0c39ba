"""
Shared fixtures.

Every test gets its own container: fresh in-memory store, a cheap scrypt
cost so hashing stays fast, a clock the test can move, and an email
service that records outbound links instead of sending them.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from hestia.config import Settings
from hestia.config_loader import seed_roles
from hestia.container import AuthContainer
from hestia.integrations.email import EmailService

TEST_SECRET = "test-secret-key-with-at-least-32-bytes!"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class CapturingEmail(EmailService):
    """Keeps the raw tokens that would have been emailed."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.verification_tokens: dict[str, list[str]] = {}
        self.reset_tokens: dict[str, list[str]] = {}
        self.verified: list[str] = []

    async def send_verification(self, email: str, name: str, verify_token: str) -> bool:
        self.verification_tokens.setdefault(email, []).append(verify_token)
        return True

    async def send_password_reset(self, email: str, reset_token: str) -> bool:
        self.reset_tokens.setdefault(email, []).append(reset_token)
        return True

    async def send_email_verified(self, email: str) -> bool:
        self.verified.append(email)
        return True

    def last_verification(self, email: str) -> str:
        return self.verification_tokens[email][-1]

    def last_reset(self, email: str) -> str:
        return self.reset_tokens[email][-1]


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        jwt_secret_key=TEST_SECRET,
        password_scrypt_n=16,
        password_scrypt_r=1,
        password_scrypt_p=1,
        sentry_dsn="",
        aws_access_key_id="",
        aws_secret_access_key="",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def email(settings):
    return CapturingEmail(settings)


@pytest.fixture
def container(settings, clock, email):
    return AuthContainer(settings=settings, email=email, clock=clock)


@pytest_asyncio.fixture
async def seeded(container):
    """Container with the system roles from config/roles loaded."""
    await seed_roles(container.roles)
    return container


@pytest_asyncio.fixture
async def client(seeded):
    """
    HTTPX AsyncClient bound to an app built around the seeded container.

    ASGITransport does not run the lifespan, which is why roles are
    seeded through the container above.
    """
    from hestia.api.app import create_app

    app = create_app(seeded)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as c:
        yield c
