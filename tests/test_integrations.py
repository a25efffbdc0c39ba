"""
Tests for the email and Sentry integrations, settings and role seeding.
"""

import pytest
from botocore.exceptions import ClientError

from hestia.config import Settings
from hestia.config_loader import RoleLoader, seed_roles
from hestia.core.errors import InvalidCredentials, RoleCycleError
from hestia.core.permissions import Permission
from hestia.integrations.email import EmailService
from hestia.integrations.sentry import filter_event, init_sentry


class FakeSES:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.sent: list[dict] = []

    def send_email(self, **kwargs):
        if self.error:
            raise self.error
        self.sent.append(kwargs)
        return {"MessageId": f"msg-{len(self.sent)}"}


@pytest.fixture
def ses_settings(settings):
    return settings.model_copy(update={
        "aws_access_key_id": "AKIATEST",
        "aws_secret_access_key": "secret",
        "aws_ses_from_email": "noreply@hestia.test",
    })


class TestEmailService:
    @pytest.mark.asyncio
    async def test_unconfigured_does_not_send(self, settings):
        service = EmailService(settings)
        assert not service.is_configured
        assert await service.send_password_reset("alice@example.com", "tok") is False

    @pytest.mark.asyncio
    async def test_sends_verification_link(self, ses_settings):
        service = EmailService(ses_settings)
        service._client = FakeSES()

        assert await service.send_verification("alice@example.com", "Alice", "tok123") is True

        (message,) = service._client.sent
        assert message["Destination"] == {"ToAddresses": ["alice@example.com"]}
        assert message["Source"] == "noreply@hestia.test"
        body = message["Message"]["Body"]["Text"]["Data"]
        assert "/verify-email?token=tok123" in body

    @pytest.mark.asyncio
    async def test_unknown_template(self, ses_settings):
        service = EmailService(ses_settings)
        service._client = FakeSES()
        assert await service.send("alice@example.com", "newsletter") is False
        assert service._client.sent == []

    @pytest.mark.asyncio
    async def test_missing_template_variable(self, ses_settings):
        service = EmailService(ses_settings)
        service._client = FakeSES()
        assert await service.send("alice@example.com", "password_reset", {}) is False

    @pytest.mark.asyncio
    async def test_ses_rejection_is_reported_not_raised(self, ses_settings):
        service = EmailService(ses_settings)
        service._client = FakeSES(
            ClientError({"Error": {"Code": "MessageRejected", "Message": "no"}}, "SendEmail")
        )
        assert await service.send_email_verified("alice@example.com") is False


class TestSentry:
    def test_disabled_without_dsn(self, settings):
        assert init_sentry(settings) is False

    def test_auth_errors_dropped(self):
        error = InvalidCredentials("wrong password")
        assert filter_event({}, {"exc_info": (type(error), error, None)}) is None

    def test_credentials_scrubbed(self):
        error = RuntimeError("boom")
        event = {"request": {"headers": {"Authorization": "Bearer abc", "Accept": "*/*"}}}

        filtered = filter_event(event, {"exc_info": (type(error), error, None)})

        assert filtered["request"]["headers"]["Authorization"] == "[Filtered]"
        assert filtered["request"]["headers"]["Accept"] == "*/*"


class TestSettings:
    def test_development_allows_default_secret(self):
        Settings(environment="development").validate_for_production()

    def test_production_requires_strong_secret(self):
        with pytest.raises(RuntimeError):
            Settings(environment="production").validate_for_production()
        with pytest.raises(RuntimeError):
            Settings(environment="production", jwt_secret_key="short").validate_for_production()

    def test_cors_origins_list(self):
        settings = Settings(cors_origins="https://a.test, https://b.test,")
        assert settings.cors_origins_list == ["https://a.test", "https://b.test"]


class TestRoleLoader:
    @pytest.mark.asyncio
    async def test_seeds_system_roles(self, container):
        roles = await seed_roles(container.roles)

        assert [r.id for r in roles] == ["guest", "user", "moderator", "admin", "super_admin"]
        assert all(r.is_system and r.tenant_id is None for r in roles)

    @pytest.mark.asyncio
    async def test_seeding_is_idempotent(self, container):
        await seed_roles(container.roles)
        await seed_roles(container.roles)

        assert len(await container.roles.list_roles()) == 5
        assert Permission.READ_RECIPE in await container.roles.resolve_permissions("super_admin")

    @pytest.mark.asyncio
    async def test_children_listed_before_parents(self, container, tmp_path):
        (tmp_path / "roles.yaml").write_text(
            "roles:\n"
            "  - id: sous_chef\n"
            "    parent: cook\n"
            "    permissions: [update_recipe]\n"
            "  - id: cook\n"
            "    permissions: [read_recipe]\n"
        )

        await seed_roles(container.roles, tmp_path)

        assert await container.roles.resolve_permissions("sous_chef") == {
            Permission.READ_RECIPE,
            Permission.UPDATE_RECIPE,
        }

    @pytest.mark.asyncio
    async def test_reseed_applies_changes(self, container, tmp_path):
        path = tmp_path / "roles.yaml"
        path.write_text("roles:\n  - id: cook\n    permissions: [read_recipe]\n")
        await seed_roles(container.roles, tmp_path)

        path.write_text("roles:\n  - id: cook\n    permissions: [read_recipe, create_recipe]\n")
        await seed_roles(container.roles, tmp_path)

        assert Permission.CREATE_RECIPE in await container.roles.resolve_permissions("cook")

    @pytest.mark.asyncio
    async def test_cyclic_definitions_rejected(self, container, tmp_path):
        (tmp_path / "roles.yaml").write_text(
            "roles:\n"
            "  - id: a\n"
            "    parent: b\n"
            "  - id: b\n"
            "    parent: a\n"
        )
        loader = RoleLoader(container.roles, tmp_path)
        definitions = loader.read_definitions()
        assert len(definitions) == 2

        with pytest.raises(RoleCycleError):
            await loader.load_all()

    def test_definition_without_id(self, container, tmp_path):
        (tmp_path / "roles.yaml").write_text("roles:\n  - name: Nameless\n")
        with pytest.raises(ValueError):
            RoleLoader(container.roles, tmp_path).read_definitions()

    def test_missing_directory(self, container, tmp_path):
        assert RoleLoader(container.roles, tmp_path / "absent").read_definitions() == []
