"""
Tests for the decision point, the route table and the request context.
"""

import pytest
import pytest_asyncio
from starlette.requests import Request

from hestia.auth.context import AuthContext
from hestia.auth.policies import (
    AUTHENTICATED,
    PUBLIC,
    Decision,
    RouteRule,
    RouteTable,
    SecuredRouter,
    extract_tenant_id,
)
from hestia.core.errors import Forbidden, Unauthorized
from hestia.core.permissions import Permission


@pytest_asyncio.fixture
async def alice(seeded):
    """Alice is an editor (inheriting viewer) in tenant T1 only."""
    await seeded.roles.create_role(
        "Viewer", [Permission.READ_RECIPE], role_id="viewer", tenant_id="T1",
    )
    await seeded.roles.create_role(
        "Editor", [Permission.CREATE_RECIPE], "viewer", role_id="editor", tenant_id="T1",
    )
    await seeded.resolver.assign_role("alice", "editor", "T1")
    return seeded.issuer.issue_access_token("alice")


class TestDecisionPoint:
    @pytest.mark.asyncio
    async def test_inherited_permission_allowed(self, seeded, alice):
        result = await seeded.decision_point.authorize(alice, Permission.READ_RECIPE, "T1")
        assert result.decision == Decision.ALLOW
        assert result.user_id == "alice"
        assert result.allowed

    @pytest.mark.asyncio
    async def test_missing_permission_forbidden(self, seeded, alice):
        result = await seeded.decision_point.authorize(alice, Permission.DELETE_RECIPE, "T1")
        assert result.decision == Decision.FORBIDDEN
        assert result.user_id == "alice"

    @pytest.mark.asyncio
    async def test_other_tenant_forbidden(self, seeded, alice):
        result = await seeded.decision_point.authorize(alice, Permission.READ_RECIPE, "T2")
        assert result.decision == Decision.FORBIDDEN

    @pytest.mark.asyncio
    async def test_global_scope_forbidden(self, seeded, alice):
        result = await seeded.decision_point.authorize(alice, Permission.READ_RECIPE, None)
        assert result.decision == Decision.FORBIDDEN

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "", "not-a-token"])
    async def test_bad_token_unauthorized(self, seeded, token):
        result = await seeded.decision_point.authorize(token, Permission.READ_RECIPE, "T1")
        assert result.decision == Decision.UNAUTHORIZED
        assert result.user_id is None

    @pytest.mark.asyncio
    async def test_expired_token_unauthorized(self, seeded, clock, alice):
        clock.advance(minutes=15)
        result = await seeded.decision_point.authorize(alice, Permission.READ_RECIPE, "T1")
        assert result.decision == Decision.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_authentication_only(self, seeded, alice):
        result = await seeded.decision_point.authorize(alice)
        assert result.decision == Decision.ALLOW

    @pytest.mark.asyncio
    async def test_revocation_takes_effect(self, seeded, alice):
        (assignment,) = await seeded.resolver.list_assignments("alice", "T1")
        await seeded.resolver.revoke_assignment(assignment.id)

        result = await seeded.decision_point.authorize(alice, Permission.READ_RECIPE, "T1")
        assert result.decision == Decision.FORBIDDEN

    @pytest.mark.asyncio
    async def test_raise_for_decision(self, seeded, alice):
        allowed = await seeded.decision_point.authorize(alice, Permission.READ_RECIPE, "T1")
        assert allowed.raise_for_decision() == "alice"

        denied = await seeded.decision_point.authorize(alice, Permission.DELETE_RECIPE, "T1")
        with pytest.raises(Forbidden):
            denied.raise_for_decision()

        anonymous = await seeded.decision_point.authorize(None, Permission.READ_RECIPE, "T1")
        with pytest.raises(Unauthorized):
            anonymous.raise_for_decision()


class TestRouteTable:
    def test_unlisted_routes_require_auth(self):
        table = RouteTable()
        assert table.lookup("GET", "/anything") == AUTHENTICATED
        assert not table.is_public("GET", "/anything")

    def test_method_is_case_insensitive(self):
        table = RouteTable()
        table.register("get", "/health", PUBLIC)
        assert table.is_public("GET", "/health")
        assert not table.is_public("POST", "/health")

    def test_conflicting_rules_rejected(self):
        table = RouteTable()
        table.register("GET", "/recipes", PUBLIC)
        table.register("GET", "/recipes", PUBLIC)
        with pytest.raises(ValueError):
            table.register("GET", "/recipes", RouteRule(permission=Permission.READ_RECIPE))

    def test_merge(self):
        first, second = RouteTable(), RouteTable()
        first.register("GET", "/a", PUBLIC)
        second.register("GET", "/b", RouteRule(permission=Permission.MANAGE_ROLES))

        first.merge(second)

        assert len(first) == 2
        assert first.lookup("GET", "/b").permission == Permission.MANAGE_ROLES

    def test_secured_router_records_rules(self):
        secured = SecuredRouter(prefix="/recipes")

        @secured.get("/{recipe_id}", permission=Permission.READ_RECIPE)
        async def get_recipe(recipe_id: str):
            return {}

        @secured.get("/featured", public=True)
        async def featured():
            return []

        assert secured.rules.lookup("GET", "/recipes/{recipe_id}").permission == Permission.READ_RECIPE
        assert secured.rules.is_public("GET", "/recipes/featured")
        assert len(secured.router.routes) == 2

    def test_public_route_cannot_require_permission(self):
        secured = SecuredRouter(prefix="/recipes")
        with pytest.raises(ValueError):
            secured.get("/", public=True, permission=Permission.READ_RECIPE)


def make_request(headers=None, path_params=None) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "path_params": path_params or {},
    })


class TestTenantExtraction:
    def test_header(self):
        assert extract_tenant_id(make_request({"X-Tenant-ID": "T1"})) == "T1"

    def test_header_wins_over_path(self):
        request = make_request({"X-Tenant-ID": "T1"}, {"tenant_id": "T2"})
        assert extract_tenant_id(request) == "T1"

    def test_path_param(self):
        assert extract_tenant_id(make_request(path_params={"tenant_id": "T2"})) == "T2"

    def test_blank_header_is_global(self):
        assert extract_tenant_id(make_request({"X-Tenant-ID": "  "})) is None

    def test_none(self):
        assert extract_tenant_id(make_request()) is None


class TestAuthContext:
    @pytest.mark.asyncio
    async def test_can(self, seeded, alice):
        ctx = AuthContext(user_id="alice", tenant_id="T1", resolver=seeded.resolver)
        assert await ctx.can(Permission.CREATE_RECIPE)
        assert await ctx.can("read_recipe")
        assert not await ctx.can(Permission.DELETE_RECIPE)

    @pytest.mark.asyncio
    async def test_anonymous(self, seeded):
        ctx = AuthContext(tenant_id="T1", resolver=seeded.resolver)
        assert ctx.is_anonymous
        assert not await ctx.can(Permission.READ_RECIPE)
        assert await ctx.permissions() == frozenset()
        with pytest.raises(Unauthorized):
            ctx.require_user()
        with pytest.raises(Unauthorized):
            await ctx.ensure(Permission.READ_RECIPE)

    @pytest.mark.asyncio
    async def test_ensure(self, seeded, alice):
        ctx = AuthContext(user_id="alice", tenant_id="T1", resolver=seeded.resolver)
        await ctx.ensure(Permission.READ_RECIPE)
        with pytest.raises(Forbidden):
            await ctx.ensure(Permission.MANAGE_ROLES)
