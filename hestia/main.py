"""
Hestia identity core - Main entry point.

Runs the tenant access walkthrough end to end against the in-memory
store: a user registers, gets a tenant role with an inherited parent, and
the decision point answers for two tenants.

    python -m hestia.main          # demo
    python -m hestia.main serve    # run the API with uvicorn
"""

from __future__ import annotations

import asyncio
import sys

from hestia.auth.service import RegistrationData
from hestia.config import get_settings
from hestia.config_loader import seed_roles
from hestia.container import AuthContainer
from hestia.core.errors import TokenInvalid
from hestia.core.permissions import Permission


async def demo():
    """
    Walk through registration, role inheritance and tenant isolation.
    """
    print("=" * 60)
    print("HESTIA ACCESS CONTROL DEMO")
    print("=" * 60)
    print()

    container = AuthContainer()
    roles = await seed_roles(container.roles)
    print(f"Seeded {len(roles)} system roles: {', '.join(r.id for r in roles)}")
    print()

    # Tenant roles: editor inherits from viewer
    print("Creating tenant roles in T1...")
    await container.roles.create_role(
        "Viewer", [Permission.READ_RECIPE], role_id="viewer", tenant_id="T1",
    )
    await container.roles.create_role(
        "Editor", [Permission.CREATE_RECIPE], "viewer", role_id="editor", tenant_id="T1",
    )
    editor = await container.roles.resolve_permissions("editor")
    print(f"  ✓ editor resolves to {sorted(p.value for p in editor)}")
    print()

    print("Registering alice...")
    pair = await container.auth.register(
        RegistrationData(email="alice@example.com", password="correct horse battery", name="Alice")
    )
    await container.resolver.assign_role(pair.user_id, "editor", "T1", assigned_by="demo")
    print(f"  ✓ alice is {pair.user_id}, editor in T1")
    print()

    checks = [
        (Permission.READ_RECIPE, "T1"),
        (Permission.DELETE_RECIPE, "T1"),
        (Permission.READ_RECIPE, "T2"),
    ]
    print("Decisions:")
    for permission, tenant in checks:
        result = await container.decision_point.authorize(pair.access_token, permission, tenant)
        print(f"  • {permission.value:<15} in {tenant}: {result.decision.value}")
    print()

    result = await container.decision_point.authorize("not-a-token", Permission.READ_RECIPE, "T1")
    print(f"  • bad token: {result.decision.value}")
    print()

    print("Rotating refresh token...")
    rotated = await container.auth.refresh(pair.refresh_token)
    print(f"  ✓ new pair issued for {rotated.user_id}")
    try:
        await container.auth.refresh(pair.refresh_token)
    except TokenInvalid as e:
        print(f"  ✓ replay rejected: {e.__class__.__name__}")
    print()

    print("Audit trail:")
    for event in container.events.get_history(limit=20):
        print(f"  • {event.event_type}")


def serve():
    import uvicorn

    settings = get_settings()
    uvicorn.run("hestia.api.app:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "serve":
        serve()
    else:
        asyncio.run(demo())
