"""
Role seed loader.

Loads the system role definitions from YAML and writes them into the
role graph. Seeding is idempotent: existing roles are updated in place,
so it can run on every startup.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from hestia.auth.roles import RoleGraph
from hestia.core.errors import RoleCycleError, RoleNotFound
from hestia.core.models import Role

logger = logging.getLogger(__name__)


class RoleLoader:
    """
    Loads role definitions and registers them with the role graph.

    File format:

        roles:
          - id: user
            name: User
            parent: guest
            permissions: [read_recipe, create_recipe]
    """

    def __init__(self, graph: RoleGraph, config_dir: Path | str | None = None):
        self.graph = graph
        if config_dir is None:
            config_dir = graph.settings.roles_config_dir
        self.config_dir = Path(config_dir)

    def read_definitions(self) -> list[dict[str, Any]]:
        """Every role definition in the config directory, in file order."""
        definitions: list[dict[str, Any]] = []
        if not self.config_dir.exists():
            logger.warning("Role config directory %s does not exist", self.config_dir)
            return definitions

        paths = sorted([*self.config_dir.glob("*.yaml"), *self.config_dir.glob("*.yml")])
        for path in paths:
            definitions.extend(self.read_file(path))
        return definitions

    def read_file(self, path: Path | str) -> list[dict[str, Any]]:
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        roles = data.get("roles", [])
        for definition in roles:
            if "id" not in definition:
                raise ValueError(f"Role definition without an id in {path}")
        return roles

    async def load_all(self) -> list[Role]:
        """Create or update every configured role as a system role."""
        definitions = _parents_first(self.read_definitions())
        loaded = [await self.load_role(definition) for definition in definitions]
        logger.info("Loaded %d system roles from %s", len(loaded), self.config_dir)
        return loaded

    async def load_role(self, definition: dict[str, Any]) -> Role:
        role_id = definition["id"]
        parent_id = definition.get("parent")
        permissions = definition.get("permissions", [])

        try:
            existing = await self.graph.get_role(role_id)
        except RoleNotFound:
            existing = None

        if existing is None:
            return await self.graph.create_role(
                definition.get("name", role_id),
                permissions,
                parent_id,
                role_id=role_id,
                description=definition.get("description", ""),
                priority=definition.get("priority", 0),
                is_system=True,
            )

        role = await self.graph.update_role(
            role_id,
            name=definition.get("name", role_id),
            description=definition.get("description", ""),
            permissions=permissions,
            priority=definition.get("priority", 0),
            allow_system=True,
        )
        if role.parent_id != parent_id:
            role = await self.graph.set_parent(role_id, parent_id, allow_system=True)
        return role


def _parents_first(definitions: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Order definitions so every parent defined in the set comes before its children."""
    by_id = {d["id"]: d for d in definitions}
    ordered: list[dict[str, Any]] = []
    placed: set[str] = set()

    def place(role_id: str, path: tuple[str, ...]) -> None:
        if role_id in placed:
            return
        if role_id in path:
            raise RoleCycleError(f"Role definitions form a cycle through {role_id}")
        definition = by_id[role_id]
        parent_id = definition.get("parent")
        if parent_id in by_id:
            place(parent_id, path + (role_id,))
        placed.add(role_id)
        ordered.append(definition)

    for definition in definitions:
        place(definition["id"], ())
    return ordered


async def seed_roles(graph: RoleGraph, config_dir: Path | str | None = None) -> list[Role]:
    """Convenience function to load all configured roles."""
    return await RoleLoader(graph, config_dir).load_all()
