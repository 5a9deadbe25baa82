"""
authz/groups.py -- Runtime registry of groups, permissions and the matrix.

Seeded from the frozen GroupSettings at startup. The registry owns mutable
copies so Groups.save() and the per-group permission edits take effect for
the lifetime of the process without touching the Settings object.
"""

from __future__ import annotations

import re
from typing import Optional

from core.config import GroupSettings
from core.exceptions import AuthorizationError, ConfigurationError
from core.messages import message
from core.models import Group

_SLUG = re.compile(r"[^a-z0-9]+")


class Groups:
    def __init__(self, settings: GroupSettings) -> None:
        self._groups: dict[str, dict[str, str]] = {k.lower(): dict(v) for k, v in settings.groups.items()}
        self._permissions: dict[str, str] = {k.lower(): v for k, v in settings.permissions.items()}
        self._matrix: dict[str, list[str]] = {k.lower(): list(v) for k, v in settings.matrix.items()}
        self.default_group = settings.default_group.lower() if settings.default_group else ""

    def validate_default_group(self) -> None:
        if not self.default_group or self.default_group not in self._groups:
            raise ConfigurationError(message("unknownGroup", group=self.default_group or "--not found--"))

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def aliases(self) -> list[str]:
        return list(self._groups)

    def permission_names(self) -> list[str]:
        return list(self._permissions)

    def exists(self, alias: str) -> bool:
        return alias.lower() in self._groups

    def permission_exists(self, permission: str) -> bool:
        return permission.lower() in self._permissions

    def matrix_for(self, alias: str) -> list[str]:
        return list(self._matrix.get(alias.lower(), []))

    def info(self, alias: str) -> Optional[Group]:
        info = self._groups.get(alias.lower())
        if not info:
            return None
        return Group(
            alias=alias.lower(),
            title=info.get("title", ""),
            description=info.get("description", ""),
            permissions=self.matrix_for(alias),
        )

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def save(self, group: Group) -> Group:
        """Create or update a group. The alias is derived from the title when empty."""
        if not group.title:
            raise AuthorizationError("A group must have a title.", code="missingTitle")
        alias = group.alias.lower() if group.alias else _SLUG.sub("-", group.title.lower()).strip("-")
        self._groups[alias] = {"title": group.title, "description": group.description}
        if group.permissions:
            self.set_permissions(alias, group.permissions)
        group.alias = alias
        return group

    def set_permissions(self, alias: str, permissions: list[str]) -> None:
        if not self.exists(alias):
            raise AuthorizationError(message("unknownGroup", group=alias), code="unknownGroup")
        self._matrix[alias.lower()] = [p.lower() for p in permissions]

    def add_permission(self, alias: str, permission: str) -> None:
        current = self.matrix_for(alias)
        if permission.lower() not in current:
            self.set_permissions(alias, [permission.lower(), *current])

    def remove_permission(self, alias: str, permission: str) -> None:
        self.set_permissions(alias, [p for p in self.matrix_for(alias) if p != permission.lower()])
