"""
authz/evaluator.py -- Per-user group / permission evaluation.

One PermissionEvaluator is bound onto each User the store hands out
(user.authz). It lazily loads the user's groups and direct permissions on
first use and keeps them for the lifetime of that User object. The cache is
only changed by add / remove / sync, which persist the difference against
what is stored with the minimal delete + insert.

can() semantics, per permission in order:
  1. a direct permission equal to it grants it
  2. any group whose matrix entry lists it exactly, or lists "<scope>.*",
     grants it
The first permission granted makes can() return True.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from core.exceptions import AuthorizationError, AuthLogicError
from core.messages import message

if TYPE_CHECKING:
    from authz.groups import Groups
    from core.models import User
    from store.memberships import MembershipStore


class PermissionEvaluator:
    def __init__(
        self,
        user: User,
        groups: Groups,
        group_store: MembershipStore,
        permission_store: MembershipStore,
    ) -> None:
        self.user = user
        self.groups = groups
        self.group_store = group_store
        self.permission_store = permission_store
        self._group_cache: Optional[list[str]] = None
        self._permission_cache: Optional[list[str]] = None

    def _user_id(self) -> int:
        if self.user.id is None:
            raise AuthLogicError('"user.id" is None. You must not use an incomplete User object.')
        return self.user.id

    def _populate_groups(self) -> list[str]:
        if self._group_cache is None:
            self._group_cache = self.group_store.get_for_user(self._user_id())
        return self._group_cache

    def _populate_permissions(self) -> list[str]:
        if self._permission_cache is None:
            self._permission_cache = self.permission_store.get_for_user(self._user_id())
        return self._permission_cache

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def get_groups(self) -> list[str]:
        return list(self._populate_groups())

    def add_group(self, *groups: str) -> None:
        cache = self._populate_groups()
        before = len(cache)
        for group in groups:
            group = group.lower()
            if group in cache:
                continue
            if not self.groups.exists(group):
                raise AuthorizationError(message("unknownGroup", group=group), code="unknownGroup")
            cache.append(group)
        if len(cache) > before:
            self._save(self.group_store, cache)

    def remove_group(self, *groups: str) -> None:
        drop = {g.lower() for g in groups}
        self._group_cache = [g for g in self._populate_groups() if g not in drop]
        self._save(self.group_store, self._group_cache)

    def sync_groups(self, *groups: str) -> None:
        wanted = _dedupe(g.lower() for g in groups)
        for group in wanted:
            if not self.groups.exists(group):
                raise AuthorizationError(message("unknownGroup", group=group), code="unknownGroup")
        self._populate_groups()
        self._group_cache = wanted
        self._save(self.group_store, wanted)

    def in_group(self, *groups: str) -> bool:
        cache = self._populate_groups()
        return any(group.lower() in cache for group in groups)

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def get_permissions(self) -> list[str]:
        return list(self._populate_permissions())

    def add_permission(self, *permissions: str) -> None:
        cache = self._populate_permissions()
        before = len(cache)
        for permission in permissions:
            permission = permission.lower()
            if permission in cache:
                continue
            if not self.groups.permission_exists(permission):
                raise AuthorizationError(message("unknownPermission", permission=permission), code="unknownPermission")
            cache.append(permission)
        if len(cache) > before:
            self._save(self.permission_store, cache)

    def remove_permission(self, *permissions: str) -> None:
        drop = {p.lower() for p in permissions}
        self._permission_cache = [p for p in self._populate_permissions() if p not in drop]
        self._save(self.permission_store, self._permission_cache)

    def sync_permissions(self, *permissions: str) -> None:
        wanted = _dedupe(p.lower() for p in permissions)
        for permission in wanted:
            if not self.groups.permission_exists(permission):
                raise AuthorizationError(message("unknownPermission", permission=permission), code="unknownPermission")
        self._populate_permissions()
        self._permission_cache = wanted
        self._save(self.permission_store, wanted)

    def has_permission(self, permission: str) -> bool:
        return permission.lower() in self._populate_permissions()

    def can(self, *permissions: str) -> bool:
        direct = self._populate_permissions()
        groups = self._populate_groups()
        for permission in permissions:
            if "." not in permission:
                raise AuthorizationError(
                    "A permission must be a string made of a scope and an action, like `users.create`. "
                    f"Invalid permission: {permission}",
                    code="malformedPermission",
                )
            permission = permission.lower()
            if permission in direct:
                return True
            wildcard = permission.split(".", 1)[0] + ".*"
            for group in groups:
                matrix = self.groups.matrix_for(group)
                if permission in matrix or wildcard in matrix:
                    return True
        return False

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _save(self, store: MembershipStore, cache: list[str]) -> None:
        user_id = self._user_id()
        existing = store.get_for_user(user_id)
        new = [item for item in cache if item not in existing]
        if cache:
            store.delete_not_in(user_id, cache)
        else:
            store.delete_all(user_id)
        store.bulk_insert(user_id, new)


def _dedupe(items) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen
