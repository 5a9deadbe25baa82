"""
store/memberships.py -- Group and permission membership rows.

The same repository serves auth_groups_users (kind="group") and
auth_permissions_users (kind="permission"). The PermissionEvaluator diffs
its cached list against these rows and issues the minimal delete / insert.
"""

from __future__ import annotations

from sqlalchemy import and_, select

from core.clock import Clock, system_clock
from store.database import Database, to_db
from store.schema import auth_groups_users, auth_permissions_users

_TABLES = {"group": auth_groups_users, "permission": auth_permissions_users}


class MembershipStore:
    def __init__(self, db: Database, kind: str, clock: Clock = system_clock) -> None:
        if kind not in _TABLES:
            raise ValueError(f"Unknown membership kind: {kind!r}")
        self.engine = db.engine
        self.clock = clock
        self.table = _TABLES[kind]
        self.column = self.table.c[kind]

    def get_for_user(self, user_id: int) -> list[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(self.column).where(self.table.c.user_id == user_id).order_by(self.table.c.id)
            ).fetchall()
        return [r[0] for r in rows]

    def user_ids_with(self, value: str) -> list[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(self.table.c.user_id).where(self.column == value).order_by(self.table.c.user_id)
            ).fetchall()
        return [r[0] for r in rows]

    def delete_not_in(self, user_id: int, keep: list[str]) -> int:
        condition = self.table.c.user_id == user_id
        if keep:
            condition = and_(condition, self.column.not_in(keep))
        with self.engine.begin() as conn:
            result = conn.execute(self.table.delete().where(condition))
        return result.rowcount

    def delete_all(self, user_id: int) -> int:
        return self.delete_not_in(user_id, [])

    def bulk_insert(self, user_id: int, values: list[str]) -> None:
        if not values:
            return
        now = to_db(self.clock())
        with self.engine.begin() as conn:
            conn.execute(self.table.insert(), [{"user_id": user_id, self.column.key: v, "created_at": now} for v in values])
