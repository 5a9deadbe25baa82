"""
store/logins.py -- Append-only login-attempt audit log.

One LoginStore per table: auth_logins records session / magic-link logins,
auth_token_logins records token, HMAC and JWT attempts. Rows are never
updated or deleted.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Table, and_
from sqlalchemy.exc import SQLAlchemyError

from core.clock import Clock, system_clock
from core.exceptions import StoreError
from core.models import Login, User
from store.database import Database, from_db, to_db
from store.schema import auth_logins


class LoginStore:
    def __init__(self, db: Database, clock: Clock = system_clock, table: Table = auth_logins) -> None:
        self.engine = db.engine
        self.clock = clock
        self.table = table

    def record(
        self,
        id_type: str,
        identifier: str,
        success: bool,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> None:
        """Append one attempt. Raises StoreError if the write fails."""
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    self.table.insert().values(
                        id_type=id_type,
                        identifier=identifier[:255],
                        success=1 if success else 0,
                        ip_address=ip_address,
                        user_agent=(user_agent or "")[:255] or None,
                        user_id=user_id,
                        date=to_db(self.clock()),
                    )
                )
        except SQLAlchemyError as exc:
            raise StoreError(f"Could not record login attempt in {self.table.name}: {exc}") from exc

    def previous_login(self, user: User) -> Optional[Login]:
        """Second most recent successful login, i.e. the one before the current session."""
        rows = self._successful(user, limit=2)
        return rows[1] if len(rows) > 1 else None

    def last_login(self, user: User) -> Optional[Login]:
        rows = self._successful(user, limit=1)
        return rows[0] if rows else None

    def attempts_for(self, id_type: str, identifier: str) -> list[Login]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                self.table.select()
                .where(and_(self.table.c.id_type == id_type, self.table.c.identifier == identifier))
                .order_by(self.table.c.id)
            ).fetchall()
        return [_row_to_login(r) for r in rows]

    def all(self) -> list[Login]:
        with self.engine.connect() as conn:
            rows = conn.execute(self.table.select().order_by(self.table.c.id)).fetchall()
        return [_row_to_login(r) for r in rows]

    def _successful(self, user: User, limit: int) -> list[Login]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                self.table.select()
                .where(and_(self.table.c.user_id == user.id, self.table.c.success == 1))
                .order_by(self.table.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_login(r) for r in rows]


def _row_to_login(row) -> Login:
    return Login(
        id=row.id,
        id_type=row.id_type,
        identifier=row.identifier,
        success=bool(row.success),
        date=from_db(row.date),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        user_id=row.user_id,
    )
