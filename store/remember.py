"""
store/remember.py -- Remember-me token repository.

Rotation is a compare-and-swap: update_remember_validator() only succeeds if
the row still carries the validator hash the caller verified. Two requests
racing with the same cookie cannot both rotate; the loser sees False.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import and_

from core.clock import Clock, system_clock
from core.models import RememberToken
from store.database import Database, from_db, to_db
from store.schema import auth_remember_tokens


class RememberStore:
    def __init__(self, db: Database, clock: Clock = system_clock) -> None:
        self.engine = db.engine
        self.clock = clock

    def remember_user(self, user_id: int, selector: str, hashed_validator: str, expires: datetime) -> None:
        now = to_db(self.clock())
        with self.engine.begin() as conn:
            conn.execute(
                auth_remember_tokens.insert().values(
                    user_id=user_id,
                    selector=selector,
                    hashed_validator=hashed_validator,
                    expires=to_db(expires),
                    created_at=now,
                    updated_at=now,
                )
            )

    def get_remember_token(self, selector: str) -> Optional[RememberToken]:
        with self.engine.connect() as conn:
            row = conn.execute(
                auth_remember_tokens.select().where(auth_remember_tokens.c.selector == selector)
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    def update_remember_validator(
        self, selector: str, old_hashed_validator: str, new_hashed_validator: str, expires: datetime
    ) -> bool:
        """Swap the validator hash. Returns False if another request rotated it first."""
        with self.engine.begin() as conn:
            result = conn.execute(
                auth_remember_tokens.update()
                .where(
                    and_(
                        auth_remember_tokens.c.selector == selector,
                        auth_remember_tokens.c.hashed_validator == old_hashed_validator,
                    )
                )
                .values(hashed_validator=new_hashed_validator, expires=to_db(expires), updated_at=to_db(self.clock()))
            )
        return result.rowcount == 1

    def purge_remember_tokens(self, user_id: int) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(auth_remember_tokens.delete().where(auth_remember_tokens.c.user_id == user_id))
        return result.rowcount

    def delete_selector(self, selector: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(auth_remember_tokens.delete().where(auth_remember_tokens.c.selector == selector))

    def purge_old_remember_tokens(self) -> int:
        """Delete every expired token. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                auth_remember_tokens.delete().where(auth_remember_tokens.c.expires <= to_db(self.clock()))
            )
        return result.rowcount


def _row_to_token(row) -> RememberToken:
    return RememberToken(
        id=row.id,
        user_id=row.user_id,
        selector=row.selector,
        hashed_validator=row.hashed_validator,
        expires=from_db(row.expires),
    )
