"""
store/users.py -- User repository.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Authenticators never touch SQL directly.

The user's email and password hash live on the email_password identity, not
on the users row. Lookups join that identity in so the returned User carries
both.

Every User handed out by this store is passed through the optional binder
callback, which the composition root uses to attach the per-user
TokenManager and PermissionEvaluator.

Security:
  All queries use bound parameters. Credential lookups only accept column
  names from _CREDENTIAL_COLUMNS, never raw request keys.

Layer rule: store/ may import from core/ only.
"""

from __future__ import annotations

import json
from typing import Callable, Optional

from sqlalchemy import and_, func, select

from core.clock import Clock, system_clock
from core.models import ID_TYPE_EMAIL_PASSWORD, STATUS_BANNED, User
from store.database import Database, from_db, to_db
from store.schema import auth_identities, users

Binder = Callable[[User], None]

# Columns on the users table that may be used as login identifiers. email is
# handled separately through the identity join.
_CREDENTIAL_COLUMNS = frozenset({"username"})

# Fields update_user() accepts.
_UPDATABLE = frozenset({"username", "status", "status_message", "active", "last_active", "profile"})


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore(db)
        user_id = store.create_user(User(username="alice", email="alice@example.com", password_hash=h))
        user = store.find_by_id(user_id)
    """

    def __init__(self, db: Database, clock: Clock = system_clock, binder: Optional[Binder] = None) -> None:
        self.engine = db.engine
        self.clock = clock
        self.binder = binder

    def _select_with_email(self):
        return select(
            users,
            auth_identities.c.secret.label("email"),
            auth_identities.c.secret2.label("password_hash"),
        ).select_from(
            users.outerjoin(
                auth_identities,
                and_(auth_identities.c.user_id == users.c.id, auth_identities.c.type == ID_TYPE_EMAIL_PASSWORD),
            )
        )

    def _hydrate(self, row) -> User:
        user = _row_to_user(row)
        if self.binder is not None:
            self.binder(user)
        return user

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_id(self, user_id: int) -> Optional[User]:
        """Look up a live (not soft-deleted) user by primary key."""
        with self.engine.connect() as conn:
            row = conn.execute(
                self._select_with_email().where(and_(users.c.id == user_id, users.c.deleted_at.is_(None)))
            ).fetchone()
        return self._hydrate(row) if row is not None else None

    def find_by_credentials(self, credentials: dict[str, str]) -> Optional[User]:
        """Look up a user by login identifiers, case-insensitively.

        email is matched against the email_password identity; every other key
        must be a users column in _CREDENTIAL_COLUMNS. Returns None when no
        identifier is given or nothing matches.
        """
        credentials = {k: v for k, v in credentials.items() if k != "password"}
        email = credentials.pop("email", None)
        unknown = set(credentials) - _CREDENTIAL_COLUMNS
        if unknown:
            raise ValueError(f"Unknown credential fields: {unknown!r}")
        if email is None and not credentials:
            return None

        conditions = [users.c.deleted_at.is_(None)]
        for key, value in credentials.items():
            conditions.append(func.lower(users.c[key]) == str(value).lower())
        if email is not None:
            conditions.append(auth_identities.c.id.is_not(None))
            conditions.append(func.lower(auth_identities.c.secret) == str(email).lower())

        with self.engine.connect() as conn:
            row = conn.execute(self._select_with_email().where(and_(*conditions)).limit(1)).fetchone()
        return self._hydrate(row) if row is not None else None

    def list_users(self) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                self._select_with_email().where(users.c.deleted_at.is_(None)).order_by(users.c.id)
            ).fetchall()
        return [self._hydrate(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert user plus its email_password identity. Returns the new id.

        Sets user.id in place. Raises sqlalchemy.exc.IntegrityError if the
        username or email is already taken.
        """
        now = to_db(self.clock())
        with self.engine.begin() as conn:
            result = conn.execute(
                users.insert().values(
                    username=user.username,
                    status=user.status,
                    status_message=user.status_message,
                    active=1 if user.active else 0,
                    profile=json.dumps(user.profile) if user.profile else None,
                    created_at=now,
                    updated_at=now,
                )
            )
            user.id = result.inserted_primary_key[0]
            self._save_email_identity(conn, user, now)
        return user.id

    def save_email_identity(self, user: User) -> None:
        """Create or update the email_password identity from user.email / user.password_hash."""
        with self.engine.begin() as conn:
            self._save_email_identity(conn, user, to_db(self.clock()))

    def _save_email_identity(self, conn, user: User, now: Optional[str]) -> None:
        if user.email is None and user.password_hash is None:
            return
        existing = conn.execute(
            select(auth_identities.c.id).where(
                and_(auth_identities.c.user_id == user.id, auth_identities.c.type == ID_TYPE_EMAIL_PASSWORD)
            )
        ).fetchone()
        if existing is None:
            conn.execute(
                auth_identities.insert().values(
                    user_id=user.id,
                    type=ID_TYPE_EMAIL_PASSWORD,
                    secret=user.email or "",
                    secret2=user.password_hash,
                    created_at=now,
                    updated_at=now,
                )
            )
            return
        values: dict = {"updated_at": now}
        if user.email is not None:
            values["secret"] = user.email
        if user.password_hash is not None:
            values["secret2"] = user.password_hash
        conn.execute(auth_identities.update().where(auth_identities.c.id == existing.id).values(**values))

    def update_user(self, user_id: int, **fields) -> bool:
        """Update whitelisted columns. Returns True if a row was updated."""
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "active" in fields:
            fields["active"] = 1 if fields["active"] else 0
        if "last_active" in fields:
            fields["last_active"] = to_db(fields["last_active"])
        if "profile" in fields:
            fields["profile"] = json.dumps(fields["profile"]) if fields["profile"] else None
        fields["updated_at"] = to_db(self.clock())
        with self.engine.begin() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def activate(self, user: User) -> None:
        self.update_user(user.id, active=True)
        user.active = True

    def deactivate(self, user: User) -> None:
        self.update_user(user.id, active=False)
        user.active = False

    def ban(self, user: User, message: Optional[str] = None) -> None:
        self.update_user(user.id, status=STATUS_BANNED, status_message=message)
        user.status = STATUS_BANNED
        user.status_message = message

    def unban(self, user: User) -> None:
        self.update_user(user.id, status=None, status_message=None)
        user.status = None
        user.status_message = None

    def update_active_date(self, user: User) -> None:
        """Stamp last_active. The caller sets user.last_active first."""
        with self.engine.begin() as conn:
            conn.execute(users.update().where(users.c.id == user.id).values(last_active=to_db(user.last_active)))

    def delete_user(self, user_id: int) -> bool:
        """Soft delete. Identities, memberships and login rows stay in place."""
        with self.engine.begin() as conn:
            result = conn.execute(
                users.update()
                .where(and_(users.c.id == user_id, users.c.deleted_at.is_(None)))
                .values(deleted_at=to_db(self.clock()))
            )
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        status=row.status,
        status_message=row.status_message,
        active=bool(row.active),
        last_active=from_db(row.last_active),
        created_at=from_db(row.created_at),
        updated_at=from_db(row.updated_at),
        deleted_at=from_db(row.deleted_at),
        profile=json.loads(row.profile) if row.profile else {},
    )
