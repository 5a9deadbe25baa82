"""
store/identities.py -- UserIdentity repository.

Every secret bound to a user lives in auth_identities, keyed by (user, type)
for per-user lookups and by (type, secret) for stateless credentials.

Security:
  Access tokens: only SHA-256(raw_token) is stored in secret. The raw token
       is handed back once, at generation time, on AccessToken.raw_token.

  HMAC tokens: secret holds the public key id; secret2 holds the signing
       secret encrypted by HmacEncrypter ("$b6$<key>$<token>"). The plain
       secret is likewise only returned once.

  One-time codes (2FA, activation, magic link) are stored as-is: they are
       short-lived and deleted on use or regeneration.

Layer rule: store/ may import from core/ only at runtime.
"""

from __future__ import annotations

import hashlib
import json
import secrets
from collections.abc import Iterator
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError

from core.clock import Clock, system_clock
from core.exceptions import AuthLogicError
from core.models import ID_TYPE_ACCESS_TOKEN, ID_TYPE_EMAIL_PASSWORD, ID_TYPE_HMAC_TOKEN, AccessToken, User, UserIdentity
from store.database import Database, from_db, to_db
from store.schema import auth_identities

if TYPE_CHECKING:
    from auth.hmac_encrypter import HmacEncrypter

_CODE_IDENTITY_RETRIES = 5


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _check_user_id(user: User) -> None:
    if user.id is None:
        raise AuthLogicError('"user.id" is None. You must not use an incomplete User object.')


class IdentityStore:
    def __init__(
        self,
        db: Database,
        clock: Clock = system_clock,
        encrypter: Optional[HmacEncrypter] = None,
    ) -> None:
        self.engine = db.engine
        self.clock = clock
        self.encrypter = encrypter

    # ------------------------------------------------------------------
    # Generic identities
    # ------------------------------------------------------------------

    def create(self, identity: UserIdentity) -> int:
        """Insert identity and return its id. Raises IntegrityError on a duplicate (type, secret)."""
        now = to_db(self.clock())
        with self.engine.begin() as conn:
            result = conn.execute(
                auth_identities.insert().values(
                    user_id=identity.user_id,
                    type=identity.type,
                    name=identity.name,
                    secret=identity.secret,
                    secret2=identity.secret2,
                    expires=to_db(identity.expires),
                    extra=identity.extra,
                    force_reset=1 if identity.force_reset else 0,
                    last_used_at=to_db(identity.last_used_at),
                    created_at=now,
                    updated_at=now,
                )
            )
        identity.id = result.inserted_primary_key[0]
        return identity.id

    def create_email_identity(self, user: User, email: str, password_hash: str) -> None:
        _check_user_id(user)
        self.create(UserIdentity(user_id=user.id, type=ID_TYPE_EMAIL_PASSWORD, secret=email, secret2=password_hash))

    def create_code_identity(
        self,
        user: User,
        type: str,
        code_generator: Callable[[], str],
        name: Optional[str] = None,
        extra: Optional[str] = None,
        expires: Optional[datetime] = None,
    ) -> str:
        """Insert a one-time code identity and return the code.

        A generated code that collides with an existing (type, secret) is
        regenerated, up to 5 tries; the last IntegrityError propagates.
        """
        _check_user_id(user)
        tries = _CODE_IDENTITY_RETRIES
        while True:
            code = code_generator()
            try:
                self.create(UserIdentity(user_id=user.id, type=type, secret=code, name=name, extra=extra, expires=expires))
                return code
            except IntegrityError:
                tries -= 1
                if tries == 0:
                    raise

    def get_identity_by_secret(self, type: str, secret: Optional[str]) -> Optional[UserIdentity]:
        if secret is None:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(
                auth_identities.select().where(and_(auth_identities.c.type == type, auth_identities.c.secret == secret))
            ).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_identities(self, user: User) -> list[UserIdentity]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                auth_identities.select().where(auth_identities.c.user_id == user.id).order_by(auth_identities.c.id)
            ).fetchall()
        return [_row_to_identity(r) for r in rows]

    def get_identities_by_user_ids(self, user_ids: list[int]) -> list[UserIdentity]:
        if not user_ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(
                auth_identities.select()
                .where(auth_identities.c.user_id.in_(user_ids))
                .order_by(auth_identities.c.user_id, auth_identities.c.id)
            ).fetchall()
        return [_row_to_identity(r) for r in rows]

    def get_identity_by_type(self, user: User, type: str) -> Optional[UserIdentity]:
        """Return the newest identity of type for user."""
        with self.engine.connect() as conn:
            row = conn.execute(
                auth_identities.select()
                .where(and_(auth_identities.c.user_id == user.id, auth_identities.c.type == type))
                .order_by(auth_identities.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_identities_by_types(self, user: User, types: list[str]) -> list[UserIdentity]:
        if not types:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(
                auth_identities.select()
                .where(and_(auth_identities.c.user_id == user.id, auth_identities.c.type.in_(types)))
                .order_by(auth_identities.c.id)
            ).fetchall()
        return [_row_to_identity(r) for r in rows]

    def touch(self, identity_id: int) -> datetime:
        """Stamp last_used_at with the current time and return it."""
        now = self.clock()
        with self.engine.begin() as conn:
            conn.execute(
                auth_identities.update().where(auth_identities.c.id == identity_id).values(last_used_at=to_db(now))
            )
        return now

    def delete_identities_by_type(self, user: User, type: str) -> int:
        _check_user_id(user)
        with self.engine.begin() as conn:
            result = conn.execute(
                auth_identities.delete().where(and_(auth_identities.c.user_id == user.id, auth_identities.c.type == type))
            )
        return result.rowcount

    def delete_identity(self, identity_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(auth_identities.delete().where(auth_identities.c.id == identity_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Password reset flags (on the email_password identity)
    # ------------------------------------------------------------------

    def requires_password_reset(self, user: User) -> bool:
        identity = self.get_identity_by_type(user, ID_TYPE_EMAIL_PASSWORD)
        return identity is not None and identity.force_reset

    def set_force_reset(self, user: User, value: bool) -> None:
        _check_user_id(user)
        self.force_multiple_password_reset([user.id], value)

    def force_multiple_password_reset(self, user_ids: list[int], value: bool = True) -> None:
        if not user_ids:
            return
        with self.engine.begin() as conn:
            conn.execute(
                auth_identities.update()
                .where(and_(auth_identities.c.type == ID_TYPE_EMAIL_PASSWORD, auth_identities.c.user_id.in_(user_ids)))
                .values(force_reset=1 if value else 0, updated_at=to_db(self.clock()))
            )

    def force_global_password_reset(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                auth_identities.update()
                .where(auth_identities.c.type == ID_TYPE_EMAIL_PASSWORD)
                .values(force_reset=1, updated_at=to_db(self.clock()))
            )

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def generate_access_token(self, user: User, name: str, scopes: Optional[list[str]] = None) -> AccessToken:
        _check_user_id(user)
        raw_token = secrets.token_urlsafe(48)
        identity = UserIdentity(
            user_id=user.id,
            type=ID_TYPE_ACCESS_TOKEN,
            name=name,
            secret=hash_token(raw_token),
            extra=json.dumps(scopes if scopes is not None else ["*"]),
        )
        self.create(identity)
        token = self._get_token(and_(auth_identities.c.id == identity.id))
        token.raw_token = raw_token
        return token

    def get_access_token_by_raw_token(self, raw_token: str) -> Optional[AccessToken]:
        return self._get_token(
            and_(auth_identities.c.type == ID_TYPE_ACCESS_TOKEN, auth_identities.c.secret == hash_token(raw_token))
        )

    def get_access_token(self, user: User, raw_token: str) -> Optional[AccessToken]:
        return self._get_token(
            and_(
                auth_identities.c.user_id == user.id,
                auth_identities.c.type == ID_TYPE_ACCESS_TOKEN,
                auth_identities.c.secret == hash_token(raw_token),
            )
        )

    def get_access_token_by_id(self, token_id: int, user: User) -> Optional[AccessToken]:
        return self._get_token_by_id(token_id, user, ID_TYPE_ACCESS_TOKEN)

    def get_all_access_tokens(self, user: User) -> list[AccessToken]:
        return self._get_tokens(user, ID_TYPE_ACCESS_TOKEN)

    def revoke_access_token(self, user: User, raw_token: str) -> bool:
        return self._revoke(
            and_(
                auth_identities.c.user_id == user.id,
                auth_identities.c.type == ID_TYPE_ACCESS_TOKEN,
                auth_identities.c.secret == hash_token(raw_token),
            )
        )

    def revoke_access_token_by_id(self, user: User, token_id: int) -> bool:
        return self._revoke(
            and_(
                auth_identities.c.user_id == user.id,
                auth_identities.c.type == ID_TYPE_ACCESS_TOKEN,
                auth_identities.c.id == token_id,
            )
        )

    def revoke_all_access_tokens(self, user: User) -> bool:
        return self._revoke(and_(auth_identities.c.user_id == user.id, auth_identities.c.type == ID_TYPE_ACCESS_TOKEN))

    # ------------------------------------------------------------------
    # HMAC tokens
    # ------------------------------------------------------------------

    def _require_encrypter(self) -> HmacEncrypter:
        if self.encrypter is None:
            raise AuthLogicError("IdentityStore needs an HmacEncrypter to manage HMAC tokens.")
        return self.encrypter

    def generate_hmac_token(self, user: User, name: str, scopes: Optional[list[str]] = None) -> AccessToken:
        """Create an HMAC key pair. raw_token on the result is the plain signing secret."""
        _check_user_id(user)
        encrypter = self._require_encrypter()
        raw_secret = encrypter.generate_secret_key()
        identity = UserIdentity(
            user_id=user.id,
            type=ID_TYPE_HMAC_TOKEN,
            name=name,
            secret=secrets.token_hex(16),
            secret2=encrypter.encrypt(raw_secret),
            extra=json.dumps(scopes if scopes is not None else ["*"]),
        )
        self.create(identity)
        token = self._get_token(auth_identities.c.id == identity.id)
        token.raw_token = raw_secret
        return token

    def get_hmac_token(self, key: str) -> Optional[AccessToken]:
        """Look up an HMAC token by its public key, for any user."""
        return self._get_token(and_(auth_identities.c.type == ID_TYPE_HMAC_TOKEN, auth_identities.c.secret == key))

    def get_hmac_token_for_user(self, user: User, key: str) -> Optional[AccessToken]:
        return self._get_token(
            and_(
                auth_identities.c.user_id == user.id,
                auth_identities.c.type == ID_TYPE_HMAC_TOKEN,
                auth_identities.c.secret == key,
            )
        )

    def get_hmac_token_by_id(self, token_id: int, user: User) -> Optional[AccessToken]:
        return self._get_token_by_id(token_id, user, ID_TYPE_HMAC_TOKEN)

    def get_all_hmac_tokens(self, user: User) -> list[AccessToken]:
        return self._get_tokens(user, ID_TYPE_HMAC_TOKEN)

    def revoke_hmac_token(self, user: User, key: str) -> bool:
        return self._revoke(
            and_(
                auth_identities.c.user_id == user.id,
                auth_identities.c.type == ID_TYPE_HMAC_TOKEN,
                auth_identities.c.secret == key,
            )
        )

    def revoke_all_hmac_tokens(self, user: User) -> bool:
        return self._revoke(and_(auth_identities.c.user_id == user.id, auth_identities.c.type == ID_TYPE_HMAC_TOKEN))

    def iter_hmac_identities(self) -> Iterator[UserIdentity]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                auth_identities.select().where(auth_identities.c.type == ID_TYPE_HMAC_TOKEN).order_by(auth_identities.c.id)
            ).fetchall()
        for row in rows:
            yield _row_to_identity(row)

    def update_secret2(self, identity_id: int, secret2: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                auth_identities.update()
                .where(auth_identities.c.id == identity_id)
                .values(secret2=secret2, updated_at=to_db(self.clock()))
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_token(self, condition) -> Optional[AccessToken]:
        with self.engine.connect() as conn:
            row = conn.execute(auth_identities.select().where(condition)).fetchone()
        return _row_to_token(row) if row is not None else None

    def _get_token_by_id(self, token_id: int, user: User, type: str) -> Optional[AccessToken]:
        return self._get_token(
            and_(
                auth_identities.c.id == token_id,
                auth_identities.c.user_id == user.id,
                auth_identities.c.type == type,
            )
        )

    def _get_tokens(self, user: User, type: str) -> list[AccessToken]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                auth_identities.select()
                .where(and_(auth_identities.c.user_id == user.id, auth_identities.c.type == type))
                .order_by(auth_identities.c.id)
            ).fetchall()
        return [_row_to_token(r) for r in rows]

    def _revoke(self, condition) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(auth_identities.delete().where(condition))
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> UserIdentity:
    return UserIdentity(
        id=row.id,
        user_id=row.user_id,
        type=row.type,
        name=row.name,
        secret=row.secret,
        secret2=row.secret2,
        expires=from_db(row.expires),
        extra=row.extra,
        force_reset=bool(row.force_reset),
        last_used_at=from_db(row.last_used_at),
        created_at=from_db(row.created_at),
        updated_at=from_db(row.updated_at),
    )


def _row_to_token(row) -> AccessToken:
    return AccessToken(
        id=row.id,
        user_id=row.user_id,
        type=row.type,
        name=row.name,
        secret=row.secret,
        secret2=row.secret2,
        scopes=json.loads(row.extra) if row.extra else [],
        expires=from_db(row.expires),
        last_used_at=from_db(row.last_used_at),
        created_at=from_db(row.created_at),
    )
