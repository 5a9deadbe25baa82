"""
store/schema.py -- SQLAlchemy Core table definitions for gatehouse.

Timestamps are stored as ISO 8601 UTC strings (microsecond precision) so
string comparison in SQL orders them correctly.

Audit tables (auth_logins, auth_token_logins) deliberately carry no foreign
key to users: login rows outlive the users they reference.

UNIQUE(type, secret) on auth_identities backs the global uniqueness of token
hashes, HMAC keys and one-time codes. UNIQUE(selector) on
auth_remember_tokens backs the remember-me lookup.
"""

from __future__ import annotations

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, UniqueConstraint

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(30), unique=True),
    Column("status", String(255)),
    Column("status_message", String(255)),
    Column("active", Integer, nullable=False, server_default="0"),
    Column("last_active", String(32)),
    Column("profile", Text),  # JSON blob of extra personal attributes
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
    Column("deleted_at", String(32)),
)

auth_identities = Table(
    "auth_identities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("type", String(255), nullable=False),
    Column("name", String(255)),
    Column("secret", String(255), nullable=False),
    Column("secret2", String(255)),
    Column("expires", String(32)),
    Column("extra", Text),
    Column("force_reset", Integer, nullable=False, server_default="0"),
    Column("last_used_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
    UniqueConstraint("type", "secret", name="uq_identities_type_secret"),
    Index("ix_identities_user_id", "user_id"),
)


def _login_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("ip_address", String(255)),
        Column("user_agent", String(255)),
        Column("id_type", String(255), nullable=False),
        Column("identifier", String(255), nullable=False),
        Column("user_id", Integer),
        Column("date", String(32), nullable=False),
        Column("success", Integer, nullable=False),
        Index(f"ix_{name}_id_type_identifier", "id_type", "identifier"),
        Index(f"ix_{name}_user_id", "user_id"),
    )


auth_logins = _login_table("auth_logins")
auth_token_logins = _login_table("auth_token_logins")

auth_remember_tokens = Table(
    "auth_remember_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("selector", String(255), nullable=False, unique=True),
    Column("hashed_validator", String(255), nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("expires", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)

auth_groups_users = Table(
    "auth_groups_users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("group", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
    Index("ix_groups_users_user_id", "user_id"),
)

auth_permissions_users = Table(
    "auth_permissions_users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("permission", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
    Index("ix_permissions_users_user_id", "user_id"),
)
