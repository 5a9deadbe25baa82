"""
store/database.py -- Engine setup shared by every gatehouse repository.

One Database per process. Each repository (UserStore, IdentityStore, ...)
holds a reference to it and opens short-lived connections per call.

SQLite specifics:
  check_same_thread=False because FastAPI runs sync routes in a thread pool.
  WAL journal mode is set per connection; PRAGMAs are not inherited by new
  pooled connections.

Layer rule: store/ may import from core/ only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from core.clock import ensure_utc
from store.schema import metadata


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class Database:
    """Owns the SQLAlchemy engine and creates the schema on first use.

    Usage:
        db = Database("sqlite:///gatehouse_auth.db")
        users = UserStore(db, clock=system_clock)
        db.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_db(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))
