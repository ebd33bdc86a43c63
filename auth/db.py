"""
auth/db.py -- Engine construction shared by the user and session stores.

Each store owns its own engine (they may point at different databases). For
SQLite URLs the engine is made usable from FastAPI's worker threads and every
pooled connection is switched to WAL journal mode.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, metadata: MetaData) -> Engine:
    """Create the engine for db_url and make sure metadata's tables exist."""
    is_sqlite = db_url.startswith("sqlite")
    engine = create_engine(db_url, connect_args={"check_same_thread": False} if is_sqlite else {})
    if is_sqlite:
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine
