"""
auth/session_store.py -- Server-side keyed session storage (SQLAlchemy Core).

Pattern: Repository. SessionStore hands out live Session mappings keyed by an
opaque 32-hex-character id; every write to a Session is persisted straight
away, so a request that crashes half-way leaves the store consistent with
what the handler had already written.

Lifecycle:
  open(None)   -> fresh session with a new id
  open(id)     -> the stored session, or SessionInitError when the id is
                  malformed, unknown, expired, or the database fails
  delete(s)    -> row removed; idempotent
  purge_expired() -> drop sessions idle for longer than ttl_seconds

Values must be JSON-serializable. The reserved key "_session_id" holds the
session's own id and cannot be overwritten.

Concurrency: two requests writing the same session id race at the database;
SQLite WAL mode serializes the writes and the last one wins.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import time
from collections.abc import Iterator, MutableMapping
from typing import Any

from sqlalchemy import Column, Float, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.db import make_engine
from auth.errors import SessionInitError

logger = logging.getLogger("tiergate.auth.sessions")

SESSION_ID_KEY = "_session_id"
_SESSION_ID_RE = re.compile(r"^[0-9a-f]{32}$")
_DEFAULT_TTL = 60 * 60 * 24  # 24 hours in seconds

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("data", Text, nullable=False),  # JSON object
    Column("created_at", Float, nullable=False),
    Column("updated_at", Float, nullable=False),
)


class Session(MutableMapping):
    """A live session mapping bound to its store.

    Reading "_session_id" returns the id; the key also shows up when the
    session is iterated so templates can render it like any other value.
    """

    def __init__(self, store: SessionStore, session_id: str, data: dict[str, Any]) -> None:
        self._store = store
        self._id = session_id
        self._data = {k: v for k, v in data.items() if k != SESSION_ID_KEY}
        self.deleted = False

    @property
    def id(self) -> str:
        return self._id

    def __getitem__(self, key: str) -> Any:
        if key == SESSION_ID_KEY:
            return self._id
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if key == SESSION_ID_KEY:
            raise KeyError(f"{SESSION_ID_KEY} is reserved")
        self._data[key] = value
        self._store.save(self)

    def __delitem__(self, key: str) -> None:
        if key == SESSION_ID_KEY:
            raise KeyError(f"{SESSION_ID_KEY} is reserved")
        del self._data[key]
        self._store.save(self)

    def __iter__(self) -> Iterator[str]:
        yield SESSION_ID_KEY
        yield from self._data

    def __len__(self) -> int:
        return len(self._data) + 1

    def to_dict(self) -> dict[str, Any]:
        """Stored payload without the reserved id key."""
        return dict(self._data)

    def __repr__(self) -> str:
        return f"Session(id={self._id!r}, keys={sorted(self._data)!r})"


class SessionStore:
    """Repository for Session rows.

    Usage:
        store = SessionStore("sqlite:///sessions.db", ttl_seconds=3600)
        session = store.open()          # new
        session["uid"] = 42             # persisted
        again = store.open(session.id)  # same data
        store.delete(again)
    """

    def __init__(self, db_url: str, ttl_seconds: int = _DEFAULT_TTL) -> None:
        self.ttl_seconds = ttl_seconds
        self.engine: Engine = make_engine(db_url, _metadata)

    def open(self, session_id: str | None = None) -> Session:
        """Return the live session for session_id, creating one when it is None."""
        if session_id is None:
            return self._create()
        if not _SESSION_ID_RE.match(session_id):
            raise SessionInitError("Malformed session id")

        now = time.time()
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
                if row is not None and not self._expired(row.updated_at, now):
                    conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(updated_at=now))
                    conn.commit()
        except SQLAlchemyError as exc:
            raise SessionInitError("Session store unavailable", cause=exc) from exc

        if row is None:
            raise SessionInitError(f"Session {session_id} does not exist")
        if self._expired(row.updated_at, now):
            self._delete_id(session_id)
            raise SessionInitError(f"Session {session_id} has expired")
        try:
            data = json.loads(row.data)
        except ValueError as exc:
            raise SessionInitError(f"Session {session_id} is corrupt", cause=exc) from exc
        if not isinstance(data, dict):
            raise SessionInitError(f"Session {session_id} is corrupt")
        return Session(self, row.id, data)

    def save(self, session: Session) -> None:
        if session.deleted:
            raise SessionInitError(f"Session {session.id} was deleted")
        try:
            payload = json.dumps(session.to_dict())
        except TypeError as exc:
            raise SessionInitError("Session values must be JSON-serializable", cause=exc) from exc
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _sessions.update()
                    .where(_sessions.c.id == session.id)
                    .values(data=payload, updated_at=time.time())
                )
                conn.commit()
        except SQLAlchemyError as exc:
            raise SessionInitError("Session store unavailable", cause=exc) from exc

    def delete(self, session: MutableMapping[str, Any]) -> None:
        session_id = session[SESSION_ID_KEY]
        self._delete_id(session_id)
        if isinstance(session, Session):
            session.deleted = True

    def purge_expired(self) -> int:
        """Delete all sessions idle longer than TTL. Returns number of rows removed."""
        if not self.ttl_seconds:
            return 0
        cutoff = time.time() - self.ttl_seconds
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.updated_at < cutoff))
            conn.commit()
        return result.rowcount

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_sessions)).scalar() or 0

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create(self) -> Session:
        now = time.time()
        session_id = secrets.token_hex(16)
        try:
            with self.engine.connect() as conn:
                conn.execute(_sessions.insert().values(id=session_id, data="{}", created_at=now, updated_at=now))
                conn.commit()
        except SQLAlchemyError as exc:
            raise SessionInitError("Session store unavailable", cause=exc) from exc
        logger.debug("Created session %s", session_id)
        return Session(self, session_id, {})

    def _delete_id(self, session_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()

    def _expired(self, updated_at: float, now: float) -> bool:
        return bool(self.ttl_seconds) and now - updated_at > self.ttl_seconds
