"""Unit tests for auth/session_store.py -- server-side session storage.

Covers:
- open() without an id creates a session with a fresh 32-hex id
- writes through the Session mapping are persisted and visible on reopen
- malformed, unknown and expired ids raise SessionInitError
- database failures surface as SessionInitError, not SQLAlchemyError
- delete() is idempotent and a deleted session refuses further writes
- purge_expired() drops only idle sessions
"""

import time
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import SessionError, SessionInitError
from auth.session_store import SESSION_ID_KEY, SessionStore, _sessions


def _age(store: SessionStore, session_id: str, seconds: float) -> None:
    """Move a session's updated_at into the past."""
    with store.engine.connect() as conn:
        conn.execute(
            _sessions.update().where(_sessions.c.id == session_id).values(updated_at=time.time() - seconds)
        )
        conn.commit()


class TestOpen:
    def test_open_without_id_creates_session(self, session_store):
        session = session_store.open()
        assert len(session.id) == 32
        assert session[SESSION_ID_KEY] == session.id
        assert session_store.count() == 1

    def test_two_new_sessions_get_distinct_ids(self, session_store):
        assert session_store.open().id != session_store.open().id

    def test_reopen_returns_persisted_values(self, session_store):
        session = session_store.open()
        session["uid"] = 7
        session["cart"] = ["a", "b"]

        again = session_store.open(session.id)
        assert again["uid"] == 7
        assert again["cart"] == ["a", "b"]

    def test_delete_key_is_persisted(self, session_store):
        session = session_store.open()
        session["uid"] = 7
        del session["uid"]
        assert "uid" not in session_store.open(session.id)

    @pytest.mark.parametrize("bad_id", ["", "abc", "Z" * 32, "../" + "0" * 29, "0" * 33])
    def test_malformed_id_rejected(self, session_store, bad_id):
        with pytest.raises(SessionInitError, match="Malformed"):
            session_store.open(bad_id)

    def test_unknown_id_rejected(self, session_store):
        with pytest.raises(SessionInitError, match="does not exist"):
            session_store.open("0" * 32)

    def test_expired_session_rejected_and_removed(self, session_store):
        session = session_store.open()
        _age(session_store, session.id, session_store.ttl_seconds + 10)

        with pytest.raises(SessionInitError, match="expired"):
            session_store.open(session.id)
        assert session_store.count() == 0

    def test_zero_ttl_never_expires(self):
        store = SessionStore("sqlite:///:memory:", ttl_seconds=0)
        session = store.open()
        _age(store, session.id, 10 * 365 * 24 * 3600)
        assert store.open(session.id).id == session.id
        store.close()

    def test_database_error_becomes_session_init_error(self, session_store):
        """A failing engine must not leak SQLAlchemy exceptions to callers."""
        session_id = session_store.open().id
        session_store.engine = MagicMock()
        session_store.engine.connect.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))

        with pytest.raises(SessionInitError, match="unavailable") as excinfo:
            session_store.open(session_id)
        assert isinstance(excinfo.value.cause, OperationalError)

    def test_session_error_alias(self):
        assert SessionError is SessionInitError


class TestSessionMapping:
    def test_reserved_key_cannot_be_written(self, session_store):
        session = session_store.open()
        with pytest.raises(KeyError):
            session[SESSION_ID_KEY] = "f" * 32
        with pytest.raises(KeyError):
            del session[SESSION_ID_KEY]

    def test_iteration_includes_session_id(self, session_store):
        session = session_store.open()
        session["uid"] = 1
        assert list(session) == [SESSION_ID_KEY, "uid"]
        assert len(session) == 2
        assert session.to_dict() == {"uid": 1}

    def test_non_json_value_rejected(self, session_store):
        session = session_store.open()
        with pytest.raises(SessionInitError, match="JSON"):
            session["when"] = object()


class TestDeleteAndPurge:
    def test_delete_removes_row(self, session_store):
        session = session_store.open()
        session_store.delete(session)
        assert session_store.count() == 0
        with pytest.raises(SessionInitError):
            session_store.open(session.id)

    def test_delete_is_idempotent(self, session_store):
        session = session_store.open()
        session_store.delete(session)
        session_store.delete(session)
        assert session_store.count() == 0

    def test_write_after_delete_rejected(self, session_store):
        session = session_store.open()
        session_store.delete(session)
        with pytest.raises(SessionInitError, match="deleted"):
            session["uid"] = 1

    def test_purge_removes_only_idle_sessions(self, session_store):
        idle = session_store.open()
        fresh = session_store.open()
        _age(session_store, idle.id, session_store.ttl_seconds + 10)

        assert session_store.purge_expired() == 1
        assert session_store.count() == 1
        assert session_store.open(fresh.id).id == fresh.id
