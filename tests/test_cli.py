"""Unit tests for main.py -- the operator CLI.

Covers:
- create-user with --password, duplicate usernames, short passwords
- create-user password prompt (matching and mismatching)
- list-users / delete-user output and exit codes
- purge-sessions removes idle sessions only
"""

import time

import pytest

import main
from auth.session_store import SessionStore, _sessions
from auth.store import UserStore
from core.config import get_settings


@pytest.fixture
def db_env(tmp_path, monkeypatch):
    """Point AUTH_DB_URL / SESSION_DB_URL at throwaway files for one test."""
    auth_url = f"sqlite:///{tmp_path / 'auth.db'}"
    session_url = f"sqlite:///{tmp_path / 'sessions.db'}"
    monkeypatch.setenv("AUTH_DB_URL", auth_url)
    monkeypatch.setenv("SESSION_DB_URL", session_url)
    get_settings.cache_clear()
    yield auth_url, session_url
    get_settings.cache_clear()


class TestCreateUser:
    def test_create_with_password_flag(self, db_env, capsys):
        auth_url, _ = db_env
        rc = main.main(["create-user", "alice", "--email", "alice@example.com", "--password", "alicepass123"])
        assert rc == 0
        assert "Created user #1 'alice' (member)" in capsys.readouterr().out

        store = UserStore(auth_url)
        assert store.search(user="alice", password="alicepass123")
        store.close()

    def test_duplicate_username(self, db_env, capsys):
        main.main(["create-user", "alice", "--password", "alicepass123"])
        assert main.main(["create-user", "alice", "--password", "alicepass123"]) == 1
        assert "already exists" in capsys.readouterr().out

    def test_short_password(self, db_env, capsys):
        assert main.main(["create-user", "alice", "--password", "short"]) == 1
        assert "at least 8" in capsys.readouterr().out

    def test_prompted_password(self, db_env, monkeypatch):
        monkeypatch.setattr(main.getpass, "getpass", lambda prompt: "promptpass123")
        assert main.main(["create-user", "bob", "--role", "admin"]) == 0
        store = UserStore(db_env[0])
        [bob] = store.search(user="bob", password="promptpass123")
        assert bob.role == "admin"
        store.close()

    def test_prompted_password_mismatch(self, db_env, monkeypatch, capsys):
        answers = iter(["first-password", "second-password"])
        monkeypatch.setattr(main.getpass, "getpass", lambda prompt: next(answers))
        assert main.main(["create-user", "bob"]) == 1
        assert "do not match" in capsys.readouterr().out


class TestListAndDelete:
    def test_list_empty(self, db_env, capsys):
        assert main.main(["list-users"]) == 0
        assert "No users." in capsys.readouterr().out

    def test_list_then_delete(self, db_env, capsys):
        main.main(["create-user", "alice", "--password", "alicepass123"])
        capsys.readouterr()

        assert main.main(["list-users"]) == 0
        assert "alice" in capsys.readouterr().out

        assert main.main(["delete-user", "1"]) == 0
        assert main.main(["delete-user", "1"]) == 1
        assert "No user with id 1" in capsys.readouterr().out

    def test_no_command_prints_help(self, db_env, capsys):
        assert main.main([]) == 0
        assert "create-user" in capsys.readouterr().out


def test_purge_sessions(db_env, capsys):
    _, session_url = db_env
    store = SessionStore(session_url, ttl_seconds=get_settings().session_ttl_seconds)
    idle = store.open()
    store.open()
    with store.engine.connect() as conn:
        conn.execute(_sessions.update().where(_sessions.c.id == idle.id).values(updated_at=time.time() - 10**7))
        conn.commit()
    store.close()

    assert main.main(["purge-sessions"]) == 0
    assert "Purged 1 expired session(s); 1 remaining." in capsys.readouterr().out
