"""
tests/conftest.py -- Shared test fixtures for TierGate.

This module provides:
  - user_store / session_store: isolated in-memory stores for unit tests
  - auth_config / make_auth: an AuthConfig over those stores and an
    AuthSession factory
  - app_client: module-scoped TestClient over the full ASGI app (api + web)
    with a patched lifespan wiring in shared-memory test stores
  - client: the same TestClient with its cookie jar cleared for each test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for app_client because TestClient runs sync route handlers in a thread
pool. Plain :memory: DBs are per-connection and would present a blank schema
to each worker thread.

DEBUG must be set before any core/auth import so get_settings() generates a
SECRET_KEY instead of raising. ALLOWED_HOSTS must include TestClient's
default "testserver" host.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any core/auth import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth.models import User
from auth.passwords import hash_password
from auth.session import AuthConfig, AuthSession
from auth.session_store import SessionStore
from auth.store import UserStore
from auth.tickets import TicketCodec

TEST_SECRET = "x" * 48

# Rate limits share one in-memory counter across every test module.
limiter.enabled = False

# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    """In-memory UserStore with two active users and one inactive user.

      alice / alicepass123 (member, alice@example.com)
      root  / rootpass1234 (admin)
      ghost / ghostpass123 (inactive)
    """
    store = UserStore("sqlite:///:memory:")
    store.create_user(
        User(username="alice", email="alice@example.com", hashed_password=hash_password("alicepass123"))
    )
    store.create_user(User(username="root", role="admin", hashed_password=hash_password("rootpass1234")))
    store.create_user(User(username="ghost", hashed_password=hash_password("ghostpass123"), is_active=False))
    yield store
    store.close()


@pytest.fixture
def session_store() -> Generator[SessionStore, None, None]:
    store = SessionStore("sqlite:///:memory:", ttl_seconds=3600)
    yield store
    store.close()


@pytest.fixture
def auth_config(user_store: UserStore, session_store: SessionStore) -> AuthConfig:
    return AuthConfig(
        user_directory=user_store,
        session_store=session_store,
        tickets=TicketCodec(TEST_SECRET),
    )


@pytest.fixture
def make_auth(auth_config: AuthConfig):
    """Return a factory building an AuthSession over auth_config."""

    def _make(params=None, cookies=None, session_id=None, config=None) -> AuthSession:
        return AuthSession(config or auth_config, cookies=cookies, params=params, session_id=session_id)

    return _make


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, SessionStore]:
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    session_url = f"sqlite:///file:test_sessions_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(auth_url), SessionStore(session_url, ttl_seconds=3600)


def _patch_lifespan(user_store: UserStore, session_store: SessionStore, **config_overrides):
    """Return an async context manager that replaces the real lifespan.

    config_overrides are extra AuthConfig fields (e.g. error handlers).

    The purge_task is a long-sleeping coroutine so shutdown's .cancel() has a
    real asyncio.Task to act on.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.auth_config = AuthConfig(
            user_directory=user_store,
            session_store=session_store,
            tickets=TicketCodec(TEST_SECRET),
            **config_overrides,
        )
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def app_client(request) -> Generator[tuple[TestClient, UserStore, SessionStore], None, None]:
    """Yield (client, user_store, session_store) over the full ASGI app.

    Users: admin / adminpass123 (admin), alice / alicepass123 (member).
    follow_redirects=False so tests can assert on redirect locations.
    A test module can set AUTH_CONFIG_OVERRIDES (a dict of AuthConfig fields)
    to run the app with, for example, error handlers installed.
    """
    user_store, session_store = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])
    if user_store.get_by_username("admin") is None:
        user_store.create_user(User(username="admin", role="admin", hashed_password=hash_password("adminpass123")))
        user_store.create_user(
            User(username="alice", email="alice@example.com", hashed_password=hash_password("alicepass123"))
        )

    overrides = getattr(request.module, "AUTH_CONFIG_OVERRIDES", {})
    app.router.lifespan_context = _patch_lifespan(user_store, session_store, **overrides)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, user_store, session_store

    user_store.close()
    session_store.close()


@pytest.fixture
def client(app_client) -> TestClient:
    """The module's TestClient with an empty cookie jar."""
    test_client, _, _ = app_client
    test_client.cookies.clear()
    return test_client
