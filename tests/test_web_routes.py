"""
tests/test_web_routes.py -- Integration tests for the server-rendered tiers.

Covers:
  - GET / renders for anonymous visitors and shows the bound uid after login
  - POST /login: bad credentials re-render the form with login_error,
    good credentials redirect to a safe ?next target
  - GET /members renders the login form until the session carries a uid
  - POST /logout drops the session and redirects to /login
  - /vault: credentials mint a ticket into the hidden field, the ticket
    reauthorizes the next POST, an invalid ticket shows the login form
"""

from __future__ import annotations

import re

ALICE = {"user": "alice", "password": "alicepass123"}

_TICKET_RE = re.compile(r'name="ticket" value="([0-9a-f]+)"')


def _ticket_from(html: str) -> str:
    match = _TICKET_RE.search(html)
    assert match, "vault page did not embed a ticket"
    return match.group(1)


class TestPublicPages:
    def test_index_anonymous(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert "browsing anonymously" in resp.text
        assert f"Session {client.cookies['sessionid']}" in resp.text

    def test_login_form_fields(self, client):
        resp = client.get("/login", params={"next": "/members"})
        assert resp.status_code == 200
        assert 'name="user"' in resp.text
        assert 'name="password"' in resp.text
        assert 'value="/members"' in resp.text


class TestLoginFlow:
    def test_bad_credentials_rerender_form(self, client):
        resp = client.post("/login", data={"user": "alice", "password": "wrong"})
        assert resp.status_code == 200
        assert "Bad username or password" in resp.text

    def test_empty_form_shows_no_error(self, client):
        resp = client.post("/login", data={})
        assert resp.status_code == 200
        assert "Bad username or password" not in resp.text

    def test_good_credentials_redirect_to_next(self, client):
        resp = client.post("/login", data={**ALICE, "next": "/members"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/members"
        assert resp.headers["cache-control"] == "no-store"

        members = client.get("/members")
        assert members.status_code == 200
        assert "Hello alice" in members.text

    def test_offsite_next_is_ignored(self, client):
        resp = client.post("/login", data={**ALICE, "next": "//evil.example"})
        assert resp.headers["location"] == "/"

    def test_index_shows_bound_uid_after_login(self, client):
        client.post("/login", data=ALICE)
        assert "bound to user #" in client.get("/").text

    def test_members_requires_login(self, client):
        resp = client.get("/members")
        assert resp.status_code == 200
        assert "Log in" in resp.text
        assert "Hello alice" not in resp.text

    def test_logout_redirects_and_forgets_user(self, client):
        client.post("/login", data=ALICE)
        resp = client.post("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert "Hello alice" not in client.get("/members").text


class TestVault:
    def test_vault_form(self, client):
        resp = client.get("/vault")
        assert resp.status_code == 200
        assert 'action="/vault"' in resp.text

    def test_credentials_mint_ticket_then_ticket_reauthorizes(self, client):
        first = client.post("/vault", data=ALICE)
        assert first.status_code == 200
        assert first.headers["cache-control"] == "no-store"
        ticket = _ticket_from(first.text)

        client.cookies.clear()
        second = client.post("/vault", data={"ticket": ticket, "note": "hello"})
        assert second.status_code == 200
        assert "Recorded: hello" in second.text
        assert _ticket_from(second.text) == ticket

    def test_vault_post_without_ticket_or_credentials(self, client):
        resp = client.post("/vault", data={"note": "hello"})
        assert resp.status_code == 200
        assert "Recorded" not in resp.text
        assert 'action="/vault"' in resp.text

    def test_invalid_ticket_shows_error(self, client):
        resp = client.post("/vault", data={"ticket": "deadbeef", "note": "hello"})
        assert resp.status_code == 200
        assert "Invalid ticket" in resp.text
        assert "Recorded" not in resp.text

    def test_private_session_does_not_open_vault(self, client):
        """The restricted tier ignores a logged-in session: each POST needs a ticket."""
        client.post("/login", data=ALICE)
        resp = client.post("/vault", data={"note": "hello"})
        assert "Recorded" not in resp.text
