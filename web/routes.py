"""
web/routes.py -- Jinja2 template routes demonstrating the three security tiers.

These routes serve server-rendered HTML. They share app.state with the API
routes (same user directory, session store and AuthConfig) but return HTML
instead of JSON. Every handler takes the request's AuthSession from
get_auth_session(); the template context is the AuthSession's template_args
(session, session_id, ticket, login_error) plus the user.

Routes:
  GET  /          -- public tier: session only
  GET  /login     -- login form
  POST /login     -- private tier login, redirect to ?next
  POST /logout    -- delete session, redirect /login
  GET  /members   -- private tier; renders the login form when not logged in
  GET  /vault     -- restricted tier; login form that mints a ticket
  POST /vault     -- restricted tier; ticket (hidden field) or credentials
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import get_auth_session
from auth.session import AuthSession
from auth.store import UserStore

logger = logging.getLogger("tiergate.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths.

    /login?next=https://attacker.com and /login?next=//attacker.com would
    both redirect off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/"


def _render(request: Request, auth: AuthSession, name: str, **extra) -> HTMLResponse:
    context = {"user": auth.user, **auth.template_args, **extra}
    return templates.TemplateResponse(request, name, context)


def _login_page(request: Request, auth: AuthSession, action: str, next_url: str = "/") -> HTMLResponse:
    cfg = auth.config
    return _render(
        request,
        auth,
        "login.html",
        action=action,
        next_url=next_url,
        user_field=cfg.user_field,
        password_field=cfg.password_field,
    )


# ---------------------------------------------------------------------------
# Public tier
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(request: Request, auth: AuthSession = Depends(get_auth_session)) -> HTMLResponse:
    auth.public()
    return _render(request, auth, "index.html")


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request, auth: AuthSession = Depends(get_auth_session)) -> HTMLResponse:
    auth.public()
    return _login_page(request, auth, action="/login", next_url=_safe_next(auth.params.get("next")))


# ---------------------------------------------------------------------------
# Private tier
# ---------------------------------------------------------------------------


@router.post("/login", response_class=HTMLResponse)
def login_post(request: Request, auth: AuthSession = Depends(get_auth_session)) -> HTMLResponse:
    """Handle the login form. Failures re-render the form with login_error."""
    next_url = _safe_next(auth.params.get("next"))
    result = auth.private()
    if not result or auth.user is None:
        return _login_page(request, auth, action="/login", next_url=next_url)

    if result.credentials is not None:
        user_store: UserStore = request.app.state.user_store
        user_store.update_last_login(auth.user.id)
    resp = RedirectResponse(next_url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout")
def logout(auth: AuthSession = Depends(get_auth_session)) -> RedirectResponse:
    auth.logout()
    return RedirectResponse("/login", status_code=302)


@router.get("/members", response_class=HTMLResponse)
def members(request: Request, auth: AuthSession = Depends(get_auth_session)) -> HTMLResponse:
    auth.private()
    if auth.user is None:
        return _login_page(request, auth, action="/login", next_url="/members")
    return _render(request, auth, "members.html")


# ---------------------------------------------------------------------------
# Restricted tier
# ---------------------------------------------------------------------------


@router.get("/vault", response_class=HTMLResponse)
def vault_form(request: Request, auth: AuthSession = Depends(get_auth_session)) -> HTMLResponse:
    auth.public()
    return _login_page(request, auth, action="/vault", next_url="/vault")


@router.post("/vault", response_class=HTMLResponse)
def vault_post(request: Request, auth: AuthSession = Depends(get_auth_session)) -> HTMLResponse:
    """Every POST must carry a ticket or credentials; the page embeds the ticket for the next one."""
    auth.restricted()
    if auth.user is None:
        return _login_page(request, auth, action="/vault", next_url="/vault")
    note = (auth.params.get("note") or "").strip()
    if note:
        logger.info("Vault note recorded by %r", auth.user.username)
    resp = _render(request, auth, "vault.html", note=note)
    resp.headers["Cache-Control"] = "no-store"
    return resp
