"""
api/routes/v1/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST   /api/v1/auth/login        -- private tier login; sets the session cookie
  POST   /api/v1/auth/logout       -- deletes the session; expires the cookie
  GET    /api/v1/auth/session      -- public tier; current session id and uid
  GET    /api/v1/auth/me           -- current user info (private tier)
  POST   /api/v1/auth/ticket       -- restricted tier; issue or verify a ticket
  GET    /api/v1/auth/users        -- list all users (admin only)
  POST   /api/v1/auth/users        -- create user (admin only)
  DELETE /api/v1/auth/users/{id}   -- delete user (admin only)

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit).
  Cache-Control: no-store on responses that carry credentials or tickets.
  Wrong username and wrong password produce the same error.

Cookies are never set here directly: AuthSession queues them and the
bake_auth_cookies middleware in api/main.py writes them onto the response.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    LoginRequest,
    MeResponse,
    SessionResponse,
    TicketRequest,
    TicketResponse,
    UserCreate,
    UserResponse,
)
from auth.dependencies import get_auth_session, require_admin, require_private, require_public
from auth.models import User
from auth.passwords import hash_password
from auth.session import AuthSession
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("tiergate.api.auth")

# Auth policy:
# - POST   /auth/login:        public -- the login endpoint runs the private tier itself
# - POST   /auth/logout:       public -- ending a session needs no prior auth
# - GET    /auth/session:      public tier (require_public)
# - GET    /auth/me:           private tier (require_private)
# - POST   /auth/ticket:       restricted tier, run inline to map the body onto params
# - GET/POST/DELETE /auth/users: admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@limiter.limit(get_settings().login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=MeResponse)
def login(
    request: Request,
    body: LoginRequest,
    auth: AuthSession = Depends(get_auth_session),
) -> JSONResponse:
    """Authenticate with user and password and bind the identity to the session.

    A session that already carries a uid keeps it: the response then names
    the identity already logged in, whatever the body says.
    """
    cfg = auth.config
    auth.params.update({cfg.user_field: body.user, cfg.password_field: body.password})
    result = auth.private()
    if not result or auth.user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Bad username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    if result.credentials is not None:
        user_store: UserStore = request.app.state.user_store
        user_store.update_last_login(auth.user.id)
        logger.info("User %r logged in (session %s)", auth.user.username, auth.session_id)

    resp = JSONResponse(status_code=200, content=_me(auth.user).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
def logout(auth: AuthSession = Depends(get_auth_session)) -> dict:
    """Delete the server-side session and expire the cookie."""
    auth.logout()
    return {"message": "Logged out."}


@router.get("/auth/session", response_model=SessionResponse)
def session_info(auth: AuthSession = Depends(require_public)) -> SessionResponse:
    """Return the id of the session bound to this request and its uid, if any."""
    return SessionResponse(session_id=auth.session_id, uid=auth.session.get("uid"))


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(require_private)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return _me(current_user)


@router.post("/auth/ticket", response_model=TicketResponse)
def ticket(body: TicketRequest, auth: AuthSession = Depends(get_auth_session)) -> JSONResponse:
    """Restricted tier: verify the ticket in the body, or mint one from user/password.

    A verified ticket is returned unchanged; tickets are not rotated.
    """
    cfg = auth.config
    if body.ticket:
        auth.params["ticket"] = body.ticket
    if body.user is not None:
        auth.params[cfg.user_field] = body.user
    if body.password is not None:
        auth.params[cfg.password_field] = body.password

    result = auth.restricted()
    if not result or auth.user is None:
        raise HTTPException(
            status_code=401,
            detail={
                "code": "unauthorized",
                "message": auth.template_args.get("login_error") or "Credentials or ticket required.",
            },
        )
    resp = JSONResponse(
        content=TicketResponse(
            ticket=auth.template_args["ticket"],
            user_id=auth.user.id,
            username=auth.user.username,
        ).model_dump()
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: User = Depends(require_admin)) -> list[UserResponse]:
    """List all user accounts. Admin only."""
    user_store: UserStore = request.app.state.user_store
    return [_user_to_response(u) for u in user_store.list_users()]


@router.post("/auth/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Create a new user account. Admin only."""
    user_store: UserStore = request.app.state.user_store
    new_user = User(
        username=body.username,
        email=body.email,
        role=body.role.value,
        hashed_password=hash_password(body.password),
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that username or email already exists."},
        ) from exc
    logger.info("Admin %r created user %r", current_user.username, body.username)
    return _user_to_response(user_store.retrieve(user_id))


@router.delete("/auth/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> Response:
    """Delete a user account. Admin only; admins cannot delete themselves."""
    if user_id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deletion", "message": "You cannot delete your own account."},
        )
    user_store: UserStore = request.app.state.user_store
    if not user_store.delete_user(user_id):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _me(user: User) -> MeResponse:
    return MeResponse(user_id=user.id, username=user.username, email=user.email, role=user.role)


def _user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
        is_active=user.is_active,
        created_at=user.created_at or "",
        last_login=user.last_login,
    )
