"""
auth/dependencies.py -- FastAPI Depends() helpers for tiered authentication.

get_auth_session() builds the per-request AuthSession and parks it on
request.state.auth. FastAPI caches dependencies per request, so a route and
its sub-dependencies all see the same instance. The bake_auth_cookies
middleware in api/main.py applies the queued cookie writes to whatever
response the route (or an exception handler) produced.

require_public / require_private run the matching tier and raise HTTP 401 on
failure. require_admin() wraps require_private() and raises HTTP 403 for
non-admin users. The restricted tier runs inline in its routes, which first
map the request body onto params.

Layer rule: no imports from web/ or core/.
  auth/dependencies.py may import from fastapi because it is part of the
  FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.models import AuthResult, User
from auth.session import AuthConfig, AuthSession


def get_auth_config(request: Request) -> AuthConfig:
    return request.app.state.auth_config


async def get_auth_session(request: Request) -> AuthSession:
    """Build the AuthSession for this request (no authentication yet)."""
    auth = await AuthSession.from_request(request, get_auth_config(request))
    request.state.auth = auth
    return auth


def _unauthorized(auth: AuthSession, result: AuthResult) -> HTTPException:
    message = auth.template_args.get("login_error") or "Authentication required."
    return HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": message},
    )


def require_public(auth: AuthSession = Depends(get_auth_session)) -> AuthSession:
    """Require a working session. Raises HTTP 401 if the session store refused it."""
    result = auth.public()
    if not result:
        raise _unauthorized(auth, result)
    return auth


def require_private(auth: AuthSession = Depends(get_auth_session)) -> User:
    """Require a logged-in user (session uid or form credentials).

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(require_private)): ...
    """
    result = auth.private()
    if not result or auth.user is None:
        raise _unauthorized(auth, result)
    return auth.user


def require_admin(user: User = Depends(require_private)) -> User:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    if user.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
