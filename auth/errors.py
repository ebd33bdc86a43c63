"""
auth/errors.py -- Typed error signals raised by the authentication layer.

LoginError and SessionInitError are the two recoverable failure kinds. By
default AuthSession reports them as a falsy AuthResult; they are only raised
when the application registered a handler for the kind and that handler
declined to recover. api/main.py maps escalated errors to HTTP responses.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication failures."""

    code = "auth_error"

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class LoginError(AuthError):
    """Bad username or password, or an invalid ticket."""

    code = "login_failed"


class SessionInitError(AuthError):
    """The session store could not open or create the session."""

    code = "session_unavailable"


SessionError = SessionInitError


class InvalidTicket(ValueError):
    """A ticket could not be decoded into a (user, password) pair."""
