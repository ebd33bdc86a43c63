"""
auth/models.py -- Domain dataclasses and collaborator interfaces for authentication.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and AuthSession do the work.

The two Protocols describe what AuthSession needs from its collaborators. The
application picks the implementations at startup and injects them through
AuthConfig -- nothing is looked up by class name at runtime.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


@dataclass
class User:
    """Represents an identity in the user directory.

    hashed_password is a bcrypt hash and is never compared directly -- the
    directory verifies the password criterion of search() with bcrypt.
    """

    username: str
    role: str = "member"  # "admin", "member"
    id: int | None = None
    email: str | None = None
    hashed_password: str | None = None
    created_at: str | None = None
    last_login: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class Credentials:
    """A transient (user, password) pair from form fields or a decoded ticket."""

    user: str
    password: str


class Tier(str, Enum):
    public = "public"
    private = "private"
    restricted = "restricted"


class FailureKind(str, Enum):
    NO_CREDENTIALS = "no_credentials"  # form fields absent; not an error signal
    LOGIN = "login"
    SESSION = "session"


@dataclass
class AuthResult:
    """Typed outcome of an AuthSession operation. Truthy iff ok.

    uid/user/credentials are filled in by check_credentials() on success so
    callers can see which identity and which raw pair matched.
    recovered is True when a registered error handler turned a failure into
    a success.
    """

    ok: bool
    kind: FailureKind | None = None
    message: str | None = None
    uid: int | None = None
    user: User | None = None
    credentials: Credentials | None = None
    recovered: bool = False

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, **fields: Any) -> AuthResult:
        return cls(ok=True, **fields)

    @classmethod
    def failure(cls, kind: FailureKind, message: str | None = None) -> AuthResult:
        return cls(ok=False, kind=kind, message=message)


@dataclass(frozen=True)
class CookieWrite:
    """A queued cookie mutation, applied to the response by AuthSession.bake()."""

    name: str
    value: str = ""
    path: str = "/"
    max_age: int | None = None
    delete: bool = False


class UserDirectory(Protocol):
    def search(self, **criteria: str) -> list[User]: ...

    def retrieve(self, user_id: int) -> User | None: ...


class SessionBackend(Protocol):
    def open(self, session_id: str | None = None) -> MutableMapping[str, Any]: ...

    def delete(self, session: MutableMapping[str, Any]) -> None: ...
