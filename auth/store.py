"""
auth/store.py -- SQLAlchemy Core persistence layer for users (the user directory).

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. AuthSession talks to
it only through search() and retrieve(), the UserDirectory contract.

search() semantics:
  Criteria are keyword pairs such as search(user="alice", password="s3cret").
  Lookup fields are matched against columns via _LOOKUP_COLUMNS. Secret fields
  (the configured password field) are never matched in SQL -- they are
  verified with bcrypt against hashed_password after the lookup. When the
  lookup finds nobody, a dummy bcrypt check still runs so response time does
  not reveal whether the username exists.

Security:
  All queries use bound parameters. Column names come from the whitelist,
  never from caller input.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, select
from sqlalchemy.engine import Engine

from auth.db import make_engine
from auth.models import User
from auth.passwords import equalize_timing, verify_password

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), unique=True),
    Column("hashed_password", Text),
    Column("role", String(30), nullable=False, server_default="member"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

# Form/config field name -> users column. "user" is the default user_field.
_LOOKUP_COLUMNS: dict[str, str] = {
    "user": "username",
    "username": "username",
    "email": "email",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        store.create_user(User(username="alice", hashed_password=hash_password("secret")))
        [alice] = store.search(user="alice", password="secret")
        store.close()
    """

    _UPDATABLE_FIELDS: set = {"role", "is_active", "email", "hashed_password"}

    def __init__(self, db_url: str, secret_fields: Iterable[str] = ("password",)) -> None:
        self.secret_fields: frozenset[str] = frozenset(secret_fields)
        self.engine: Engine = make_engine(db_url, _metadata)

    # ------------------------------------------------------------------
    # UserDirectory contract
    # ------------------------------------------------------------------

    def search(self, **criteria: str) -> list[User]:
        """Return active users matching every criterion.

        Raises ValueError for a field that is neither a lookup field nor a
        secret field, and when only secret fields are given (that would
        bcrypt-check every row in the table).
        """
        unknown = set(criteria) - set(_LOOKUP_COLUMNS) - self.secret_fields
        if unknown:
            raise ValueError(f"Unknown search fields: {sorted(unknown)!r}")
        secrets = {k: v for k, v in criteria.items() if k in self.secret_fields}
        lookups = {k: v for k, v in criteria.items() if k not in self.secret_fields}
        if not lookups:
            raise ValueError("search() needs at least one lookup field")

        stmt = _users.select().where(_users.c.is_active == 1)
        for field, value in lookups.items():
            stmt = stmt.where(_users.c[_LOOKUP_COLUMNS[field]] == value)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_users.c.id)).fetchall()
        users = [_row_to_user(r) for r in rows]

        if not secrets:
            return users
        if not users:
            for value in secrets.values():
                equalize_timing(value)
            return []
        return [u for u in users if u.hashed_password and all(verify_password(v, u.hashed_password) for v in secrets.values())]

    def retrieve(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            first = conn.execute(select(_users.c.id).limit(1)).first()
        return first is not None

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, is_active, email, hashed_password. Unknown
        fields raise ValueError. Returns True if a row was updated.
        """
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Sessions that still carry this uid stop resolving to a user; the
        private tier then fails for them.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        created_at=row.created_at,
        last_login=row.last_login,
        is_active=bool(row.is_active),
    )
