"""
API request and response models for TierGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    member = "member"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    The field names are transport names; the route maps them onto the
    configured user_field / password_field before the credential check.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    user: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class TicketRequest(BaseModel):
    """Request body for POST /api/v1/auth/ticket.

    Either a ticket (verify) or a user/password pair (issue).
    """

    ticket: Optional[str] = Field(default=None, max_length=4096)
    user: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)


class MeResponse(BaseModel):
    """Identity of the authenticated user."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    email: Optional[str] = None
    role: str


class TicketResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticket: str
    user_id: int
    username: str


class SessionResponse(BaseModel):
    """Response for GET /api/v1/auth/session."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    uid: Optional[int] = None


# ---------------------------------------------------------------------------
# User management
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=8, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    role: RoleEnum = RoleEnum.member


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: Optional[str] = None
    role: str
    is_active: bool
    created_at: str
    last_login: Optional[str] = None
