"""
auth/session.py -- Tiered request authentication (AuthSession).

Three security tiers:

        public: no authentication, only session management
       private: authenticate once, go everywhere (uid kept in the session)
    restricted: authenticate and reauthorize with a ticket on every request

One AuthSession is built per request. It reads cookies and form params from
the request, talks to the injected collaborators in AuthConfig, and collects
its outputs in two places:

  template_args -- session, session_id, ticket, login_error for rendering
  cookie_writes -- queued cookie mutations, applied by bake(response)

Failure model:
  Every operation returns an AuthResult (truthy on success). Bad credentials,
  invalid tickets and session store failures are recoverable: without a
  handler they come back as a falsy result for the caller to branch on (e.g.
  render the login page). When the application registered a handler for the
  kind (login_exception_handler / session_exception_handler) the typed error
  is handed to it. A truthy return recovers; a falsy return re-raises the
  error, which aborts the request.

Layer rule: no imports from api/ or web/. core/ is imported for type hints only.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from auth.errors import AuthError, InvalidTicket, LoginError, SessionInitError
from auth.models import AuthResult, CookieWrite, Credentials, FailureKind, SessionBackend, Tier, User, UserDirectory
from auth.session_store import SESSION_ID_KEY
from auth.tickets import TicketCodec

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from core.config import Settings

logger = logging.getLogger("tiergate.auth")

BAD_CREDENTIALS = "Bad username or password"
INVALID_TICKET = "Invalid ticket"
UNKNOWN_USER = "Unknown user"
TICKET_FIELD = "ticket"

ErrorHandler = Callable[["AuthSession", AuthError], bool]


@dataclass
class AuthConfig:
    """Per-application authentication configuration.

    user_directory and session_store are the implementations the application
    chose at startup (the store's constructor arguments are its session_args).
    cookie_expiry is a Max-Age in seconds; None gives a browser-session cookie.
    """

    user_directory: UserDirectory
    session_store: SessionBackend
    tickets: TicketCodec
    user_field: str = "user"
    password_field: str = "password"
    cookie_name: str = "sessionid"
    cookie_expiry: int | None = None
    cookie_path: str = "/"
    secure_cookies: bool = False
    login_exception_handler: ErrorHandler | None = None
    session_exception_handler: ErrorHandler | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        user_directory: UserDirectory,
        session_store: SessionBackend,
        **overrides: Any,
    ) -> AuthConfig:
        fields: dict[str, Any] = {
            "tickets": TicketCodec(settings.secret_key, settings.ticket_ttl_seconds),
            "user_field": settings.user_field,
            "password_field": settings.password_field,
            "cookie_name": settings.cookie_name,
            "cookie_expiry": settings.cookie_expiry_seconds,
            "cookie_path": urlparse(settings.uri_base).path or "/",
            "secure_cookies": settings.secure_cookies,
        }
        fields.update(overrides)
        return cls(user_directory=user_directory, session_store=session_store, **fields)


class AuthSession:
    """Per-request authentication state.

    Usage (inside a route handler):
        auth = await AuthSession.from_request(request, config)
        if not auth.private():
            return templates.TemplateResponse(request, "login.html", auth.template_args)
    """

    def __init__(
        self,
        config: AuthConfig,
        *,
        cookies: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        session_id: str | None = None,
    ) -> None:
        self.config = config
        self.cookies: dict[str, str] = dict(cookies or {})
        self.params: dict[str, Any] = dict(params or {})
        self.session_id = session_id or None
        self.session: MutableMapping[str, Any] | None = None
        self.user: User | None = None
        self.template_args: dict[str, Any] = {}
        self.cookie_writes: list[CookieWrite] = []

    @classmethod
    async def from_request(
        cls,
        request: Request,
        config: AuthConfig,
        params: Mapping[str, Any] | None = None,
    ) -> AuthSession:
        """Build an AuthSession from a Starlette request.

        params merge the query string, any urlencoded/multipart form body, and
        the explicit params argument (last wins). The session_id query
        parameter carries the session for clients with cookies disabled.
        """
        merged: dict[str, Any] = dict(request.query_params)
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
            form = await request.form()
            merged.update({k: v for k, v in form.items() if isinstance(v, str)})
        if params:
            merged.update(params)
        session_id = request.path_params.get("session_id") or request.query_params.get("session_id")
        return cls(config, cookies=request.cookies, params=merged, session_id=session_id)

    # ------------------------------------------------------------------
    # Security tiers
    # ------------------------------------------------------------------

    def authenticate(self, tier: Tier | str) -> AuthResult:
        tier = Tier(tier)
        if tier is Tier.public:
            return self.public()
        if tier is Tier.private:
            return self.private()
        return self.restricted()

    def public(self) -> AuthResult:
        return self.login()

    def private(self) -> AuthResult:
        """Session plus a one-time credential check; the session uid carries it afterwards."""
        result = self.public()
        if not result:
            return result
        if self.session is None:
            # A session failure was recovered by the handler; there is nowhere to keep a uid.
            return AuthResult.failure(FailureKind.SESSION, "No session")

        checked: AuthResult | None = None
        if not self.session.get("uid"):
            checked = self.check_credentials()
            if not checked or checked.uid is None:
                return checked
            bound = self._bind_uid(checked.uid)
            if bound is not None:
                return bound

        uid = self.session["uid"]
        self.user = self.uid_to_user(uid)
        if self.user is None:
            logger.warning("Session %s refers to unknown uid %r", self.session_id, uid)
            self.template_args["login_error"] = UNKNOWN_USER
            return self._fail(FailureKind.LOGIN, LoginError(UNKNOWN_USER))
        return AuthResult.success(
            uid=uid,
            user=self.user,
            credentials=checked.credentials if checked is not None else None,
        )

    def restricted(self) -> AuthResult:
        """Session plus a ticket check on every request.

        The session result is not a precondition: tickets are self-contained,
        so a request whose session could not be opened may still pass.
        """
        self.public()
        return self.ticket()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def login(self) -> AuthResult:
        """Open (or create) the session for this request. Idempotent."""
        if self.session is not None:
            return AuthResult.success()

        cookie_session_id = self.cookies.get(self.config.cookie_name) or None
        try:
            session = self.config.session_store.open(cookie_session_id or self.session_id)
        except SessionInitError as exc:
            logger.warning("Session initialization failed: %s", exc.message)
            self._logout_cookie()
            return self._fail(FailureKind.SESSION, exc)

        self.session = session
        self.session_id = session[SESSION_ID_KEY]
        self.template_args["session_id"] = self.session_id
        self.template_args["session"] = session
        if self.session_id != cookie_session_id:
            self._login_cookie()
        return AuthResult.success()

    def logout(self) -> None:
        """Forget the user, delete the session and expire the cookie.

        A session that was never opened in this request is looked up from the
        cookie first so its row is deleted too; an unknown one is ignored.
        """
        self.user = None
        if self.session is None:
            known_id = self.cookies.get(self.config.cookie_name) or self.session_id
            if known_id:
                try:
                    self.session = self.config.session_store.open(known_id)
                except SessionInitError:
                    logger.debug("Logout without a live session (%s)", known_id)
        if self.session is not None:
            self.config.session_store.delete(self.session)
            logger.info("Session %s deleted", self.session_id or self.session[SESSION_ID_KEY])
        self.session = None
        self.session_id = None
        self.template_args.pop("session", None)
        self.template_args.pop("session_id", None)
        self._logout_cookie()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def check_credentials(self, user: str | None = None, password: str | None = None) -> AuthResult:
        """Search the user directory for a (user, password) pair.

        Without explicit arguments the pair comes from the configured form
        fields. A missing half fails quietly (FailureKind.NO_CREDENTIALS) --
        that is the first visit to a login page, not a failed login.
        """
        cfg = self.config
        # One explicit half does not pull the other half from the form.
        if user is None and password is None:
            user = self.params.get(cfg.user_field)
            password = self.params.get(cfg.password_field)
        if not (user and password):
            return AuthResult.failure(FailureKind.NO_CREDENTIALS)

        matches = cfg.user_directory.search(**{cfg.user_field: user, cfg.password_field: password})
        if not matches:
            self.template_args["login_error"] = BAD_CREDENTIALS
            logger.info("Login failed for %r", user)
            return self._fail(FailureKind.LOGIN, LoginError(BAD_CREDENTIALS))

        identity = matches[0]
        return AuthResult.success(
            uid=identity.id,
            user=identity,
            credentials=Credentials(user=user, password=password),
        )

    def uid_to_user(self, uid: int) -> User | None:
        return self.config.user_directory.retrieve(uid)

    def ticket(self) -> AuthResult:
        """Verify the incoming ticket, or issue one from form credentials.

        Verify: the ticket is echoed back unchanged in template_args.
        Issue: a fresh ticket is minted from the pair that just matched.
        """
        cfg = self.config
        raw = self.params.get(TICKET_FIELD)
        if raw:
            try:
                credentials = cfg.tickets.open(raw)
            except InvalidTicket as exc:
                self.template_args["login_error"] = INVALID_TICKET
                logger.info("Rejected ticket: %s", exc)
                return self._fail(FailureKind.LOGIN, LoginError(INVALID_TICKET, cause=exc))
            checked = self.check_credentials(credentials.user, credentials.password)
            if not checked or checked.uid is None:
                return checked
            if self.session is not None and not self.session.get("uid"):
                bound = self._bind_uid(checked.uid)
                if bound is not None and not bound:
                    return bound
            self.user = checked.user
            self.template_args["ticket"] = raw
            return checked

        checked = self.check_credentials()
        if not checked or checked.uid is None:
            return checked
        self.user = checked.user
        self.template_args["ticket"] = cfg.tickets.issue(checked.credentials)
        return checked

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    def bake(self, response: Response) -> Response:
        """Apply queued cookie writes to the outgoing response."""
        for write in self.cookie_writes:
            if write.delete:
                response.delete_cookie(
                    write.name,
                    path=write.path,
                    secure=self.config.secure_cookies,
                    httponly=True,
                    samesite="lax",
                )
            else:
                response.set_cookie(
                    write.name,
                    value=write.value,
                    max_age=write.max_age,
                    path=write.path,
                    secure=self.config.secure_cookies,
                    httponly=True,
                    samesite="lax",
                )
        self.cookie_writes.clear()
        return response

    def _login_cookie(self) -> None:
        self.cookie_writes.append(
            CookieWrite(
                name=self.config.cookie_name,
                value=self.session_id or "",
                path=self.config.cookie_path,
                max_age=self.config.cookie_expiry,
            )
        )

    def _logout_cookie(self) -> None:
        self.cookie_writes.append(CookieWrite(name=self.config.cookie_name, path=self.config.cookie_path, delete=True))

    # ------------------------------------------------------------------
    # Failure routing
    # ------------------------------------------------------------------

    def _bind_uid(self, uid: int) -> AuthResult | None:
        """Write uid into the session. None on success; a store failure goes through _fail."""
        try:
            self.session["uid"] = uid
        except SessionInitError as exc:
            logger.warning("Could not bind uid to session %s: %s", self.session_id, exc.message)
            return self._fail(FailureKind.SESSION, exc)
        return None

    def _fail(self, kind: FailureKind, error: AuthError) -> AuthResult:
        handlers = {
            FailureKind.LOGIN: self.config.login_exception_handler,
            FailureKind.SESSION: self.config.session_exception_handler,
        }
        handler = handlers.get(kind)
        if handler is None:
            return AuthResult.failure(kind, error.message)
        if handler(self, error):
            logger.info("%s failure recovered by handler: %s", kind.value, error.message)
            return AuthResult(ok=True, kind=kind, message=error.message, recovered=True)
        raise error
