"""
Session helpers: the session object, its middleware and the integrity checks
that run on every request (fingerprint, activity, idle timeout).
"""
from __future__ import annotations

import hashlib
import json
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from itsdangerous import BadSignature, Signer
from starlette.datastructures import MutableHeaders
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from serenity.core.config import Settings
from serenity.core.logging import get_logger
from serenity.repositories.sql_repository import SQLRepository
from serenity.services.session_store import DatabaseSessionStore, MemorySessionStore, SessionStore

logger = get_logger(__name__)

FINGERPRINT_KEY = "_fingerprint"
LAST_ACTIVITY_KEY = "last_activity"


@dataclass
class SessionCookie:
    path: str
    http_only: bool
    secure: bool
    same_site: str
    max_age_ms: int
    expires: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "originalMaxAge": self.max_age_ms,
            "expires": self.expires.isoformat().replace("+00:00", "Z"),
            "secure": self.secure,
            "httpOnly": self.http_only,
            "path": self.path,
            "sameSite": self.same_site,
        }


def _new_session_id() -> str:
    return secrets.token_urlsafe(24)


class Session(dict):
    """Dict-like session data plus its id and cookie settings."""

    def __init__(self, sid: str, data: Optional[dict[str, Any]] = None, *, cookie: SessionCookie, is_new: bool = False):
        super().__init__(data or {})
        self.id = sid
        self.cookie = cookie
        self.is_new = is_new
        self.destroyed = False
        self.previous_id: str | None = None
        self._snapshot: str | None = self._dump()

    def _dump(self) -> str:
        return json.dumps(self, sort_keys=True, default=str)

    @property
    def modified(self) -> bool:
        return self._snapshot is None or self._dump() != self._snapshot

    def regenerate(self, *, keep_data: bool = False) -> None:
        """Issue a fresh id; the old one is removed from the store on commit."""
        if self.previous_id is None and not self.is_new:
            self.previous_id = self.id
        self.id = _new_session_id()
        if not keep_data:
            self.clear()
        self._snapshot = None

    def destroy(self) -> None:
        self.clear()
        self.destroyed = True


class SessionMiddleware:
    """Loads the session named by the signed cookie and persists it on response start."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        store: SessionStore,
        secret: str,
        cookie_name: str = "serenity.sid",
        max_age_ms: int = 24 * 60 * 60 * 1000,
        secure: bool = False,
        same_site: str = "lax",
        path: str = "/",
    ) -> None:
        self.app = app
        self.store = store
        self.signer = Signer(secret, salt="serenity.session")
        self.cookie_name = cookie_name
        self.max_age_ms = max_age_ms
        self.secure = secure
        self.same_site = same_site
        self.path = path

    def _cookie_settings(self) -> SessionCookie:
        return SessionCookie(
            path=self.path,
            http_only=True,
            secure=self.secure,
            same_site=self.same_site,
            max_age_ms=self.max_age_ms,
            expires=datetime.now(timezone.utc) + timedelta(milliseconds=self.max_age_ms),
        )

    def _flags(self) -> str:
        flags = f"path={self.path}; httponly; samesite={self.same_site}"
        if self.secure:
            flags += "; secure"
        return flags

    def _set_cookie(self, sid: str) -> str:
        value = self.signer.sign(sid).decode("utf-8")
        return f"{self.cookie_name}={value}; Max-Age={self.max_age_ms // 1000}; {self._flags()}"

    def _expired_cookie(self) -> str:
        return f"{self.cookie_name}=null; expires=Thu, 01 Jan 1970 00:00:00 GMT; Max-Age=0; {self._flags()}"

    async def _load(self, raw_cookie: str | None) -> Session:
        if raw_cookie:
            try:
                sid = self.signer.unsign(raw_cookie).decode("utf-8")
            except BadSignature:
                sid = None
            if sid:
                data = await self.store.load(sid)
                if data is not None:
                    return Session(sid, data, cookie=self._cookie_settings())
        return Session(_new_session_id(), cookie=self._cookie_settings(), is_new=True)

    async def _commit(self, session: Session, had_cookie: bool, message: Message) -> None:
        headers = MutableHeaders(scope=message)
        if session.previous_id:
            await self.store.destroy(session.previous_id)
        if session.destroyed:
            await self.store.destroy(session.id)
            if had_cookie:
                headers.append("Set-Cookie", self._expired_cookie())
            return
        if not session:
            if not session.is_new and session.modified and session.previous_id is None:
                await self.store.destroy(session.id)
            if had_cookie and session.modified:
                headers.append("Set-Cookie", self._expired_cookie())
            return
        if session.modified:
            await self.store.save(session.id, dict(session), session.cookie.expires)
            headers.append("Set-Cookie", self._set_cookie(session.id))

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        raw_cookie = HTTPConnection(scope).cookies.get(self.cookie_name)
        session = await self._load(raw_cookie)
        scope["session"] = session

        if scope["type"] == "websocket":
            await self.app(scope, receive, send)
            return

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                await self._commit(session, bool(raw_cookie), message)
            await send(message)

        await self.app(scope, receive, send_wrapper)


def _fingerprint(request: HTTPConnection) -> str:
    agent = request.headers.get("user-agent", "")
    return hashlib.sha256(agent.encode("utf-8")).hexdigest()[:32]


class SessionSecurityMiddleware(BaseHTTPMiddleware):
    """Binds non-empty sessions to the client fingerprint and drops them on mismatch."""

    async def dispatch(self, request, call_next):
        session: Session = request.session
        current = _fingerprint(request)
        stored = session.get(FINGERPRINT_KEY)
        if stored is None:
            if session:
                session[FINGERPRINT_KEY] = current
        elif stored != current:
            logger.warning(
                "Session fingerprint mismatch; regenerating session",
                session_id=session.id,
                path=request.url.path,
            )
            session.regenerate()
            request.state.session_invalidated = "fingerprint"
        return await call_next(request)


class SessionActivityMiddleware(BaseHTTPMiddleware):
    """Refreshes ``last_activity``; the previous value stays on ``request.state``."""

    async def dispatch(self, request, call_next):
        session: Session = request.session
        request.state.previous_activity = session.get(LAST_ACTIVITY_KEY)
        if session:
            session[LAST_ACTIVITY_KEY] = time.time()
        return await call_next(request)


class IdleSessionTimeoutMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, *, idle_minutes: float) -> None:
        super().__init__(app)
        self.idle_seconds = idle_minutes * 60

    async def dispatch(self, request, call_next):
        previous = getattr(request.state, "previous_activity", None)
        request.state.session_expired = False
        if previous is not None and time.time() - float(previous) > self.idle_seconds:
            session: Session = request.session
            logger.info("Session expired after inactivity", session_id=session.id, idle_seconds=self.idle_seconds)
            session.regenerate()
            request.state.session_expired = True
        return await call_next(request)


class SessionManager:
    """Builds the session-related pipeline stages from settings."""

    def __init__(self, settings: Settings, repository: SQLRepository | None = None) -> None:
        self.settings = settings
        self.repository = repository
        self.store: SessionStore | None = None

    def create_store(self, *, use_database: bool) -> SessionStore:
        if use_database:
            if self.repository is None:
                raise RuntimeError("A repository is required for the database session store")
            return DatabaseSessionStore(self.repository)
        return MemorySessionStore()

    async def purge_expired(self) -> int:
        """Drop sessions that expired while the process was down."""
        if self.store is None:
            return 0
        removed = await self.store.purge_expired()
        logger.info("Expired sessions purged", removed=removed)
        return removed

    def create_session_middleware(self, *, use_database: bool, secure: bool) -> Middleware:
        self.store = self.create_store(use_database=use_database)
        logger.info("Session store configured", store="database" if use_database else "memory", secure=secure)
        return Middleware(
            SessionMiddleware,
            store=self.store,
            secret=self.settings.session_secret,
            cookie_name=self.settings.session_name,
            max_age_ms=self.settings.session_max_age_ms,
            secure=secure,
        )

    def create_session_security_middleware(self) -> Middleware:
        return Middleware(SessionSecurityMiddleware)

    def create_session_activity_middleware(self) -> Middleware:
        return Middleware(SessionActivityMiddleware)

    def create_idle_session_timeout_middleware(self, idle_minutes: float) -> Middleware:
        return Middleware(IdleSessionTimeoutMiddleware, idle_minutes=idle_minutes)
