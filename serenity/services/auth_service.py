"""
Authentication bootstrap.

Strategies are registered on an ``Authenticator``; ``initialize`` validates
them and installs Starlette's ``AuthenticationMiddleware`` (session backed)
followed by a stage that publishes the identity into the per-request
rendering context.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from fastapi import FastAPI, Request
from starlette.authentication import AuthCredentials, AuthenticationBackend, AuthenticationError as StarletteAuthError, BaseUser
from starlette.concurrency import run_in_threadpool
from starlette.middleware import Middleware
from starlette.middleware.authentication import AuthenticationMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import HTTPConnection

from serenity.core.errors import (
    AuthConfigurationError,
    AuthenticationError,
    PermissionDeniedError,
    error_response,
)
from serenity.core.logging import get_logger
from serenity.core.security import hash_password, needs_rehash, verify_password
from serenity.core.utils import response_context
from serenity.db.models import User
from serenity.repositories.sql_repository import SQLRepository

logger = get_logger(__name__)

SESSION_USER_KEY = "auth_user_id"


@dataclass
class Identity(BaseUser):
    id: str
    email: str
    name: Optional[str]
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(id=user.id, email=user.email, name=user.full_name, role=user.role or "user")

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def display_name(self) -> str:
        return self.name or self.email

    @property
    def identity(self) -> str:
        return self.id

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "email": self.email, "name": self.name or "N/A", "role": self.role}


class Strategy:
    name = "base"

    def __init__(self, repository: SQLRepository | None) -> None:
        self.repository = repository

    async def setup(self) -> None:
        if self.repository is None:
            raise AuthConfigurationError(f"Strategy '{self.name}' has no user repository")


class LocalStrategy(Strategy):
    """Email + password against the users table."""

    name = "local"

    def _authenticate(self, email: str, password: str) -> Optional[Identity]:
        user = self.repository.get_user_by_email(email or "")
        if not user or not user.is_active:
            return None
        if not verify_password(password or "", user.password_hash):
            return None
        if needs_rehash(user.password_hash):
            self.repository.update_password_hash(user.id, hash_password(password))
            logger.info("Password hash upgraded", user_id=user.id)
        return Identity.from_user(user)

    async def authenticate(self, email: str, password: str) -> Optional[Identity]:
        return await run_in_threadpool(self._authenticate, email, password)


class SessionStrategy(Strategy):
    """Keeps only the identity id in the session and reloads the user per request."""

    name = "session"

    def serialize(self, identity: Identity) -> str:
        return identity.id

    def _deserialize(self, user_id: str) -> Optional[Identity]:
        user = self.repository.get_user(user_id)
        if not user or not user.is_active:
            return None
        return Identity.from_user(user)

    async def deserialize(self, user_id: str) -> Optional[Identity]:
        return await run_in_threadpool(self._deserialize, user_id)


class SessionAuthBackend(AuthenticationBackend):
    def __init__(self, strategy: SessionStrategy) -> None:
        self.strategy = strategy

    async def authenticate(self, conn: HTTPConnection):
        if "session" not in conn.scope:
            return None
        user_id = conn.session.get(SESSION_USER_KEY)
        if not user_id:
            return None
        identity = await self.strategy.deserialize(str(user_id))
        if identity is None:
            conn.session.pop(SESSION_USER_KEY, None)
            return None
        return AuthCredentials(["authenticated", f"role:{identity.role}"]), identity


def _on_auth_error(conn: HTTPConnection, exc: StarletteAuthError):
    return error_response(AuthenticationError(str(exc) or "Authentication failed"))


class AuthContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        ctx = response_context(request)
        authenticated = is_authenticated(request)
        ctx["user"] = request.user.to_dict() if authenticated else None
        ctx["is_authenticated"] = authenticated
        return await call_next(request)


class Authenticator:
    """Registry of authentication strategies."""

    def __init__(self) -> None:
        self._strategies: dict[str, Strategy] = {}

    @classmethod
    def default(cls, repository: SQLRepository | None) -> "Authenticator":
        return cls().use(LocalStrategy(repository)).use(SessionStrategy(repository))

    def use(self, strategy: Strategy) -> "Authenticator":
        self._strategies[strategy.name] = strategy
        return self

    def get(self, name: str) -> Strategy:
        try:
            return self._strategies[name]
        except KeyError:
            raise AuthConfigurationError(f"Authentication strategy '{name}' is not registered") from None

    @property
    def strategies(self) -> list[str]:
        return list(self._strategies)

    async def initialize(self, app: FastAPI) -> None:
        session_strategy = self.get("session")
        if not isinstance(session_strategy, SessionStrategy):
            raise AuthConfigurationError("The 'session' strategy must serialize identities into the session")
        for name, strategy in self._strategies.items():
            try:
                await strategy.setup()
            except AuthConfigurationError:
                raise
            except Exception as exc:
                raise AuthConfigurationError(f"Strategy '{name}' failed to initialize: {exc}") from exc

        app.user_middleware.append(
            Middleware(AuthenticationMiddleware, backend=SessionAuthBackend(session_strategy), on_error=_on_auth_error)
        )
        app.user_middleware.append(Middleware(AuthContextMiddleware))
        app.state.authenticator = self
        logger.info("Authentication initialized", strategies=self.strategies)

    async def authenticate(self, email: str, password: str) -> Optional[Identity]:
        strategy = self.get("local")
        return await strategy.authenticate(email, password)  # type: ignore[attr-defined]

    def login(self, request: Request, identity: Identity) -> None:
        strategy: SessionStrategy = self.get("session")  # type: ignore[assignment]
        request.session.regenerate()
        request.session[SESSION_USER_KEY] = strategy.serialize(identity)
        request.scope["user"] = identity
        request.scope["auth"] = AuthCredentials(["authenticated", f"role:{identity.role}"])

    def logout(self, request: Request) -> None:
        request.session.destroy()


def is_authenticated(request: HTTPConnection) -> bool:
    user = request.scope.get("user")
    return bool(user is not None and user.is_authenticated)


def require_user(request: Request) -> Identity:
    if not is_authenticated(request):
        raise AuthenticationError("Authentication required")
    return request.user


def require_role(role: str):
    def dependency(request: Request) -> Identity:
        identity = require_user(request)
        if identity.role != role:
            raise PermissionDeniedError("You do not have permission to perform this action")
        return identity

    return dependency
