"""CORS negotiation with a per-request origin predicate."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from fastapi.middleware.cors import CORSMiddleware
from starlette.datastructures import Headers
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp, Receive, Scope, Send

from serenity.core.config import DEVELOPMENT
from serenity.core.errors import CorsError, error_response
from serenity.core.logging import get_logger

logger = get_logger(__name__)

_LOCAL_ORIGIN = re.compile(
    r"^https?://("
    r"localhost"
    r"|127\.0\.0\.1"
    r"|10\.\d{1,3}\.\d{1,3}\.\d{1,3}"
    r"|192\.168\.\d{1,3}\.\d{1,3}"
    r"|172\.(?:1[6-9]|2\d|3[01])\.\d{1,3}\.\d{1,3}"
    r")(:\d+)?$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class CorsPolicy:
    """Decides whether a request origin may talk to the API."""

    origins: tuple[str, ...]
    environment: str

    @classmethod
    def from_origins(cls, origins: Iterable[str], environment: str) -> "CorsPolicy":
        return cls(tuple(o.strip() for o in origins if o and o.strip()), environment)

    def is_allowed(self, origin: str | None) -> bool:
        # Non-browser clients (curl, mobile apps) send no Origin
        if not origin:
            return True
        candidate = origin.strip()
        if candidate in self.origins:
            return True
        if self.environment == DEVELOPMENT and _LOCAL_ORIGIN.match(candidate):
            return True
        return False


class PolicyCORSMiddleware(CORSMiddleware):
    """Starlette CORS handling driven by a CorsPolicy; rejected origins get a JSON error."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        policy: CorsPolicy,
        preflight_continue: bool = False,
        options_success_status: int = 204,
        **options,
    ) -> None:
        super().__init__(app, allow_origins=policy.origins, **options)
        self.policy = policy
        self.preflight_continue = preflight_continue
        self.options_success_status = options_success_status

    def is_allowed_origin(self, origin: str) -> bool:
        return self.policy.is_allowed(origin)

    def preflight_response(self, request_headers: Headers) -> Response:
        # Allowed origins always get the configured headers, whatever they asked for
        headers = dict(self.preflight_headers)
        headers["Access-Control-Allow-Origin"] = request_headers["origin"]
        requested_headers = request_headers.get("access-control-request-headers")
        if self.allow_all_headers and requested_headers is not None:
            headers["Access-Control-Allow-Headers"] = requested_headers
        if self.options_success_status == 204:
            return Response(status_code=204, headers=headers)
        return PlainTextResponse("OK", status_code=self.options_success_status, headers=headers)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        headers = Headers(scope=scope)
        origin = headers.get("origin")
        if origin and not self.policy.is_allowed(origin):
            logger.warning("CORS origin rejected", origin=origin, path=scope.get("path"))
            response = error_response(CorsError(origin))
            await response(scope, receive, send)
            return
        if not origin:
            await self.app(scope, receive, send)
            return
        if origin != origin.strip():
            scope["headers"] = [
                (name, value.strip() if name == b"origin" else value) for name, value in scope["headers"]
            ]
            headers = Headers(scope=scope)
        is_preflight = scope["method"] == "OPTIONS" and "access-control-request-method" in headers
        if is_preflight and self.preflight_continue:
            await self.simple_response(scope, receive, send, request_headers=headers)
            return
        await super().__call__(scope, receive, send)
