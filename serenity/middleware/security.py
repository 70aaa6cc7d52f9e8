"""Proxy trust and baseline security headers."""
from __future__ import annotations

from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send


class TrustProxyMiddleware:
    """Resolve client address and scheme from X-Forwarded-* set by ``hops`` trusted proxies."""

    def __init__(self, app: ASGIApp, *, hops: int = 1) -> None:
        self.app = app
        self.hops = max(1, hops)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] in ("http", "websocket"):
            headers = Headers(scope=scope)
            forwarded_for = headers.get("x-forwarded-for")
            if forwarded_for:
                chain = [part.strip() for part in forwarded_for.split(",") if part.strip()]
                if chain:
                    host = chain[max(0, len(chain) - self.hops)]
                    port = scope["client"][1] if scope.get("client") else 0
                    scope["client"] = (host, port)
            forwarded_proto = headers.get("x-forwarded-proto")
            if forwarded_proto:
                protos = [part.strip().lower() for part in forwarded_proto.split(",")]
                proto = protos[max(0, len(protos) - self.hops)]
                if scope["type"] == "websocket":
                    proto = "wss" if proto == "https" else "ws"
                scope["scheme"] = proto
        await self.app(scope, receive, send)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Inject baseline security headers (CSP, anti clickjacking, referrer policy)."""

    def __init__(self, app: ASGIApp, *, enforce_hsts: bool, content_security_policy: bool) -> None:
        super().__init__(app)
        self._enforce_hsts = enforce_hsts
        self._csp = content_security_policy

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        if self._csp:
            response.headers.setdefault(
                "Content-Security-Policy",
                "default-src 'self'; "
                "base-uri 'self'; "
                "font-src 'self' https: data:; "
                "form-action 'self'; "
                "frame-ancestors 'self'; "
                "img-src 'self' data:; "
                "object-src 'none'; "
                "script-src 'self'; "
                "style-src 'self' https: 'unsafe-inline'; "
                "upgrade-insecure-requests",
            )
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
        response.headers.setdefault("Cross-Origin-Resource-Policy", "same-origin")
        response.headers.setdefault("Origin-Agent-Cluster", "?1")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-DNS-Prefetch-Control", "off")
        response.headers.setdefault("X-Download-Options", "noopen")
        response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        response.headers.setdefault("X-Permitted-Cross-Domain-Policies", "none")
        response.headers.setdefault("X-XSS-Protection", "0")
        if self._enforce_hsts:
            response.headers.setdefault("Strict-Transport-Security", "max-age=15552000; includeSubDomains")
        return response
