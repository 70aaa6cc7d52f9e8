"""Gzip response compression with a per-request opt-out header."""
from __future__ import annotations

from starlette.datastructures import Headers
from starlette.middleware.gzip import GZipMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

BYPASS_HEADER = "x-no-compression"


class CompressionMiddleware(GZipMiddleware):
    def __init__(self, app: ASGIApp, *, level: int = 6, minimum_size: int = 1024, bypass_header: str = BYPASS_HEADER) -> None:
        super().__init__(app, minimum_size=minimum_size, compresslevel=level)
        self.bypass_header = bypass_header

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and Headers(scope=scope).get(self.bypass_header):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)
