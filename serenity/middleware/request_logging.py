"""Access logging for every request that reaches the application stages."""
from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from serenity.core.logging import get_logger

logger = get_logger("serenity.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Emit one ``http_request`` event per request with method, path, status and
    duration. In development a short one-line summary is logged as well.
    """

    def __init__(self, app: ASGIApp, *, development: bool = False) -> None:
        super().__init__(app)
        self.development = development

    async def dispatch(self, request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        start_time = time.perf_counter()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        except Exception as exc:
            duration = time.perf_counter() - start_time
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(exc),
                duration_ms=round(duration * 1000, 2),
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        client = request.client.host if request.client else None
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=duration_ms,
            client=client,
            user_agent=request.headers.get("user-agent"),
            content_length=response.headers.get("content-length"),
        )
        if self.development:
            logger.info(
                f"{request.method} {request.url.path} {response.status_code} {duration_ms} ms"
                f" - {response.headers.get('content-length', '-')}"
            )
        response.headers["X-Request-ID"] = request_id
        return response
