"""
Exception hierarchy and JSON error rendering.

Every request-level failure ends up as ``{"detail", "code", "status"}``;
middleware stages and route handlers share ``error_response`` so the shape
does not depend on where the error was raised.
"""

from __future__ import annotations

import traceback
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from serenity.core.config import Settings
from serenity.core.logging import get_logger

logger = get_logger(__name__)


class AppError(Exception):
    """Base exception for the API; carries the HTTP status to answer with."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "detail": self.message,
            "code": self.code,
            "status": self.status_code,
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    status_code = 401
    code = "UNAUTHENTICATED"


class PermissionDeniedError(AppError):
    status_code = 403
    code = "FORBIDDEN"


class CorsError(AppError):
    """Raised when a browser origin is not on the CORS allow-list."""

    status_code = 403
    code = "CORS_REJECTED"

    def __init__(self, origin: str):
        super().__init__("Not allowed by CORS", details={"origin": origin})


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class PayloadTooLargeError(AppError):
    status_code = 413
    code = "PAYLOAD_TOO_LARGE"

    def __init__(self, limit: int):
        super().__init__(
            f"Request body exceeds the {limit} byte limit",
            details={"limit": limit},
        )


class ServiceUnavailableError(AppError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"


class DatabaseConnectionError(AppError):
    status_code = 503
    code = "DATABASE_UNAVAILABLE"


class AuthConfigurationError(AppError):
    code = "AUTH_CONFIGURATION"


class LifecycleError(RuntimeError):
    """Raised when start/stop is invoked from an incompatible state."""


def error_response(exc: AppError, *, expose_stack: bool = False) -> JSONResponse:
    content = exc.to_dict()
    if expose_stack:
        content["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=exc.status_code, content=content)


def install_error_handlers(app: FastAPI, settings: Settings) -> None:
    """Register the terminal error handlers on the application."""
    expose = settings.is_development

    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Request failed", path=request.url.path, code=exc.code, error=exc.message)
        return error_response(exc, expose_stack=expose)

    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        wrapped = AppError(str(exc.detail), exc.status_code, code=f"HTTP_{exc.status_code}")
        response = error_response(wrapped)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        wrapped = ValidationError("Validation error", details={"errors": jsonable_errors(exc)})
        return error_response(wrapped)

    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unexpected error", path=request.url.path, error=str(exc))
        wrapped = AppError("An unexpected error occurred")
        if expose:
            wrapped.__traceback__ = exc.__traceback__
        return error_response(wrapped, expose_stack=expose)

    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected)


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
