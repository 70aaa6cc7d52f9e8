"""Unversioned utility endpoints: health, session introspection and root."""
from __future__ import annotations

from datetime import datetime, timezone
import time

import psutil
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from serenity.core.config import Settings
from serenity.core.utils import absolute_url, megabytes
from serenity.db.session import DatabaseStatus
from serenity.services.auth_service import is_authenticated

DESCRIPTION = "Enterprise Consulting Platform API"


def memory_usage() -> dict[str, str]:
    info = psutil.Process().memory_info()
    shared = getattr(info, "shared", 0)
    return {
        "rss": megabytes(info.rss),
        "heapTotal": megabytes(info.vms),
        "heapUsed": megabytes(max(info.rss - shared, 0) if shared else info.rss),
    }


def process_uptime() -> float:
    return round(time.time() - psutil.Process().create_time(), 3)


def _database_status(request: Request) -> DatabaseStatus:
    database = getattr(request.app.state, "database", None)
    if database is None:
        return DatabaseStatus(status="disconnected", ready=False, message="Database not configured")
    return database.get_status()


def _session_user(request: Request) -> dict | None:
    if not is_authenticated(request):
        return None
    return request.user.to_dict()


def build_system_router(settings: Settings) -> APIRouter:
    router = APIRouter(tags=["system"])

    @router.get("/health")
    async def health(request: Request):
        db = _database_status(request)
        body = {
            "status": "healthy" if db.ready else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "service": {
                "name": settings.app_name,
                "version": settings.app_version,
                "environment": settings.app_env,
                "uptime": process_uptime(),
            },
            "database": {"status": db.status, "ready": db.ready, "message": db.message},
            "memory": memory_usage(),
        }
        return JSONResponse(status_code=200 if db.ready else 503, content=body)

    @router.get("/session-check")
    async def session_check(request: Request):
        session = request.session
        return {
            "isAuthenticated": is_authenticated(request),
            "session": {"id": session.id, "cookie": session.cookie.to_dict()},
            "user": _session_user(request),
        }

    if settings.is_development:

        @router.get("/session-debug")
        async def session_debug(request: Request):
            return {
                "authenticated": is_authenticated(request),
                "session": dict(request.session),
                "sessionID": request.session.id,
                "cookies": getattr(request.state, "cookies", {}),
                "signedCookies": getattr(request.state, "signed_cookies", {}),
                "user": _session_user(request),
            }

    @router.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "description": DESCRIPTION,
            "version": settings.app_version,
            "documentation": absolute_url("/docs", base=settings.app_url),
            "status": "operational",
            "endpoints": {"health": "/health", "api": settings.api_base_path},
        }

    return router
