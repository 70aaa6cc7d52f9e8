"""Mounts the versioned API, the utility endpoints and the catch-all 404."""
from __future__ import annotations

from typing import Iterable, Optional

from fastapi import APIRouter, FastAPI, Request

from serenity.core.config import Settings
from serenity.core.errors import NotFoundError
from serenity.core.logging import get_logger
from serenity.routers import auth, users
from serenity.routers.resources import build_resource_router
from serenity.routers.system import build_system_router

logger = get_logger(__name__)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

DOMAIN_ROUTERS = (
    "teams",
    "departments",
    "organizations",
    "projects",
    "services",
    "events",
    "case-studies",
    "blog",
)


def default_routers() -> list[APIRouter]:
    routers = [auth.router, users.router]
    routers.extend(build_resource_router(kind) for kind in DOMAIN_ROUTERS)
    routers.append(build_resource_router("newsletter", public_create=True, admin_read=True))
    routers.append(
        build_resource_router(
            "contact",
            public_create=True,
            admin_read=True,
            success_flash="Thank you for contacting us. We will get back to you shortly.",
        )
    )
    return routers


def api_router(routers: Iterable[APIRouter]) -> APIRouter:
    router = APIRouter()
    for child in routers:
        router.include_router(child)
    return router


def compose_routes(app: FastAPI, settings: Settings, routers: Optional[Iterable[APIRouter]] = None) -> None:
    base_path = settings.api_base_path
    app.include_router(api_router(routers if routers is not None else default_routers()), prefix=base_path)
    app.include_router(build_system_router(settings))

    @app.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
    async def not_found(request: Request, path: str):
        url = request.url.path
        if request.url.query:
            url = f"{url}?{request.url.query}"
        raise NotFoundError(f"Can't find {url} on this server!")

    logger.info("Routes mounted", api=base_path, routes=len(app.routes))
