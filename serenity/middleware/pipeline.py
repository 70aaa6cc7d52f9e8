"""
Ordered middleware pipeline.

``build_pipeline`` turns a settings snapshot into the list of named stages;
the first stage is the outermost one. ``MiddlewarePipeline.install`` appends
them to the FastAPI application in that order, so anything installed
afterwards (authentication) runs inside the pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import FastAPI
from starlette.middleware import Middleware

from serenity.core.config import Settings
from serenity.core.logging import get_logger
from serenity.core.utils import megabytes
from serenity.middleware.body import BodyParserMiddleware, SanitizeMiddleware
from serenity.middleware.compression import CompressionMiddleware
from serenity.middleware.connections import ConnectionTracker, ConnectionTrackingMiddleware
from serenity.middleware.cookies import CookieParserMiddleware
from serenity.middleware.cors import CorsPolicy, PolicyCORSMiddleware
from serenity.middleware.flash import FlashMiddleware
from serenity.middleware.method_override import MethodOverrideMiddleware
from serenity.middleware.request_logging import RequestLoggingMiddleware
from serenity.middleware.security import SecurityHeadersMiddleware, TrustProxyMiddleware
from serenity.middleware.static import DAY, StaticAssetsMiddleware
from serenity.services.session_manager import SessionManager

logger = get_logger(__name__)


@dataclass(frozen=True)
class Stage:
    name: str
    middleware: Middleware


@dataclass
class MiddlewarePipeline:
    stages: list[Stage] = field(default_factory=list)

    def add(self, name: str, cls, **options) -> None:
        self.stages.append(Stage(name, Middleware(cls, **options)))

    def add_middleware(self, name: str, middleware: Middleware) -> None:
        self.stages.append(Stage(name, middleware))

    def names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    def install(self, app: FastAPI) -> None:
        app.user_middleware.extend(stage.middleware for stage in self.stages)


def static_max_age(settings: Settings, production_days: int) -> int:
    return production_days * DAY if settings.is_production else 0


def build_pipeline(
    settings: Settings,
    *,
    session_manager: SessionManager,
    connections: ConnectionTracker,
) -> MiddlewarePipeline:
    pipeline = MiddlewarePipeline()

    if settings.is_production:
        pipeline.add("trust_proxy", TrustProxyMiddleware, hops=1)

    if settings.helmet_enabled:
        pipeline.add(
            "security_headers",
            SecurityHeadersMiddleware,
            enforce_hsts=settings.is_production,
            content_security_policy=settings.is_production,
        )

    if settings.cors_enabled:
        policy = CorsPolicy.from_origins(settings.cors_origins, settings.app_env)
        pipeline.add(
            "cors",
            PolicyCORSMiddleware,
            policy=policy,
            preflight_continue=settings.cors_preflight_continue,
            options_success_status=settings.cors_options_success_status,
            allow_methods=settings.cors_methods,
            allow_headers=settings.cors_allowed_headers,
            expose_headers=settings.cors_exposed_headers,
            allow_credentials=settings.cors_allow_credentials,
            max_age=settings.cors_max_age,
        )
        logger.info(
            "CORS configured",
            origins=list(policy.origins),
            credentials=settings.cors_allow_credentials,
            methods=list(settings.cors_methods),
            allow_local_origins=settings.is_development,
        )
    else:
        logger.warning("CORS is disabled; cross-origin browser requests will not be negotiated")

    pipeline.add("body_parser", BodyParserMiddleware, limit=settings.upload_limit_bytes)
    logger.debug("Body parser configured", limit=megabytes(settings.upload_limit_bytes))

    if settings.sanitize_enabled:
        pipeline.add("sanitize", SanitizeMiddleware, replace_with="_")

    pipeline.add("cookie_parser", CookieParserMiddleware, secret=settings.cookie_secret)
    pipeline.add("compression", CompressionMiddleware, level=6, minimum_size=1024)
    pipeline.add("method_override", MethodOverrideMiddleware)

    pipeline.add(
        "static_uploads",
        StaticAssetsMiddleware,
        prefix="/uploads",
        directory=settings.uploads_dir,
        max_age=static_max_age(settings, 7),
    )
    pipeline.add(
        "static_public",
        StaticAssetsMiddleware,
        prefix="/public",
        directory=settings.public_dir,
        max_age=static_max_age(settings, 30),
    )

    if settings.logging_enabled:
        pipeline.add("request_logging", RequestLoggingMiddleware, development=settings.is_development)

    pipeline.add_middleware(
        "session",
        session_manager.create_session_middleware(
            use_database=settings.session_store == "database",
            secure=settings.is_production,
        ),
    )
    pipeline.add("flash", FlashMiddleware)
    pipeline.add_middleware("session_security", session_manager.create_session_security_middleware())
    pipeline.add_middleware("session_activity", session_manager.create_session_activity_middleware())

    if settings.session_idle_timeout_ms:
        pipeline.add_middleware(
            "idle_timeout",
            session_manager.create_idle_session_timeout_middleware(settings.session_idle_minutes),
        )

    pipeline.add("connection_tracking", ConnectionTrackingMiddleware, tracker=connections)
    return pipeline
