from __future__ import annotations

from fastapi import FastAPI
from structlog.testing import capture_logs

from serenity.middleware.connections import ConnectionTracker, ConnectionTrackingMiddleware
from serenity.middleware.pipeline import build_pipeline
from serenity.middleware.security import TrustProxyMiddleware
from serenity.services.session_manager import SessionManager
from serenity.services.session_store import DatabaseSessionStore, MemorySessionStore
from tests.conftest import make_settings

FULL_ORDER = [
    "security_headers",
    "cors",
    "body_parser",
    "sanitize",
    "cookie_parser",
    "compression",
    "method_override",
    "static_uploads",
    "static_public",
    "request_logging",
    "session",
    "flash",
    "session_security",
    "session_activity",
    "idle_timeout",
    "connection_tracking",
]


def build(**env):
    settings = make_settings(**env)
    manager = SessionManager(settings, repository=object())
    return build_pipeline(settings, session_manager=manager, connections=ConnectionTracker()), manager


def test_stage_order_outside_production():
    pipeline, _ = build()

    assert pipeline.names() == FULL_ORDER


def test_production_trusts_proxy_first_and_secures_cookie():
    pipeline, _ = build(APP_ENV="production")

    assert pipeline.names() == ["trust_proxy"] + FULL_ORDER
    assert pipeline.stages[0].middleware.cls is TrustProxyMiddleware
    session_stage = next(stage for stage in pipeline.stages if stage.name == "session")
    assert session_stage.middleware.kwargs["secure"] is True


def test_optional_stages_can_be_disabled():
    with capture_logs() as logs:
        pipeline, _ = build(
            HELMET_ENABLED="false",
            CORS_ENABLED="false",
            SANITIZE_ENABLED="false",
            LOGGING_ENABLED="false",
            SESSION_IDLE_TIMEOUT="0",
        )

    names = pipeline.names()
    for disabled in ("security_headers", "cors", "sanitize", "request_logging", "idle_timeout"):
        assert disabled not in names
    assert names[-1] == "connection_tracking"
    assert any(entry["log_level"] == "warning" and entry["event"].startswith("CORS is disabled") for entry in logs)


def test_cors_configuration_is_logged():
    with capture_logs() as logs:
        build(CORS_ORIGINS="https://a.example.com,https://b.example.com")

    entry = next(entry for entry in logs if entry["event"] == "CORS configured")
    assert entry["origins"] == ["https://a.example.com", "https://b.example.com"]


def test_idle_threshold_is_converted_to_minutes():
    pipeline, _ = build(SESSION_IDLE_TIMEOUT="900000")

    stage = next(stage for stage in pipeline.stages if stage.name == "idle_timeout")
    assert stage.middleware.kwargs["idle_minutes"] == 15


def test_session_store_follows_settings():
    _, memory = build()
    _, database = build(SESSION_STORE="database")

    assert isinstance(memory.store, MemorySessionStore)
    assert isinstance(database.store, DatabaseSessionStore)


def test_install_preserves_order():
    pipeline, _ = build()
    app = FastAPI()

    pipeline.install(app)

    assert [m.cls for m in app.user_middleware] == [stage.middleware.cls for stage in pipeline.stages]
    assert app.user_middleware[-1].cls is ConnectionTrackingMiddleware
