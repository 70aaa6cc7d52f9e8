"""
Configuration helpers for the Serenity backend.

Settings are read once from the environment (and an optional ``.env`` file)
into an immutable snapshot; every component receives that snapshot instead
of reading ``os.environ`` directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import os
import re
from typing import Mapping

from dotenv import load_dotenv

DEVELOPMENT = "development"
PRODUCTION = "production"
TEST = "test"

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(b|kb|mb|gb)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"b": 1, "kb": 1024, "mb": 1024**2, "gb": 1024**3}


@dataclass(frozen=True)
class Settings:
    """Typed view of environment variables."""

    app_name: str
    app_env: str
    app_version: str
    app_url: str
    api_prefix: str
    api_version: str
    upload_limit_bytes: int
    cors_enabled: bool
    cors_origins: tuple[str, ...]
    cors_methods: tuple[str, ...]
    cors_allowed_headers: tuple[str, ...]
    cors_exposed_headers: tuple[str, ...]
    cors_allow_credentials: bool
    cors_max_age: int
    cors_preflight_continue: bool
    cors_options_success_status: int
    helmet_enabled: bool
    sanitize_enabled: bool
    cookie_secret: str
    session_secret: str
    session_store: str
    session_name: str
    session_max_age_ms: int
    session_idle_timeout_ms: int
    logging_enabled: bool
    log_level: str
    log_format: str
    database_url: str
    uploads_dir: str
    public_dir: str
    shutdown_policy: str
    shutdown_grace_ms: int
    host: str
    port: int

    @property
    def is_development(self) -> bool:
        return self.app_env == DEVELOPMENT

    @property
    def is_production(self) -> bool:
        return self.app_env == PRODUCTION

    @property
    def api_base_path(self) -> str:
        return f"{self.api_prefix}/{self.api_version}"

    @property
    def session_idle_minutes(self) -> float:
        return self.session_idle_timeout_ms / 60000


def _int(value: str | None, default: int = 0) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _bool(value: str | None, default: bool = False) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _list(value: str | None, default: str) -> tuple[str, ...]:
    raw = default if value is None else value
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def parse_size(value: str | None, default: int) -> int:
    """Convert ``"10mb"``-style sizes into bytes."""
    if not value:
        return default
    match = _SIZE_RE.match(value)
    if not match:
        return default
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[(unit or "b").lower()])


def load_settings(env: Mapping[str, str | None]) -> Settings:
    """Build a Settings instance from an arbitrary mapping of variables."""
    app_env = (env.get("APP_ENV") or DEVELOPMENT).strip().lower()
    api_prefix = "/" + (env.get("API_PREFIX") or "/api").strip().strip("/")
    store = (env.get("SESSION_STORE") or "memory").strip().lower()
    policy = (env.get("SHUTDOWN_POLICY") or "hard").strip().lower()
    return Settings(
        app_name=env.get("APP_NAME") or "Consulting Platform API",
        app_env=app_env,
        app_version=env.get("APP_VERSION") or "3.0.0",
        app_url=(env.get("APP_URL") or "http://localhost:8000").rstrip("/"),
        api_prefix=api_prefix,
        api_version=(env.get("API_VERSION") or "v1").strip().strip("/"),
        upload_limit_bytes=parse_size(env.get("UPLOAD_LIMIT"), 10 * 1024**2),
        cors_enabled=_bool(env.get("CORS_ENABLED"), True),
        cors_origins=_list(env.get("CORS_ORIGINS"), "http://localhost:3000"),
        cors_methods=_list(env.get("CORS_METHODS"), "GET,POST,PUT,PATCH,DELETE,OPTIONS"),
        cors_allowed_headers=_list(
            env.get("CORS_ALLOWED_HEADERS"),
            "Content-Type,Authorization,X-Requested-With,Accept,Origin,X-HTTP-Method-Override,X-No-Compression",
        ),
        cors_exposed_headers=_list(env.get("CORS_EXPOSED_HEADERS"), "Content-Length,Content-Disposition"),
        cors_allow_credentials=_bool(env.get("CORS_CREDENTIALS"), True),
        cors_max_age=_int(env.get("CORS_MAX_AGE"), 86400),
        cors_preflight_continue=_bool(env.get("CORS_PREFLIGHT_CONTINUE"), False),
        cors_options_success_status=_int(env.get("CORS_OPTIONS_SUCCESS_STATUS"), 204),
        helmet_enabled=_bool(env.get("HELMET_ENABLED"), True),
        sanitize_enabled=_bool(env.get("SANITIZE_ENABLED"), True),
        cookie_secret=env.get("COOKIE_SECRET") or "dev-cookie-secret-change-me",
        session_secret=env.get("SESSION_SECRET") or "dev-session-secret-change-me",
        session_store="database" if store in {"database", "sql", "mongodb"} else "memory",
        session_name=env.get("SESSION_NAME") or "serenity.sid",
        session_max_age_ms=_int(env.get("SESSION_MAX_AGE"), 24 * 60 * 60 * 1000),
        session_idle_timeout_ms=max(0, _int(env.get("SESSION_IDLE_TIMEOUT"), 30 * 60 * 1000)),
        logging_enabled=_bool(env.get("LOGGING_ENABLED"), True),
        log_level=(env.get("LOG_LEVEL") or "info").strip().lower(),
        log_format=(env.get("LOG_FORMAT") or ("json" if app_env == PRODUCTION else "console")).strip().lower(),
        database_url=(env.get("DATABASE_URL") or "sqlite:///./serenity.db").strip(),
        uploads_dir=env.get("UPLOADS_DIR") or os.path.join(os.getcwd(), "uploads"),
        public_dir=env.get("PUBLIC_DIR") or os.path.join(os.getcwd(), "public"),
        shutdown_policy="graceful" if policy == "graceful" else "hard",
        shutdown_grace_ms=max(0, _int(env.get("SHUTDOWN_GRACE_MS"), 10000)),
        host=env.get("HOST") or "0.0.0.0",
        port=_int(env.get("PORT"), 8000),
    )


@lru_cache
def get_settings() -> Settings:
    """Read the current environment and build a Settings instance."""
    load_dotenv()
    return load_settings(os.environ)
