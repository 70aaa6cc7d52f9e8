"""
Application composition and lifecycle.

``Application`` is the single context object of a process: it owns the
FastAPI app, the set of in-flight connections and the shutdown flag, and
walks the start/stop state machine:

    uninitialized -> starting -> running -> stopping -> stopped
                        \\-> error              \\-> error
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional

from fastapi import APIRouter, FastAPI

from serenity.core.config import Settings, get_settings
from serenity.core.errors import LifecycleError, install_error_handlers
from serenity.core.logging import configure_logging, get_logger
from serenity.db.session import Database
from serenity.middleware.connections import ConnectionTracker
from serenity.middleware.pipeline import MiddlewarePipeline, build_pipeline
from serenity.repositories.sql_repository import SQLRepository
from serenity.routing import compose_routes
from serenity.services.auth_service import Authenticator
from serenity.services.session_manager import SessionManager

logger = get_logger(__name__)


class LifecycleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class Application:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        database: Optional[Database] = None,
        authenticator: Optional[Authenticator] = None,
        routers: Optional[Iterable[APIRouter]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        configure_logging(self.settings)
        self.app = FastAPI(
            title=self.settings.app_name,
            version=self.settings.app_version,
            docs_url="/docs",
            redoc_url=None,
        )
        self.connections = ConnectionTracker()
        self.is_shutting_down = False
        self.state = LifecycleState.UNINITIALIZED
        self.database = database or Database(self.settings.database_url)
        self.repository = SQLRepository(self.database)
        self.session_manager = SessionManager(self.settings, self.repository)
        self.authenticator = authenticator or Authenticator.default(self.repository)
        self.routers = list(routers) if routers is not None else None
        self.pipeline: MiddlewarePipeline | None = None

        self.app.state.context = self
        self.app.state.settings = self.settings
        self.app.state.database = self.database
        self.app.state.repository = self.repository

    # ------------------------------------------------------------------ setup
    def setup_middleware(self) -> MiddlewarePipeline:
        self.pipeline = build_pipeline(
            self.settings,
            session_manager=self.session_manager,
            connections=self.connections,
        )
        self.pipeline.install(self.app)
        logger.info("Middleware pipeline installed", stages=self.pipeline.names())
        return self.pipeline

    async def setup_authentication(self) -> None:
        await self.authenticator.initialize(self.app)

    def setup_routes(self) -> None:
        compose_routes(self.app, self.settings, self.routers)

    def setup_error_handling(self) -> None:
        install_error_handlers(self.app, self.settings)

    async def initialize(self) -> None:
        await self.database.connect()
        self.setup_middleware()
        await self.session_manager.purge_expired()
        await self.setup_authentication()
        self.setup_routes()
        self.setup_error_handling()

    # -------------------------------------------------------------- lifecycle
    async def start(self) -> FastAPI:
        if self.state != LifecycleState.UNINITIALIZED:
            raise LifecycleError(f"Cannot start application from state '{self.state.value}'")
        self.state = LifecycleState.STARTING
        logger.info(
            "Starting application",
            name=self.settings.app_name,
            version=self.settings.app_version,
            environment=self.settings.app_env,
        )
        try:
            await self.initialize()
        except Exception as exc:
            self.state = LifecycleState.ERROR
            logger.exception("Application failed to start", error=str(exc))
            raise
        self.state = LifecycleState.RUNNING
        logger.info("Application started", api=self.settings.api_base_path)
        return self.app

    async def stop(self) -> None:
        if self.is_shutting_down:
            logger.warning("Shutdown already in progress", state=self.state.value)
            return
        self.is_shutting_down = True
        self.state = LifecycleState.STOPPING
        logger.info(
            "Stopping application",
            policy=self.settings.shutdown_policy,
            open_connections=len(self.connections),
        )
        try:
            if self.settings.shutdown_policy == "graceful" and len(self.connections):
                grace = self.settings.shutdown_grace_ms / 1000
                if not await self.connections.drain(grace):
                    logger.warning("Grace period elapsed with requests still open", remaining=len(self.connections))
            self.connections.close_all()
            await self.database.close()
        except Exception as exc:
            self.state = LifecycleState.ERROR
            logger.exception("Error during shutdown", error=str(exc))
            raise
        self.state = LifecycleState.STOPPED
        logger.info("Application stopped")


def create_application(settings: Optional[Settings] = None) -> Application:
    return Application(settings)
