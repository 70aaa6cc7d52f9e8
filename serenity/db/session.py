"""Engine/session management for the SQL backend."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.concurrency import run_in_threadpool

from serenity.core.errors import DatabaseConnectionError
from serenity.core.logging import get_logger

Base = declarative_base()
logger = get_logger(__name__)

DISCONNECTED = "disconnected"
CONNECTING = "connecting"
CONNECTED = "connected"
DISCONNECTING = "disconnecting"

_MESSAGES = {
    DISCONNECTED: "Database is not connected",
    CONNECTING: "Database connection in progress",
    CONNECTED: "Database connection is healthy",
    DISCONNECTING: "Database connection is closing",
}


@dataclass(frozen=True)
class DatabaseStatus:
    status: str
    ready: bool
    message: str


class Database:
    """Owns the SQLAlchemy engine and reports connection readiness."""

    def __init__(self, url: str, *, create_schema: bool = True, echo: bool = False) -> None:
        self.url = url
        self.create_schema = create_schema
        self.echo = echo
        self._engine: Engine | None = None
        self._sessionmaker: sessionmaker | None = None
        self._state = DISCONNECTED
        self._error: str | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise DatabaseConnectionError("Database is not connected")
        return self._engine

    def _engine_options(self) -> dict:
        options: dict = {"future": True, "echo": self.echo}
        if self.url.startswith("sqlite"):
            options["connect_args"] = {"check_same_thread": False}
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                options["poolclass"] = StaticPool
        else:
            options["pool_pre_ping"] = True
        return options

    def _connect(self) -> None:
        engine = create_engine(self.url, **self._engine_options())
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            if self.create_schema:
                from serenity.db import models  # noqa: F401  # register tables on Base

                Base.metadata.create_all(bind=engine)
        except SQLAlchemyError:
            engine.dispose()
            raise
        self._engine = engine
        self._sessionmaker = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)

    async def connect(self) -> None:
        if self._engine is not None:
            return
        self._state = CONNECTING
        try:
            await run_in_threadpool(self._connect)
        except SQLAlchemyError as exc:
            self._state = DISCONNECTED
            self._error = str(exc)
            raise DatabaseConnectionError(f"Could not connect to database: {exc}") from exc
        self._state = CONNECTED
        self._error = None
        logger.info("Database engine ready", dialect=self._engine.dialect.name if self._engine else None)

    async def close(self) -> None:
        if self._engine is None:
            return
        self._state = DISCONNECTING
        engine, self._engine, self._sessionmaker = self._engine, None, None
        await run_in_threadpool(engine.dispose)
        self._state = DISCONNECTED

    def get_status(self) -> DatabaseStatus:
        message = _MESSAGES[self._state]
        if self._state == DISCONNECTED and self._error:
            message = f"{message}: {self._error}"
        return DatabaseStatus(status=self._state, ready=self._state == CONNECTED, message=message)

    @contextmanager
    def session(self) -> Iterator[Session]:
        if self._sessionmaker is None:
            raise DatabaseConnectionError("Database is not connected")
        session: Session = self._sessionmaker()
        try:
            yield session
        finally:
            session.close()
