from __future__ import annotations

import anyio
import pytest
from structlog.testing import capture_logs

from serenity.app import Application, LifecycleState
from serenity.core.errors import AuthConfigurationError, DatabaseConnectionError, LifecycleError
from serenity.db.session import DatabaseStatus
from serenity.services.auth_service import Authenticator, SessionStrategy
from tests.conftest import make_settings


class FakeDatabase:
    def __init__(self, events: list[str], *, fail_connect: bool = False, fail_close: bool = False) -> None:
        self.events = events
        self.fail_connect = fail_connect
        self.fail_close = fail_close
        self.ready = False
        self.closed = 0

    async def connect(self) -> None:
        self.events.append("database.connect")
        if self.fail_connect:
            raise DatabaseConnectionError("Could not connect to database: refused")
        self.ready = True

    async def close(self) -> None:
        self.events.append("database.close")
        self.closed += 1
        if self.fail_close:
            raise RuntimeError("close failed")
        self.ready = False

    def get_status(self) -> DatabaseStatus:
        if self.ready:
            return DatabaseStatus(status="connected", ready=True, message="Connected")
        return DatabaseStatus(status="disconnected", ready=False, message="Disconnected")


class RecordingApplication(Application):
    def __init__(self, events: list[str], **kwargs) -> None:
        self.events = events
        super().__init__(**kwargs)

    def setup_middleware(self):
        self.events.append("middleware")
        return super().setup_middleware()

    async def setup_authentication(self) -> None:
        self.events.append("authentication")
        await super().setup_authentication()

    def setup_routes(self) -> None:
        self.events.append("routes")
        super().setup_routes()

    def setup_error_handling(self) -> None:
        self.events.append("errors")
        super().setup_error_handling()


def build(events: list[str], *, database: FakeDatabase | None = None, **kwargs) -> RecordingApplication:
    settings = kwargs.pop("settings", None) or make_settings()
    return RecordingApplication(events, settings=settings, database=database or FakeDatabase(events), **kwargs)


@pytest.mark.asyncio
async def test_start_runs_steps_in_order():
    events: list[str] = []
    application = build(events)

    app = await application.start()

    assert app is application.app
    assert events == ["database.connect", "middleware", "authentication", "routes", "errors"]
    assert application.state is LifecycleState.RUNNING
    assert application.pipeline is not None


@pytest.mark.asyncio
async def test_start_only_from_uninitialized():
    application = build([])
    await application.start()

    with pytest.raises(LifecycleError):
        await application.start()


@pytest.mark.asyncio
async def test_database_failure_aborts_startup():
    events: list[str] = []
    application = build(events, database=FakeDatabase(events, fail_connect=True))

    with capture_logs() as logs:
        with pytest.raises(DatabaseConnectionError):
            await application.start()

    assert events == ["database.connect"]
    assert application.state is LifecycleState.ERROR
    assert application.pipeline is None
    assert any(entry["event"] == "Application failed to start" for entry in logs)


@pytest.mark.asyncio
async def test_authentication_failure_aborts_startup():
    events: list[str] = []
    authenticator = Authenticator().use(SessionStrategy(None))
    application = build(events, authenticator=authenticator)

    with pytest.raises(AuthConfigurationError):
        await application.start()

    assert events == ["database.connect", "middleware", "authentication"]
    assert application.state is LifecycleState.ERROR


@pytest.mark.asyncio
async def test_stop_twice_is_a_logged_no_op():
    events: list[str] = []
    database = FakeDatabase(events)
    application = build(events, database=database)
    await application.start()

    await application.stop()
    with capture_logs() as logs:
        await application.stop()

    assert database.closed == 1
    assert application.is_shutting_down is True
    assert application.state is LifecycleState.STOPPED
    assert [entry["event"] for entry in logs if entry["log_level"] == "warning"] == ["Shutdown already in progress"]


@pytest.mark.asyncio
async def test_stop_failure_sets_error_and_keeps_flag():
    events: list[str] = []
    database = FakeDatabase(events, fail_close=True)
    application = build(events, database=database)
    await application.start()

    with pytest.raises(RuntimeError):
        await application.stop()

    assert application.state is LifecycleState.ERROR
    assert application.is_shutting_down is True
    await application.stop()
    assert database.closed == 1


@pytest.mark.asyncio
async def test_hard_shutdown_ends_in_flight_connections():
    application = build([])
    await application.start()
    seen = {}

    async def request():
        with application.connections.track({"type": "http", "method": "GET", "path": "/slow"}) as connection:
            await anyio.sleep(0.1)
        seen["ended"] = connection.ended

    async with anyio.create_task_group() as tg:
        tg.start_soon(request)
        await anyio.sleep(0.01)
        await application.stop()

    assert seen["ended"] is True
    assert application.connections.closed is True


@pytest.mark.asyncio
async def test_graceful_shutdown_waits_for_in_flight_connections():
    settings = make_settings(SHUTDOWN_POLICY="graceful", SHUTDOWN_GRACE_MS="2000")
    application = build([], settings=settings)
    await application.start()
    seen = {}

    async def request():
        with application.connections.track({"type": "http", "method": "GET", "path": "/slow"}) as connection:
            await anyio.sleep(0.1)
        seen["ended"] = connection.ended

    async with anyio.create_task_group() as tg:
        tg.start_soon(request)
        await anyio.sleep(0.01)
        await application.stop()
        assert "ended" in seen

    assert seen["ended"] is False
    assert application.state is LifecycleState.STOPPED
