"""
In-flight request registry.

Every HTTP request that reaches the connection-tracking stage is registered
for the whole of its handling. At shutdown ``close_all`` ends each one:
requests that have not answered yet receive a 503, streaming responses are
cut off.
"""
from __future__ import annotations

from contextlib import contextmanager
import time
from typing import Iterator

import anyio
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from serenity.core.errors import ServiceUnavailableError, error_response
from serenity.core.logging import get_logger

logger = get_logger(__name__)


class TrackedConnection:
    def __init__(self, scope: Scope) -> None:
        self.method = scope.get("method")
        self.path = scope.get("path")
        self.started_at = time.monotonic()
        self.cancel_scope = anyio.CancelScope()
        self.response_started = False
        self.finished = False
        self.ended = False

    def end(self) -> bool:
        """Force the request to finish; returns False if it already had."""
        if self.ended or self.finished:
            return False
        self.ended = True
        self.cancel_scope.cancel()
        return True


class ConnectionTracker:
    def __init__(self) -> None:
        self._connections: set[TrackedConnection] = set()
        self.closed = False

    def __len__(self) -> int:
        return len(self._connections)

    @contextmanager
    def track(self, scope: Scope) -> Iterator[TrackedConnection]:
        connection = TrackedConnection(scope)
        self._connections.add(connection)
        try:
            yield connection
        finally:
            connection.finished = True
            self._connections.discard(connection)

    async def drain(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for in-flight requests to finish."""
        self.closed = True
        with anyio.move_on_after(timeout):
            while self._connections:
                await anyio.sleep(0.05)
        return not self._connections

    def close_all(self) -> int:
        self.closed = True
        ended = 0
        for connection in list(self._connections):
            if connection.end():
                ended += 1
        if ended:
            logger.info("Force-closed open connections", count=ended)
        return ended


class ConnectionTrackingMiddleware:
    """Registers each request with the tracker and refuses new ones after shutdown begins."""

    def __init__(self, app: ASGIApp, *, tracker: ConnectionTracker) -> None:
        self.app = app
        self.tracker = tracker

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        if self.tracker.closed:
            response = error_response(ServiceUnavailableError("Server is shutting down"))
            response.headers["Connection"] = "close"
            await response(scope, receive, send)
            return

        with self.tracker.track(scope) as connection:

            async def send_wrapper(message: Message) -> None:
                if message["type"] == "http.response.start":
                    connection.response_started = True
                await send(message)

            with connection.cancel_scope:
                await self.app(scope, receive, send_wrapper)

            if connection.cancel_scope.cancelled_caught:
                await self._terminate(connection, scope, receive, send)

    async def _terminate(self, connection: TrackedConnection, scope: Scope, receive: Receive, send: Send) -> None:
        if not connection.response_started:
            response = error_response(ServiceUnavailableError("Server is shutting down"))
            response.headers["Connection"] = "close"
            await response(scope, receive, send)
        else:
            await send({"type": "http.response.body", "body": b"", "more_body": False})
