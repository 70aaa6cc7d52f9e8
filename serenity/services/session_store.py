"""Session persistence backends (in-memory and SQL)."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from starlette.concurrency import run_in_threadpool

from serenity.core.logging import get_logger
from serenity.repositories.sql_repository import SQLRepository

logger = get_logger(__name__)

SWEEP_EVERY = 100


class SessionStore:
    """
    Interface used by the session middleware.

    Every ``sweep_every`` saves the store drops expired entries, so sessions
    that are never loaded again do not pile up.
    """

    def __init__(self, *, sweep_every: int = SWEEP_EVERY) -> None:
        self.sweep_every = sweep_every
        self._writes = 0

    async def load(self, sid: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    async def save(self, sid: str, data: dict[str, Any], expires_at: datetime) -> None:
        raise NotImplementedError

    async def destroy(self, sid: str) -> None:
        raise NotImplementedError

    async def purge_expired(self) -> int:
        raise NotImplementedError

    async def _count_write(self) -> None:
        self._writes += 1
        if self.sweep_every and self._writes % self.sweep_every == 0:
            removed = await self.purge_expired()
            if removed:
                logger.debug("Expired sessions swept", removed=removed)


class MemorySessionStore(SessionStore):
    """Process-local store; sessions vanish on restart."""

    def __init__(self, *, sweep_every: int = SWEEP_EVERY) -> None:
        super().__init__(sweep_every=sweep_every)
        self._sessions: dict[str, tuple[dict[str, Any], datetime]] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def load(self, sid: str) -> Optional[dict[str, Any]]:
        entry = self._sessions.get(sid)
        if entry is None:
            return None
        data, expires_at = entry
        if expires_at <= datetime.now(timezone.utc):
            self._sessions.pop(sid, None)
            return None
        return dict(data)

    async def save(self, sid: str, data: dict[str, Any], expires_at: datetime) -> None:
        self._sessions[sid] = (dict(data), expires_at)
        await self._count_write()

    async def destroy(self, sid: str) -> None:
        self._sessions.pop(sid, None)

    async def purge_expired(self) -> int:
        now = datetime.now(timezone.utc)
        expired = [sid for sid, (_, expires_at) in self._sessions.items() if expires_at <= now]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)


class DatabaseSessionStore(SessionStore):
    """Durable store backed by the ``sessions`` table."""

    def __init__(self, repository: SQLRepository, *, sweep_every: int = SWEEP_EVERY) -> None:
        super().__init__(sweep_every=sweep_every)
        self.repository = repository

    async def load(self, sid: str) -> Optional[dict[str, Any]]:
        return await run_in_threadpool(self.repository.load_session, sid)

    async def save(self, sid: str, data: dict[str, Any], expires_at: datetime) -> None:
        await run_in_threadpool(self.repository.save_session, sid, data, expires_at)
        await self._count_write()

    async def destroy(self, sid: str) -> None:
        await run_in_threadpool(self.repository.delete_session, sid)

    async def purge_expired(self) -> int:
        return await run_in_threadpool(self.repository.purge_expired_sessions)
