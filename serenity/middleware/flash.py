"""One-shot flash messages stored in the session."""
from __future__ import annotations

from typing import Any, MutableMapping

from starlette.middleware.base import BaseHTTPMiddleware

from serenity.core.utils import response_context

FLASH_KEY = "_flash"
CATEGORIES = ("success", "error", "info", "warning")


class Flash:
    """Per-request view over the messages queued in ``session["_flash"]``."""

    def __init__(self, session: MutableMapping[str, Any]) -> None:
        self.session = session

    def add(self, category: str, message: str) -> None:
        queued = dict(self.session.get(FLASH_KEY) or {})
        queued[category] = list(queued.get(category, [])) + [message]
        self.session[FLASH_KEY] = queued

    def consume(self, category: str) -> list[str]:
        queued = dict(self.session.get(FLASH_KEY) or {})
        messages = queued.pop(category, [])
        if queued:
            self.session[FLASH_KEY] = queued
        else:
            self.session.pop(FLASH_KEY, None)
        return list(messages)


class FlashMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        flash = Flash(request.session)
        request.state.flash = flash
        ctx = response_context(request)
        for category in CATEGORIES:
            ctx[category] = flash.consume(category)
        return await call_next(request)
