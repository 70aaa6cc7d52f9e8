"""Static asset roots served ahead of the session and logging stages."""
from __future__ import annotations

import os

from starlette.exceptions import HTTPException
from starlette.staticfiles import StaticFiles
from starlette.types import ASGIApp, Receive, Scope, Send

DAY = 24 * 60 * 60


class CachedStaticFiles(StaticFiles):
    """StaticFiles with a fixed Cache-Control lifetime (ETag/Last-Modified come from Starlette)."""

    def __init__(self, *, directory: str, max_age: int) -> None:
        super().__init__(directory=directory, check_dir=False)
        self.max_age = max_age

    def file_response(self, *args, **kwargs):
        response = super().file_response(*args, **kwargs)
        response.headers["Cache-Control"] = f"public, max-age={self.max_age}"
        return response


class StaticAssetsMiddleware:
    """Serve files under ``prefix``; unknown files fall through to the next stage."""

    def __init__(self, app: ASGIApp, *, prefix: str, directory: str, max_age: int) -> None:
        self.app = app
        self.prefix = "/" + prefix.strip("/")
        self.files = CachedStaticFiles(directory=directory, max_age=max_age)

    def _relative_path(self, path: str) -> str | None:
        if not path.startswith(self.prefix + "/"):
            return None
        relative = path[len(self.prefix) + 1:]
        if not relative:
            return None
        return os.path.normpath(os.path.join(*relative.split("/")))

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["method"] in ("GET", "HEAD"):
            relative = self._relative_path(scope["path"])
            if relative is not None:
                try:
                    response = await self.files.get_response(relative, scope)
                except HTTPException:
                    response = None
                if response is not None:
                    await response(scope, receive, send)
                    return
        await self.app(scope, receive, send)
