"""
Utility helpers shared across routers/services.
"""

from __future__ import annotations

from typing import Any, Optional

from starlette.requests import HTTPConnection


def absolute_url(path: str, base: Optional[str] = None) -> str:
    """
    Turn a relative path into an absolute URL using the configured APP_URL.
    """
    if base is None:
        from serenity.core.config import get_settings

        base = get_settings().app_url
    base_url = base.rstrip("/")
    if not path:
        return base_url + "/"
    if path.startswith("http://") or path.startswith("https://"):
        return path
    if not path.startswith("/"):
        path = "/" + path
    return base_url + path


def response_context(request: HTTPConnection) -> dict[str, Any]:
    """Per-request rendering context shared by the pipeline stages."""
    ctx = getattr(request.state, "locals", None)
    if ctx is None:
        ctx = {}
        request.state.locals = ctx
    return ctx


def megabytes(value: int) -> str:
    return f"{round(value / 1024 / 1024)}MB"
