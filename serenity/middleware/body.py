"""Request body parsing with a size ceiling, and key sanitization."""
from __future__ import annotations

import json
import re
from typing import Any, Callable
from urllib.parse import parse_qsl, urlencode

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from serenity.core.errors import PayloadTooLargeError, ValidationError, error_response
from serenity.core.logging import get_logger

logger = get_logger(__name__)

JSON = "json"
FORM = "form"

_PROHIBITED_KEY = re.compile(r"^\$|\.")


def body_kind(content_type: str | None) -> str | None:
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if media_type == "application/json" or media_type.endswith("+json"):
        return JSON
    if media_type == "application/x-www-form-urlencoded":
        return FORM
    return None


def parse_form(raw: str) -> dict[str, Any]:
    """Decode a urlencoded body; repeated keys collapse into lists."""
    parsed: dict[str, Any] = {}
    for key, value in parse_qsl(raw, keep_blank_values=True):
        if key in parsed:
            current = parsed[key]
            parsed[key] = current + [value] if isinstance(current, list) else [current, value]
        else:
            parsed[key] = value
    return parsed


class BodyParserMiddleware(BaseHTTPMiddleware):
    """
    Parse JSON and urlencoded bodies onto ``request.state.body``.

    The undecoded text is kept on ``request.state.raw_body`` for webhook
    signature checks; bodies above ``limit`` bytes are refused with 413.
    """

    def __init__(self, app: ASGIApp, *, limit: int) -> None:
        super().__init__(app)
        self.limit = limit

    async def dispatch(self, request, call_next):
        request.state.body = {}
        request.state.raw_body = None
        kind = body_kind(request.headers.get("content-type"))
        if kind is None:
            return await call_next(request)

        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.limit:
            return error_response(PayloadTooLargeError(self.limit))
        chunks: list[bytes] = []
        received = 0
        async for chunk in request.stream():
            received += len(chunk)
            if received > self.limit:
                logger.warning("Request body over limit", path=request.url.path, limit=self.limit)
                return error_response(PayloadTooLargeError(self.limit))
            chunks.append(chunk)
        raw = b"".join(chunks)

        text = raw.decode("utf-8", errors="replace")
        request.state.raw_body = text
        if not text.strip():
            return await call_next(request)
        if kind == JSON:
            try:
                request.state.body = json.loads(text)
            except ValueError:
                return error_response(ValidationError("Malformed JSON in request body"))
        else:
            request.state.body = parse_form(text)
        return await call_next(request)


def sanitize(value: Any, on_sanitize: Callable[[str], None], replace_with: str = "_") -> Any:
    """Rewrite keys that start with ``$`` or contain ``.``, recursively."""
    if isinstance(value, list):
        return [sanitize(item, on_sanitize, replace_with) for item in value]
    if not isinstance(value, dict):
        return value
    cleaned: dict[str, Any] = {}
    for key, item in value.items():
        new_key = key
        if isinstance(key, str) and _PROHIBITED_KEY.search(key):
            new_key = _PROHIBITED_KEY.sub(replace_with, key)
            on_sanitize(key)
        cleaned[new_key] = sanitize(item, on_sanitize, replace_with)
    return cleaned


class SanitizeMiddleware(BaseHTTPMiddleware):
    """Neutralise operator-like keys in body and query; never rejects."""

    def __init__(self, app: ASGIApp, *, replace_with: str = "_") -> None:
        super().__init__(app)
        self.replace_with = replace_with

    def _reporter(self, request, location: str) -> Callable[[str], None]:
        def report(key: str) -> None:
            logger.warning(
                f"Sanitized prohibited character in {location}",
                key=key,
                path=request.url.path,
            )

        return report

    async def dispatch(self, request, call_next):
        body = getattr(request.state, "body", None)
        if body:
            request.state.body = sanitize(body, self._reporter(request, "body"), self.replace_with)

        query = request.scope.get("query_string", b"")
        if query:
            pairs = parse_qsl(query.decode("latin-1"), keep_blank_values=True)
            report = self._reporter(request, "query")
            changed = False
            cleaned = []
            for key, value in pairs:
                if _PROHIBITED_KEY.search(key):
                    report(key)
                    key = _PROHIBITED_KEY.sub(self.replace_with, key)
                    changed = True
                cleaned.append((key, value))
            if changed:
                request.scope["query_string"] = urlencode(cleaned).encode("latin-1")
        return await call_next(request)
