"""HTTP verb override for clients limited to GET/POST (HTML forms, old proxies)."""
from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

SUPPORTED_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"})


class MethodOverrideMiddleware(BaseHTTPMiddleware):
    """
    Rewrite the request method of a POST from the ``_method`` field (query
    string or parsed body) or, failing that, the override header.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        field: str = "_method",
        header: str = "x-http-method-override",
        methods: tuple[str, ...] = ("POST",),
    ) -> None:
        super().__init__(app)
        self.field = field
        self.header = header.lower()
        self.methods = {m.upper() for m in methods}

    def _requested(self, request) -> str | None:
        value = request.query_params.get(self.field)
        if not value:
            body = getattr(request.state, "body", None)
            if isinstance(body, dict) and isinstance(body.get(self.field), str):
                value = body[self.field]
        if not value:
            value = request.headers.get(self.header)
        return value

    async def dispatch(self, request, call_next):
        if request.method in self.methods:
            requested = (self._requested(request) or "").strip().upper()
            if requested in SUPPORTED_METHODS and requested != request.method:
                request.state.original_method = request.method
                request.scope["method"] = requested
        return await call_next(request)
