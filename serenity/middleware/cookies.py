"""Cookie parsing with signed-cookie verification."""
from __future__ import annotations

from itsdangerous import BadSignature, Signer
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

SIGNED_PREFIX = "s:"


def _signer(secret: str) -> Signer:
    return Signer(secret, salt="serenity.cookie")


def sign_cookie(value: str, secret: str) -> str:
    """Produce the ``s:<value>.<signature>`` form read back by CookieParserMiddleware."""
    return SIGNED_PREFIX + _signer(secret).sign(value).decode("utf-8")


class CookieParserMiddleware(BaseHTTPMiddleware):
    """
    Split incoming cookies into ``request.state.cookies`` and
    ``request.state.signed_cookies``; a signed cookie with a bad signature
    is reported as ``False``.
    """

    def __init__(self, app: ASGIApp, *, secret: str | None) -> None:
        super().__init__(app)
        self.signer = _signer(secret) if secret else None

    async def dispatch(self, request, call_next):
        cookies: dict[str, str] = {}
        signed: dict[str, str | bool] = {}
        for name, value in request.cookies.items():
            if self.signer is not None and value.startswith(SIGNED_PREFIX):
                try:
                    signed[name] = self.signer.unsign(value[len(SIGNED_PREFIX):]).decode("utf-8")
                except BadSignature:
                    signed[name] = False
            else:
                cookies[name] = value
        request.state.cookies = cookies
        request.state.signed_cookies = signed
        return await call_next(request)
