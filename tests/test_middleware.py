from __future__ import annotations

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from serenity.middleware.compression import CompressionMiddleware
from serenity.middleware.cookies import CookieParserMiddleware, sign_cookie
from serenity.middleware.pipeline import static_max_age
from serenity.middleware.security import SecurityHeadersMiddleware, TrustProxyMiddleware
from serenity.middleware.static import DAY, StaticAssetsMiddleware
from tests.conftest import make_settings


async def cookies(request):
    return JSONResponse({"cookies": request.state.cookies, "signed": request.state.signed_cookies})


async def big(request):
    return PlainTextResponse("consulting " * 300)


async def client_info(request):
    return JSONResponse({"host": request.client.host, "scheme": request.url.scheme})


async def fallback(request):
    return PlainTextResponse("fallthrough", status_code=404)


def test_signed_cookies_are_verified():
    app = Starlette(
        routes=[Route("/cookies", cookies)],
        middleware=[Middleware(CookieParserMiddleware, secret="s3cret")],
    )
    signed = sign_cookie("42", "s3cret")
    forged = sign_cookie("42", "other-secret")

    response = TestClient(app).get("/cookies", headers={"Cookie": f"theme=dark; uid={signed}; bad={forged}"})

    data = response.json()
    assert data["cookies"] == {"theme": "dark"}
    assert data["signed"] == {"uid": "42", "bad": False}


def test_gzip_applies_unless_bypassed():
    app = Starlette(routes=[Route("/big", big)], middleware=[Middleware(CompressionMiddleware)])
    client = TestClient(app)

    compressed = client.get("/big", headers={"Accept-Encoding": "gzip"})
    bypassed = client.get("/big", headers={"Accept-Encoding": "gzip", "X-No-Compression": "1"})

    assert compressed.headers.get("content-encoding") == "gzip"
    assert "content-encoding" not in bypassed.headers
    assert bypassed.text == "consulting " * 300


def test_small_responses_are_not_compressed():
    async def small(request):
        return PlainTextResponse("ok")

    app = Starlette(routes=[Route("/small", small)], middleware=[Middleware(CompressionMiddleware)])
    response = TestClient(app).get("/small", headers={"Accept-Encoding": "gzip"})

    assert "content-encoding" not in response.headers


def test_static_files_are_cached_and_conditional(tmp_path):
    (tmp_path / "site.css").write_text("body { color: teal; }")
    app = Starlette(
        routes=[Route("/public/{path:path}", fallback)],
        middleware=[Middleware(StaticAssetsMiddleware, prefix="/public", directory=str(tmp_path), max_age=30 * DAY)],
    )
    client = TestClient(app)

    response = client.get("/public/site.css")
    assert response.status_code == 200
    assert response.text == "body { color: teal; }"
    assert response.headers["cache-control"] == f"public, max-age={30 * DAY}"
    assert "last-modified" in response.headers

    etag = response.headers["etag"]
    assert client.get("/public/site.css", headers={"If-None-Match": etag}).status_code == 304


def test_missing_static_file_falls_through(tmp_path):
    app = Starlette(
        routes=[Route("/uploads/{path:path}", fallback, methods=["GET", "POST"])],
        middleware=[Middleware(StaticAssetsMiddleware, prefix="/uploads", directory=str(tmp_path / "nope"), max_age=0)],
    )
    client = TestClient(app)

    assert client.get("/uploads/missing.png").text == "fallthrough"
    assert client.post("/uploads/missing.png").text == "fallthrough"


def test_static_cache_lifetimes_depend_on_environment():
    production = make_settings(APP_ENV="production")
    development = make_settings(APP_ENV="development")

    assert static_max_age(production, 7) == 7 * DAY
    assert static_max_age(production, 30) == 30 * DAY
    assert static_max_age(development, 30) == 0


def test_security_headers_hsts_and_csp_only_when_enabled():
    def make(enabled: bool) -> TestClient:
        app = Starlette(
            routes=[Route("/info", client_info)],
            middleware=[Middleware(SecurityHeadersMiddleware, enforce_hsts=enabled, content_security_policy=enabled)],
        )
        return TestClient(app)

    relaxed = make(False).get("/info").headers
    strict = make(True).get("/info").headers

    assert relaxed["x-content-type-options"] == "nosniff"
    assert relaxed["x-frame-options"] == "SAMEORIGIN"
    assert "content-security-policy" not in relaxed
    assert "strict-transport-security" not in relaxed
    assert "default-src 'self'" in strict["content-security-policy"]
    assert strict["strict-transport-security"].startswith("max-age=")


def test_trust_proxy_uses_last_hop():
    app = Starlette(routes=[Route("/info", client_info)], middleware=[Middleware(TrustProxyMiddleware, hops=1)])
    response = TestClient(app).get(
        "/info",
        headers={"X-Forwarded-For": "203.0.113.9, 198.51.100.4", "X-Forwarded-Proto": "https"},
    )

    assert response.json() == {"host": "198.51.100.4", "scheme": "https"}
