from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient
from starlette.middleware.authentication import AuthenticationMiddleware

from serenity.app import Application
from serenity.core.security import hash_password
from serenity.services.auth_service import AuthContextMiddleware
from tests.conftest import make_settings

PASSWORD = "correct-horse"


def register(client: TestClient, email: str = "ada@example.com", name: str = "Ada Lovelace"):
    return client.post("/api/v1/auth/register", json={"email": email, "password": PASSWORD, "name": name})


# ------------------------------------------------------------------ utility


def test_health_reports_ready_database(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["service"]["name"] == "Consulting Platform API"
    assert body["service"]["environment"] == "test"
    assert body["service"]["uptime"] >= 0
    assert body["database"] == {"status": "connected", "ready": True, "message": "Database connection is healthy"}
    assert set(body["memory"]) == {"rss", "heapTotal", "heapUsed"}
    assert all(value.endswith("MB") for value in body["memory"].values())


def test_health_reports_unavailable_database(application, client):
    asyncio.run(application.database.close())

    response = client.get("/health")

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"
    assert response.json()["database"]["ready"] is False


def test_unknown_route_is_404_with_path(client):
    response = client.get("/does-not-exist")

    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "NOT_FOUND"
    assert "/does-not-exist" in body["detail"]
    assert body["detail"] == "Can't find /does-not-exist on this server!"


def test_root_describes_service(client):
    body = client.get("/").json()

    assert body["status"] == "operational"
    assert body["documentation"] == "http://testserver/docs"
    assert body["endpoints"] == {"health": "/health", "api": "/api/v1"}


def test_docs_are_served(client):
    assert client.get("/docs").status_code == 200


def test_session_check_for_anonymous_visitor(client):
    body = client.get("/session-check").json()

    assert body["isAuthenticated"] is False
    assert body["user"] is None
    assert body["session"]["id"]
    assert body["session"]["cookie"]["httpOnly"] is True


def test_session_debug_only_in_development(client, tmp_path):
    assert client.get("/session-debug").status_code == 404

    application = Application(make_settings(tmp_path, APP_ENV="development"))
    asyncio.run(application.start())
    try:
        with TestClient(application.app) as dev_client:
            response = dev_client.get("/session-debug")
    finally:
        asyncio.run(application.stop())

    assert response.status_code == 200
    assert response.json()["authenticated"] is False


def test_security_headers_present(client):
    headers = client.get("/").headers

    assert headers["x-content-type-options"] == "nosniff"
    assert "content-security-policy" not in headers


def test_authentication_runs_inside_pipeline(application):
    classes = [middleware.cls for middleware in application.app.user_middleware]

    assert classes[-2:] == [AuthenticationMiddleware, AuthContextMiddleware]
    assert len(classes) == len(application.pipeline.stages) + 2


def test_requests_after_shutdown_get_503(application, client):
    asyncio.run(application.stop())

    response = client.get("/")

    assert response.status_code == 503
    assert response.json()["code"] == "SERVICE_UNAVAILABLE"


# --------------------------------------------------------------------- auth


def test_register_login_logout_flow(client):
    created = register(client)
    assert created.status_code == 201
    assert created.json()["data"]["email"] == "ada@example.com"

    me = client.get("/api/v1/auth/me")
    assert me.status_code == 200
    assert me.json()["data"]["name"] == "Ada Lovelace"

    check = client.get("/session-check").json()
    assert check["isAuthenticated"] is True
    assert check["user"]["role"] == "user"

    assert client.post("/api/v1/auth/logout").status_code == 200
    assert client.get("/api/v1/auth/me").status_code == 401

    bad = client.post("/api/v1/auth/login", json={"email": "ada@example.com", "password": "wrong-password"})
    assert bad.status_code == 401
    assert bad.json()["code"] == "UNAUTHENTICATED"

    good = client.post("/api/v1/auth/login", json={"email": "ADA@example.com", "password": PASSWORD})
    assert good.status_code == 200
    assert client.get("/api/v1/auth/me").status_code == 200


def test_register_validation_and_conflict(client):
    short = client.post("/api/v1/auth/register", json={"email": "x@example.com", "password": "short"})
    assert short.status_code == 400

    no_email = client.post("/api/v1/auth/register", json={"email": "nobody", "password": PASSWORD})
    assert no_email.status_code == 400

    assert register(client).status_code == 201
    client.post("/api/v1/auth/logout")
    duplicate = register(client)
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "CONFLICT"


def test_users_list_requires_admin(application, client):
    register(client)
    assert client.get("/api/v1/users").status_code == 403
    client.post("/api/v1/auth/logout")

    application.repository.create_user("root@example.com", hash_password(PASSWORD), role="admin")
    client.post("/api/v1/auth/login", json={"email": "root@example.com", "password": PASSWORD})
    response = client.get("/api/v1/users")

    assert response.status_code == 200
    assert response.json()["pagination"]["total"] == 2


def test_user_can_only_read_own_account(application, client):
    me = register(client).json()["data"]
    other = application.repository.create_user("bob@example.com", hash_password(PASSWORD))

    assert client.get(f"/api/v1/users/{me['id']}").status_code == 200
    assert client.get(f"/api/v1/users/{other.id}").status_code == 403


# ------------------------------------------------------------------ records


def test_record_crud_requires_authentication(client):
    assert client.post("/api/v1/teams", json={"name": "Core"}).status_code == 401

    register(client)
    created = client.post("/api/v1/teams", json={"name": "Core", "lead": "Ada"})
    assert created.status_code == 201
    team = created.json()["data"]
    assert team["name"] == "Core"

    listing = client.get("/api/v1/teams").json()
    assert listing["pagination"]["total"] == 1
    assert listing["data"][0]["id"] == team["id"]

    updated = client.patch(f"/api/v1/teams/{team['id']}", json={"name": "Platform"})
    assert updated.json()["data"]["name"] == "Platform"
    assert updated.json()["data"]["lead"] == "Ada"

    deleted = client.post(f"/api/v1/teams/{team['id']}?_method=DELETE")
    assert deleted.status_code == 200
    assert client.get(f"/api/v1/teams/{team['id']}").status_code == 404


def test_contact_is_public_but_listing_is_admin_only(client):
    created = client.post("/api/v1/contact", json={"email": "lead@example.com", "message": "Hi"})
    assert created.status_code == 201
    assert created.json()["data"]["createdBy"] is None

    assert client.get("/api/v1/contact").status_code == 401
    register(client)
    assert client.get("/api/v1/contact").status_code == 403


def test_sanitized_payload_reaches_handlers(client):
    register(client)
    created = client.post("/api/v1/projects", json={"name": "Audit", "$where": "1"})

    data = created.json()["data"]
    assert "_where" in data
    assert "$where" not in data
