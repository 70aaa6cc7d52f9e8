from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import pytest

# Make the serenity package importable without installing it
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_ENV", "test")

from fastapi.testclient import TestClient

from serenity.app import Application
from serenity.core.config import Settings, load_settings


def make_settings(tmp_path: Path | None = None, **env: str) -> Settings:
    """Settings for tests; keyword arguments are environment variable names."""
    base = {
        "APP_ENV": "test",
        "APP_NAME": "Consulting Platform API",
        "APP_URL": "http://testserver",
        "DATABASE_URL": f"sqlite:///{tmp_path / 'serenity.db'}" if tmp_path else "sqlite://",
        "LOG_FORMAT": "console",
        "CORS_ORIGINS": "http://app.example.com",
    }
    if tmp_path is not None:
        base["UPLOADS_DIR"] = str(tmp_path / "uploads")
        base["PUBLIC_DIR"] = str(tmp_path / "public")
    base.update(env)
    return load_settings(base)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture()
def application(settings):
    app = Application(settings)
    asyncio.run(app.start())
    yield app
    if not app.is_shutting_down:
        asyncio.run(app.stop())


@pytest.fixture()
def client(application):
    with TestClient(application.app) as test_client:
        yield test_client
