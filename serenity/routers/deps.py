"""Request-scoped dependencies shared by the routers."""
from __future__ import annotations

from typing import Any

from fastapi import Request

from serenity.core.errors import ServiceUnavailableError, ValidationError
from serenity.repositories.sql_repository import SQLRepository
from serenity.services.auth_service import Authenticator


def get_repository(request: Request) -> SQLRepository:
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        raise ServiceUnavailableError("Data store is not available")
    return repository


def get_authenticator(request: Request) -> Authenticator:
    authenticator = getattr(request.app.state, "authenticator", None)
    if authenticator is None:
        raise ServiceUnavailableError("Authentication is not initialized")
    return authenticator


def request_payload(request: Request) -> dict[str, Any]:
    """Parsed body from the pipeline; only JSON objects / form fields are accepted."""
    body = getattr(request.state, "body", None)
    if body is None or body == {}:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be an object")
    return {key: value for key, value in body.items() if key != "_method"}


def isoformat(value) -> str | None:
    if value is None:
        return None
    text = value.isoformat()
    if value.tzinfo is None:
        text += "Z"
    return text.replace("+00:00", "Z")
