from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from serenity.core.errors import AuthenticationError, ValidationError
from serenity.core.logging import get_logger
from serenity.core.security import hash_password
from serenity.repositories.sql_repository import SQLRepository
from serenity.routers.deps import get_authenticator, get_repository, request_payload
from serenity.services.auth_service import Authenticator, Identity, require_user

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

MIN_PASSWORD_LENGTH = 8


def _credentials(payload: dict) -> tuple[str, str]:
    email = str(payload.get("email") or "").strip().lower()
    password = str(payload.get("password") or "")
    if not email or "@" not in email:
        raise ValidationError("A valid email is required", details={"field": "email"})
    return email, password


@router.post("/register", status_code=201)
async def register(
    request: Request,
    repository: SQLRepository = Depends(get_repository),
    authenticator: Authenticator = Depends(get_authenticator),
):
    payload = request_payload(request)
    email, password = _credentials(payload)
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            details={"field": "password"},
        )
    full_name = (str(payload.get("name") or payload.get("full_name") or "").strip()) or None
    password_hash = await run_in_threadpool(hash_password, password)
    user = await run_in_threadpool(repository.create_user, email, password_hash, full_name=full_name)
    identity = Identity.from_user(user)
    authenticator.login(request, identity)
    logger.info("User registered", user_id=identity.id)
    return JSONResponse(status_code=201, content={"success": True, "data": identity.to_dict()})


@router.post("/login")
async def login(request: Request, authenticator: Authenticator = Depends(get_authenticator)):
    email, password = _credentials(request_payload(request))
    identity = await authenticator.authenticate(email, password)
    if identity is None:
        logger.warning("Login failed", email=email)
        raise AuthenticationError("Invalid email or password")
    authenticator.login(request, identity)
    logger.info("User logged in", user_id=identity.id)
    return {"success": True, "data": identity.to_dict()}


@router.post("/logout")
async def logout(request: Request, authenticator: Authenticator = Depends(get_authenticator)):
    authenticator.logout(request)
    return {"success": True, "message": "Logged out"}


@router.get("/me")
async def me(identity: Identity = Depends(require_user)):
    return {"success": True, "data": identity.to_dict()}
