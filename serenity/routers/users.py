from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool

from serenity.core.errors import NotFoundError, PermissionDeniedError
from serenity.db.models import User
from serenity.repositories.sql_repository import SQLRepository
from serenity.routers.deps import get_repository, isoformat
from serenity.services.auth_service import Identity, require_role, require_user

router = APIRouter(prefix="/users", tags=["users"])


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.full_name,
        "role": user.role,
        "isActive": bool(user.is_active),
        "createdAt": isoformat(user.created_at),
    }


@router.get("")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    repository: SQLRepository = Depends(get_repository),
    _admin: Identity = Depends(require_role("admin")),
):
    users, total = await run_in_threadpool(repository.list_users, limit=limit, offset=(page - 1) * limit)
    return {
        "success": True,
        "data": [serialize_user(user) for user in users],
        "pagination": {"page": page, "limit": limit, "total": total},
    }


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    repository: SQLRepository = Depends(get_repository),
    identity: Identity = Depends(require_user),
):
    if identity.id != user_id and identity.role != "admin":
        raise PermissionDeniedError("You can only view your own account")
    user = await run_in_threadpool(repository.get_user, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return {"success": True, "data": serialize_user(user)}
