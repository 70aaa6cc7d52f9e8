"""
Generic record routers for the business domains.

Each domain (teams, projects, blog, ...) stores its documents as ``records``
rows of one ``kind``; the handlers only enforce access rules and pagination.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from serenity.core.errors import NotFoundError, ValidationError
from serenity.db.models import Record
from serenity.repositories.sql_repository import SQLRepository
from serenity.routers.deps import get_repository, isoformat, request_payload
from serenity.services.auth_service import Identity, is_authenticated, require_role, require_user


def serialize_record(record: Record) -> dict:
    return {
        "id": record.id,
        **(record.data or {}),
        "createdBy": record.created_by,
        "createdAt": isoformat(record.created_at),
        "updatedAt": isoformat(record.updated_at),
    }


def build_resource_router(
    kind: str,
    *,
    public_create: bool = False,
    admin_read: bool = False,
    success_flash: str | None = None,
) -> APIRouter:
    """
    List/get/create/update/delete handlers for one record kind.

    ``public_create`` lets anonymous visitors submit (newsletter, contact);
    ``admin_read`` restricts reading to administrators.
    """
    router = APIRouter(prefix=f"/{kind}", tags=[kind])
    read_guard = [Depends(require_role("admin"))] if admin_read else []

    @router.get("", dependencies=read_guard)
    async def list_items(
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        repository: SQLRepository = Depends(get_repository),
    ):
        items, total = await run_in_threadpool(repository.list_records, kind, limit=limit, offset=(page - 1) * limit)
        return {
            "success": True,
            "data": [serialize_record(item) for item in items],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    @router.get("/{item_id}", dependencies=read_guard)
    async def get_item(item_id: str, repository: SQLRepository = Depends(get_repository)):
        record = await run_in_threadpool(repository.get_record, kind, item_id)
        if record is None:
            raise NotFoundError(f"No {kind} entry with id {item_id}")
        return {"success": True, "data": serialize_record(record)}

    @router.post("", status_code=201)
    async def create_item(request: Request, repository: SQLRepository = Depends(get_repository)):
        if not public_create:
            require_user(request)
        payload = request_payload(request)
        if not payload:
            raise ValidationError("Request body must not be empty")
        created_by = request.user.id if is_authenticated(request) else None
        record = await run_in_threadpool(repository.create_record, kind, payload, created_by=created_by)
        flash = getattr(request.state, "flash", None)
        if success_flash and flash is not None:
            flash.add("success", success_flash)
        return JSONResponse(status_code=201, content={"success": True, "data": serialize_record(record)})

    async def update_item(item_id: str, request: Request, repository: SQLRepository = Depends(get_repository), _user: Identity = Depends(require_user)):
        payload = request_payload(request)
        if not payload:
            raise ValidationError("Request body must not be empty")
        record = await run_in_threadpool(repository.update_record, kind, item_id, payload)
        if record is None:
            raise NotFoundError(f"No {kind} entry with id {item_id}")
        return {"success": True, "data": serialize_record(record)}

    router.add_api_route("/{item_id}", update_item, methods=["PATCH", "PUT"])

    @router.delete("/{item_id}")
    async def delete_item(item_id: str, repository: SQLRepository = Depends(get_repository), _user: Identity = Depends(require_user)):
        deleted = await run_in_threadpool(repository.delete_record, kind, item_id)
        if not deleted:
            raise NotFoundError(f"No {kind} entry with id {item_id}")
        return {"success": True, "data": None}

    return router
