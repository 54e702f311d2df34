"""REST routes for payees and categories, scoped to the calling owner."""
import asyncio
import logging
from typing import Optional, Type

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from api.middleware.auth_middleware import get_current_owner
from api.schemas.response_schemas import RecordListResponse
from config.settings import settings
from core.errors import InputValidationError
from core.dependencies import AppContainer, get_container
from database.repositories.record_repo import (
    DEFAULT_READ_LIMIT,
    RecordNotFoundError,
    RecordRepository,
)
from models.action import EntityKind
from models.category import CategoryCreate, CategoryUpdate
from models.payee import PayeeCreate, PayeeUpdate
from utils.validation import is_valid_uuid

logger = logging.getLogger(__name__)


def _not_found(kind: EntityKind, record_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{kind.value} {record_id} not found",
    )


def _check_id(kind: EntityKind, record_id: str) -> None:
    if not is_valid_uuid(record_id):
        raise _not_found(kind, record_id)


def build_record_router(
    kind: EntityKind,
    create_model: Type[BaseModel],
    update_model: Type[BaseModel],
) -> APIRouter:
    """CRUD router for one record kind. Store errors surface as 500s via the app handlers."""
    router = APIRouter()

    def get_records(
        owner_id: str = Depends(get_current_owner),
        container: AppContainer = Depends(get_container),
    ) -> RecordRepository:
        return container.records_for(owner_id)

    async def _bounded(coro):
        return await asyncio.wait_for(coro, timeout=settings.DB_TIMEOUT)

    @router.get("", response_model=RecordListResponse)
    async def list_records(
        search: Optional[str] = Query(None, max_length=255),
        limit: int = Query(DEFAULT_READ_LIMIT, ge=1, le=100),
        records: RecordRepository = Depends(get_records),
    ):
        items = await _bounded(records.read(kind, {"query": search, "limit": limit}))
        return RecordListResponse(items=items, count=len(items))

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_record(
        body: create_model,  # type: ignore[valid-type]
        records: RecordRepository = Depends(get_records),
    ):
        record = await _bounded(records.create(kind, body.model_dump(exclude_none=True)))
        logger.info(f"Created {kind.value} {record.get('id')}")
        return record

    @router.get("/{record_id}")
    async def get_record(
        record_id: str,
        records: RecordRepository = Depends(get_records),
    ):
        _check_id(kind, record_id)
        record = await _bounded(records.get(kind, record_id))
        if record is None:
            raise _not_found(kind, record_id)
        return record

    @router.patch("/{record_id}")
    async def update_record(
        record_id: str,
        body: update_model,  # type: ignore[valid-type]
        records: RecordRepository = Depends(get_records),
    ):
        _check_id(kind, record_id)
        patch = body.model_dump(exclude_unset=True)
        if not patch:
            raise InputValidationError("No fields to update")
        try:
            return await _bounded(records.update(kind, record_id, patch))
        except RecordNotFoundError:
            raise _not_found(kind, record_id)

    @router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_record(
        record_id: str,
        records: RecordRepository = Depends(get_records),
    ):
        _check_id(kind, record_id)
        result = await _bounded(records.delete(kind, record_id))
        if not result.get("success"):
            raise _not_found(kind, record_id)

    return router


payees_router = build_record_router(EntityKind.PAYEE, PayeeCreate, PayeeUpdate)
categories_router = build_record_router(EntityKind.CATEGORY, CategoryCreate, CategoryUpdate)
