from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from budgetdesk.connectors.base import StaticRowSource
from budgetdesk.database import get_db
from budgetdesk.middleware.auth import get_current_user
from budgetdesk.middleware.authorization import FPA_ROLES, require_roles, require_sync_caller
from budgetdesk.schemas.common import PaginatedResponse, build_pagination
from budgetdesk.schemas.imports import SyncHistoryResponse, SyncRequest, SyncResponse
from budgetdesk.services import sync_service
from budgetdesk.services.audit_service import format_actor

router = APIRouter()


@router.post("", response_model=SyncResponse)
async def trigger_sync(
    body: SyncRequest,
    customer_id: Optional[str] = Query(None, description="Required for scheduler calls"),
    caller: dict = Depends(require_sync_caller),
    db: AsyncSession = Depends(get_db),
):
    is_scheduler = caller["role"] == "system"
    target_customer = customer_id if is_scheduler else caller["customer_id"]
    if not target_customer:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "CUSTOMER_REQUIRED", "message": "customer_id is required"},
        )

    result = await sync_service.run_sync(
        db,
        target_customer,
        StaticRowSource(body.rows, source_type=body.source_type),
        actor=format_actor(None if is_scheduler else caller),
        triggered_by="scheduler" if is_scheduler else "manual",
    )
    response = SyncResponse(
        sync_id=result.sync_id,
        status=result.status,
        total_rows=result.total_rows,
        created=result.created,
        updated=result.updated,
        unchanged=result.unchanged,
        soft_deleted=result.soft_deleted,
        errors=result.errors,
        duration_ms=result.duration_ms,
    )
    if result.status == "failed":
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode="json"),
        )
    return response


@router.get("/history", response_model=PaginatedResponse[SyncHistoryResponse])
async def sync_history(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await sync_service.list_sync_history(
        db, current_user["customer_id"], page, limit
    )
    items = [
        SyncHistoryResponse(
            id=str(h.id),
            sync_id=h.sync_id,
            source_type=h.source_type,
            status=h.status,
            triggered_by=h.triggered_by,
            started_at=h.started_at.isoformat() if h.started_at else "",
            ended_at=h.ended_at.isoformat() if h.ended_at else None,
            duration_ms=h.duration_ms or 0,
            total_rows=h.total_rows or 0,
            created_count=h.created_count or 0,
            updated_count=h.updated_count or 0,
            unchanged_count=h.unchanged_count or 0,
            soft_deleted_count=h.soft_deleted_count or 0,
            error_count=h.error_count or 0,
            errors=h.errors,
        )
        for h in rows
    ]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))
