from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from budgetdesk.database import get_db
from budgetdesk.middleware.auth import get_current_user
from budgetdesk.middleware.authorization import FPA_ROLES, require_roles
from budgetdesk.schemas.common import PaginatedResponse, build_pagination
from budgetdesk.schemas.imports import ImportHistoryResponse, ImportRequest, ImportResponse
from budgetdesk.connectors.base import StaticRowSource
from budgetdesk.services import import_service
from budgetdesk.services.audit_service import format_actor

router = APIRouter()


@router.post("", response_model=ImportResponse)
async def run_import(
    body: ImportRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    result = await import_service.run_import(
        db,
        current_user["customer_id"],
        StaticRowSource(body.rows, source_type=body.source_type),
        imported_by_id=current_user["user_id"],
        actor=format_actor(current_user),
        file_name=body.file_name,
    )
    response = ImportResponse(
        success=result.success,
        import_id=result.import_id,
        total_rows=result.total_rows,
        success_count=result.success_count,
        failure_count=result.failure_count,
        created_count=result.created_count,
        updated_count=result.updated_count,
        errors=result.errors,
        message=result.message,
    )
    if not result.success:
        # Returned rather than raised so the failed history row is committed
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode="json"),
        )
    return response


@router.get("/history", response_model=PaginatedResponse[ImportHistoryResponse])
async def import_history(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await import_service.list_import_history(
        db, current_user["customer_id"], page, limit
    )
    items = [
        ImportHistoryResponse(
            id=str(h.id),
            source_type=h.source_type,
            file_name=h.file_name,
            total_rows=h.total_rows or 0,
            success_count=h.success_count or 0,
            failure_count=h.failure_count or 0,
            errors=h.errors,
            status=h.status,
            imported_by_id=str(h.imported_by_id),
            created_at=h.created_at.isoformat() if h.created_at else "",
            completed_at=h.completed_at.isoformat() if h.completed_at else None,
        )
        for h in rows
    ]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))
