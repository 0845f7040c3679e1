import csv
import io
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from budgetdesk.database import get_db
from budgetdesk.middleware.auth import get_current_user
from budgetdesk.middleware.authorization import FPA_ROLES, require_roles
from budgetdesk.models.audit_log import AUDIT_ACTIONS, AuditLog
from budgetdesk.models.budget import Budget
from budgetdesk.schemas.audit_log import AuditLogResponse
from budgetdesk.schemas.common import PaginatedResponse, build_pagination
from budgetdesk.services.budget_lookup import parse_uuid

router = APIRouter()

EXPORT_ROW_LIMIT = 10_000


def _filtered(
    q,
    customer_id: str,
    budget_id: Optional[str],
    action: Optional[str],
    from_date: Optional[date],
    to_date: Optional[date],
):
    # Audit rows belong to a customer through their budget
    q = q.join(Budget, Budget.id == AuditLog.budget_id).where(
        Budget.customer_id == parse_uuid(customer_id, "Customer")
    )
    if budget_id:
        q = q.where(AuditLog.budget_id == parse_uuid(budget_id))
    if action:
        q = q.where(AuditLog.action == action.upper())
    if from_date:
        q = q.where(AuditLog.created_at >= datetime.combine(from_date, datetime.min.time()))
    if to_date:
        q = q.where(AuditLog.created_at <= datetime.combine(to_date, datetime.max.time()))
    return q


@router.get("", response_model=PaginatedResponse[AuditLogResponse])
async def list_audit_logs(
    budget_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None, pattern="(?i)^(" + "|".join(AUDIT_ACTIONS) + ")$"),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(50, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    args = (current_user["customer_id"], budget_id, action, from_date, to_date)
    total = (await db.execute(_filtered(select(func.count(AuditLog.id)), *args))).scalar() or 0
    result = await db.execute(
        _filtered(select(AuditLog), *args)
        .order_by(AuditLog.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    logs = result.scalars().all()

    items = [
        AuditLogResponse(
            id=str(log.id),
            budget_id=str(log.budget_id),
            action=log.action,
            old_value=log.old_value,
            new_value=log.new_value,
            changed_by=log.changed_by,
            reason=log.reason,
            request_id=str(log.request_id) if log.request_id else None,
            created_at=log.created_at.isoformat() if log.created_at else "",
        )
        for log in logs
    ]

    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/export")
async def export_audit_logs(
    budget_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None, pattern="(?i)^(" + "|".join(AUDIT_ACTIONS) + ")$"),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Export audit logs as CSV. Max 10,000 rows."""
    q = _filtered(
        select(AuditLog, Budget.department, Budget.sub_category, Budget.fiscal_period),
        current_user["customer_id"], budget_id, action, from_date, to_date,
    )
    result = await db.execute(q.order_by(AuditLog.created_at.desc()).limit(EXPORT_ROW_LIMIT))

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "created_at", "budget_id", "department", "sub_category", "fiscal_period",
        "action", "old_value", "new_value", "changed_by", "reason", "request_id",
    ])
    for log, department, sub_category, fiscal_period in result.all():
        writer.writerow([
            log.created_at.isoformat() if log.created_at else "",
            str(log.budget_id),
            department,
            sub_category or "",
            fiscal_period,
            log.action,
            log.old_value or "",
            log.new_value or "",
            log.changed_by,
            log.reason or "",
            str(log.request_id) if log.request_id else "",
        ])

    filename = f"audit_logs_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.csv"
    return Response(
        content=output.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
