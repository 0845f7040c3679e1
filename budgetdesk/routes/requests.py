from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from budgetdesk.database import get_db
from budgetdesk.middleware.auth import get_current_user
from budgetdesk.middleware.authorization import FPA_ROLES, require_roles
from budgetdesk.models.spend_request import SpendRequest
from budgetdesk.schemas.common import PaginatedResponse, build_pagination
from budgetdesk.schemas.spend_request import (
    ApproveRequest,
    ManualDecisionResponse,
    RejectRequest,
    SpendRequestCreate,
    SpendRequestResponse,
    SubmitResponse,
)
from budgetdesk.services import request_service
from budgetdesk.services.approval_engine import REJECTED
from budgetdesk.services.audit_service import format_actor
from budgetdesk.services.budget_lookup import parse_uuid

logger = structlog.get_logger()
router = APIRouter()


def _to_response(r: SpendRequest) -> SpendRequestResponse:
    return SpendRequestResponse(
        id=str(r.id),
        customer_id=str(r.customer_id),
        supplier=r.supplier,
        description=r.description,
        amount=r.amount,
        currency=r.currency or "USD",
        requested_amount=r.requested_amount,
        requested_currency=r.requested_currency,
        budget_category=r.budget_category,
        sub_category=r.sub_category,
        fiscal_period=r.fiscal_period,
        budget_id=str(r.budget_id) if r.budget_id else None,
        status=r.status,
        auto_approved=bool(r.auto_approved),
        approval_reason=r.approval_reason,
        rejection_reason=r.rejection_reason,
        created_by_id=str(r.created_by_id),
        created_at=r.created_at.isoformat() if r.created_at else "",
        updated_at=r.updated_at.isoformat() if r.updated_at else "",
        decided_at=r.decided_at.isoformat() if r.decided_at else None,
    )


@router.post("/submit", response_model=SubmitResponse)
async def submit_request(
    body: SpendRequestCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    outcome = await request_service.submit_request(
        db,
        current_user["customer_id"],
        supplier=body.supplier,
        description=body.description,
        amount=body.amount,
        department=body.department,
        sub_category=body.sub_category,
        fiscal_period=body.fiscal_period,
        requester_id=current_user["user_id"],
        currency=body.currency.upper(),
    )
    return SubmitResponse(
        success=outcome.status != REJECTED,
        request=_to_response(outcome.request),
        status=outcome.status,
        reason=outcome.reason,
        requires_approval=outcome.requires_approval,
        budget_reserved=outcome.budget_reserved,
        available=outcome.available,
    )


@router.get("", response_model=PaginatedResponse[SpendRequestResponse])
async def list_requests(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
    department: Optional[str] = Query(None),
    budget_id: Optional[str] = Query(None),
    mine: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """FP&A roles see every request of the customer; other users see their own."""
    customer_id = parse_uuid(current_user["customer_id"], "Customer")
    q = select(SpendRequest).where(SpendRequest.customer_id == customer_id)
    count_q = select(func.count(SpendRequest.id)).where(SpendRequest.customer_id == customer_id)

    if mine or current_user["role"] not in FPA_ROLES:
        creator = parse_uuid(current_user["user_id"], "User")
        q = q.where(SpendRequest.created_by_id == creator)
        count_q = count_q.where(SpendRequest.created_by_id == creator)
    if status:
        q = q.where(SpendRequest.status == status)
        count_q = count_q.where(SpendRequest.status == status)
    if department:
        q = q.where(SpendRequest.budget_category == department)
        count_q = count_q.where(SpendRequest.budget_category == department)
    if budget_id:
        budget_uuid = parse_uuid(budget_id)
        q = q.where(SpendRequest.budget_id == budget_uuid)
        count_q = count_q.where(SpendRequest.budget_id == budget_uuid)

    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        q.order_by(SpendRequest.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(r) for r in result.scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{request_id}", response_model=SpendRequestResponse)
async def get_request(
    request_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    spend_request = await request_service.get_request(
        db, current_user["customer_id"], request_id
    )
    return _to_response(spend_request)


@router.post("/{request_id}/approve", response_model=ManualDecisionResponse)
async def approve_request(
    request_id: str,
    body: ApproveRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    outcome = await request_service.approve_request(
        db,
        current_user["customer_id"],
        request_id,
        actor=format_actor(current_user),
        reason=body.comment,
    )
    ledger = outcome.ledger
    return ManualDecisionResponse(
        success=outcome.success,
        request=_to_response(outcome.request),
        error=ledger.error_code if ledger else None,
        available=ledger.available if ledger else None,
        requested=ledger.requested if ledger else None,
    )


@router.post("/{request_id}/reject", response_model=ManualDecisionResponse)
async def reject_request(
    request_id: str,
    body: RejectRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    outcome = await request_service.reject_request(
        db,
        current_user["customer_id"],
        request_id,
        actor=format_actor(current_user),
        reason=body.reason,
    )
    return ManualDecisionResponse(success=True, request=_to_response(outcome.request))
