from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from budgetdesk.database import get_db
from budgetdesk.middleware.auth import get_current_user
from budgetdesk.middleware.authorization import FPA_ROLES, require_roles
from budgetdesk.schemas.ledger import (
    BudgetBreakdown,
    BudgetCheckRequest,
    BudgetCheckResponse,
    BudgetStatusResponse,
    CommitRequest,
    LedgerResponse,
    ReleaseRequest,
    ReserveRequest,
    SiblingBudget,
)
from budgetdesk.services import ledger_service, request_service
from budgetdesk.services.audit_service import format_actor
from budgetdesk.services.ledger_service import BudgetCheckResult, LedgerResult

logger = structlog.get_logger()
router = APIRouter()


def _ledger_response(result: LedgerResult) -> LedgerResponse:
    return LedgerResponse(
        success=result.success,
        budget_id=result.budget_id,
        requested=result.requested,
        committed=result.committed,
        reserved=result.reserved,
        available=result.available,
        error=result.error_code,
        message=result.message,
    )


def _check_response(result: BudgetCheckResult) -> BudgetCheckResponse:
    breakdown = None
    if result.found:
        breakdown = BudgetBreakdown(
            total_budget=result.total_budget,
            committed=result.committed,
            reserved=result.reserved,
            pending=result.pending_amount,
            available=result.available_amount,
            utilization_percent=result.utilization_percent,
        )
    return BudgetCheckResponse(
        found=result.found,
        available=result.available,
        requested=result.requested,
        currency=result.currency,
        budget_id=result.budget_id,
        breakdown=breakdown,
        can_auto_approve=result.can_auto_approve,
        auto_approval_threshold=result.auto_approval_threshold,
        reason=result.reason,
        siblings=[SiblingBudget(**s) for s in result.siblings],
    )


@router.post("/check", response_model=BudgetCheckResponse)
async def check_budget(
    body: BudgetCheckRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await ledger_service.check_budget(
        db,
        current_user["customer_id"],
        body.department,
        body.sub_category,
        body.fiscal_period,
        body.amount,
        body.currency,
    )
    return _check_response(result)


@router.post("/reserve", response_model=LedgerResponse)
async def reserve_budget(
    body: ReserveRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    result = await ledger_service.reserve_budget(
        db,
        body.budget_id,
        body.amount,
        actor=format_actor(current_user),
        reason=body.reason,
        request_id=body.request_id,
        customer_id=current_user["customer_id"],
    )
    return _ledger_response(result)


@router.post("/commit", response_model=LedgerResponse)
async def commit_budget(
    body: CommitRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    result = await ledger_service.commit_budget(
        db,
        body.budget_id,
        body.amount,
        was_reserved=body.was_reserved,
        actor=format_actor(current_user),
        reason=body.reason,
        request_id=body.request_id,
        customer_id=current_user["customer_id"],
    )
    return _ledger_response(result)


@router.post("/release", response_model=LedgerResponse)
async def release_budget(
    body: ReleaseRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """FP&A roles may release anything; a requester may release against their own request."""
    if current_user["role"] not in FPA_ROLES:
        if not body.request_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "message": "Only FP&A or the original requester can release budget",
                    }
                },
            )
        spend_request = await request_service.get_request(
            db, current_user["customer_id"], body.request_id
        )
        if (
            str(spend_request.created_by_id) != str(current_user["user_id"])
            or str(spend_request.budget_id) != str(body.budget_id)
        ):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "message": "Only FP&A or the original requester can release budget",
                    }
                },
            )

    result = await ledger_service.release_budget(
        db,
        body.budget_id,
        body.amount,
        bucket=body.type,
        actor=format_actor(current_user),
        reason=body.reason,
        request_id=body.request_id,
        customer_id=current_user["customer_id"],
    )
    return _ledger_response(result)


@router.get("/status/{budget_id}", response_model=BudgetStatusResponse)
async def get_budget_status(
    budget_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    data = await ledger_service.get_budget_status(
        db, budget_id, customer_id=current_user["customer_id"]
    )
    return BudgetStatusResponse(
        **{
            **data,
            "created_at": data["created_at"].isoformat() if data["created_at"] else "",
            "updated_at": data["updated_at"].isoformat() if data["updated_at"] else "",
        }
    )
