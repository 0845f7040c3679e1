"""
Spend request lifecycle.

submit:  convert into the budget currency → create (pending) → evaluate → reserve on auto-approval → finalize
approve: pending → commit directly (was_reserved=False) → approved
reject:  pending → rejected (no ledger work)
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from fastapi import HTTPException, status as http_status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from budgetdesk.models.spend_request import SpendRequest
from budgetdesk.services import ledger_service
from budgetdesk.services.approval_engine import (
    AUTO_APPROVED,
    NO_BUDGET_REASON,
    PENDING,
    REJECTED,
    evaluate_request,
)
from budgetdesk.services.audit_service import SYSTEM_ACTOR
from budgetdesk.services.currency_service import convert_amount
from budgetdesk.services.budget_lookup import (
    budget_currency,
    find_matching_budgets,
    parse_uuid,
    pick_primary_budget,
)
from budgetdesk.services.ledger_service import LedgerResult
from budgetdesk.services.ledger_state import to_money

logger = structlog.get_logger()

AUTO_APPROVAL_FAILED_REASON = "Auto-approval failed, awaiting manual review"


@dataclass
class SubmitOutcome:
    request: SpendRequest
    status: str
    reason: str
    requires_approval: bool = False
    budget_reserved: bool = False
    available: Optional[Decimal] = None


@dataclass
class ManualDecisionOutcome:
    request: SpendRequest
    success: bool
    ledger: Optional[LedgerResult] = None


async def submit_request(
    session: AsyncSession,
    customer_id,
    supplier: str,
    description: str,
    amount,
    department: str,
    sub_category: Optional[str],
    fiscal_period: str,
    requester_id,
    currency: str = "USD",
) -> SubmitOutcome:
    amount = to_money(amount)
    if amount <= 0:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_AMOUNT", "message": "Amount must be greater than 0"},
        )

    requested_currency = (currency or "USD").upper()
    budgets = await find_matching_budgets(
        session, customer_id, department, sub_category, fiscal_period
    )
    # Ledger, pending sums and thresholds all work in the budget currency
    ledger_currency = budget_currency(budgets) if budgets else requested_currency
    ledger_amount = convert_amount(amount, requested_currency, ledger_currency)
    primary = pick_primary_budget(budgets, sub_category, ledger_amount)

    request = SpendRequest(
        id=uuid.uuid4(),
        customer_id=parse_uuid(customer_id, "Customer"),
        supplier=supplier,
        description=description,
        amount=ledger_amount,
        currency=ledger_currency,
        requested_amount=amount,
        requested_currency=requested_currency,
        budget_category=department,
        sub_category=sub_category,
        fiscal_period=fiscal_period,
        budget_id=primary.id if primary else None,
        status=PENDING,
        auto_approved=False,
        created_by_id=parse_uuid(requester_id, "User"),
    )
    session.add(request)
    await session.flush()

    if primary is None:
        request.status = REJECTED
        request.rejection_reason = NO_BUDGET_REASON
        request.decided_at = datetime.utcnow()
        await session.flush()
        logger.info(
            "request_submitted",
            request_id=str(request.id),
            status=REJECTED,
            reason="no_budget",
        )
        return SubmitOutcome(request=request, status=REJECTED, reason=NO_BUDGET_REASON)

    decision = await evaluate_request(
        session,
        customer_id,
        department,
        sub_category,
        fiscal_period,
        ledger_amount,
        requester_id,
        exclude_request_id=request.id,
    )

    if decision.outcome == AUTO_APPROVED:
        reserved = await ledger_service.reserve_budget(
            session,
            primary.id,
            ledger_amount,
            actor=SYSTEM_ACTOR,
            reason=f"Auto-approved request {request.id}",
            request_id=request.id,
        )
        if reserved.success:
            request.status = AUTO_APPROVED
            request.auto_approved = True
            request.approval_reason = decision.reason
            request.decided_at = datetime.utcnow()
            outcome = SubmitOutcome(
                request=request,
                status=AUTO_APPROVED,
                reason=decision.reason,
                budget_reserved=True,
                available=reserved.available,
            )
        else:
            request.approval_reason = AUTO_APPROVAL_FAILED_REASON
            outcome = SubmitOutcome(
                request=request,
                status=PENDING,
                reason=AUTO_APPROVAL_FAILED_REASON,
                requires_approval=True,
                available=reserved.available,
            )
    elif decision.outcome == REJECTED:
        request.status = REJECTED
        request.rejection_reason = decision.reason
        request.decided_at = datetime.utcnow()
        outcome = SubmitOutcome(
            request=request,
            status=REJECTED,
            reason=decision.reason,
            available=decision.available,
        )
    else:
        request.approval_reason = decision.reason
        outcome = SubmitOutcome(
            request=request,
            status=PENDING,
            reason=decision.reason,
            requires_approval=True,
            available=decision.available,
        )

    await session.flush()
    logger.info(
        "request_submitted",
        request_id=str(request.id),
        budget_id=str(primary.id),
        amount=str(ledger_amount),
        currency=ledger_currency,
        requested_amount=str(amount),
        requested_currency=requested_currency,
        status=outcome.status,
        budget_reserved=outcome.budget_reserved,
    )
    return outcome


async def get_request(session: AsyncSession, customer_id, request_id) -> SpendRequest:
    result = await session.execute(
        select(SpendRequest).where(
            SpendRequest.id == parse_uuid(request_id, "Request"),
            SpendRequest.customer_id == parse_uuid(customer_id, "Customer"),
        )
    )
    request = result.scalar_one_or_none()
    if not request:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={"code": "REQUEST_NOT_FOUND", "message": "Request not found"},
        )
    return request


async def _lock_pending(session: AsyncSession, customer_id, request_id) -> SpendRequest:
    result = await session.execute(
        select(SpendRequest)
        .where(
            SpendRequest.id == parse_uuid(request_id, "Request"),
            SpendRequest.customer_id == parse_uuid(customer_id, "Customer"),
        )
        .with_for_update()
    )
    request = result.scalar_one_or_none()
    if not request:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={"code": "REQUEST_NOT_FOUND", "message": "Request not found"},
        )
    if request.status != PENDING:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "INVALID_STATE",
                "message": f"Only pending requests can be decided (current: {request.status})",
            },
        )
    return request


async def approve_request(
    session: AsyncSession,
    customer_id,
    request_id,
    actor: str,
    reason: Optional[str] = None,
) -> ManualDecisionOutcome:
    """FP&A approval: commit the amount directly, then mark approved."""
    request = await _lock_pending(session, customer_id, request_id)
    if request.budget_id is None:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "REQUEST_HAS_NO_BUDGET",
                "message": "Request is not linked to a budget",
            },
        )

    committed = await ledger_service.commit_budget(
        session,
        request.budget_id,
        request.amount,
        was_reserved=False,
        actor=actor,
        reason=reason or f"Approved request {request.id}",
        request_id=request.id,
    )
    if not committed.success:
        logger.warning(
            "request_approval_insufficient",
            request_id=str(request.id),
            available=str(committed.available),
        )
        return ManualDecisionOutcome(request=request, success=False, ledger=committed)

    request.status = "approved"
    request.approval_reason = reason or f"Approved by {actor}"
    request.decided_at = datetime.utcnow()
    await session.flush()

    logger.info("request_approved", request_id=str(request.id), approved_by=actor)
    return ManualDecisionOutcome(request=request, success=True, ledger=committed)


async def reject_request(
    session: AsyncSession,
    customer_id,
    request_id,
    actor: str,
    reason: str,
) -> ManualDecisionOutcome:
    request = await _lock_pending(session, customer_id, request_id)
    request.status = REJECTED
    request.rejection_reason = reason
    request.decided_at = datetime.utcnow()
    await session.flush()

    logger.info("request_rejected", request_id=str(request.id), rejected_by=actor)
    return ManualDecisionOutcome(request=request, success=True)
