"""
Budget ledger service: check, reserve, commit, release, status.

Mutations lock the budget row (SELECT ... FOR UPDATE), plan the change with
the pure functions in ledger_state, write the utilization row and append an
audit log in the same session. All functions use the caller's session
(flush, no commit). get_db() commits.

Insufficient budget is returned as LedgerResult(success=False), never raised.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException, status as http_status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
import structlog

from budgetdesk.config import settings
from budgetdesk.models.budget import Budget, BudgetUtilization
from budgetdesk.services.approval_engine import AUTO_APPROVED, decide
from budgetdesk.services.audit_service import create_audit_log, format_ledger_value
from budgetdesk.services.budget_lookup import (
    budget_currency,
    build_snapshot,
    find_department_siblings,
    find_matching_budgets,
    parse_uuid,
    state_of,
    sum_pending_requests,
)
from budgetdesk.services.currency_service import convert_amount
from budgetdesk.services.ledger_state import (
    RELEASE_BUCKETS,
    LedgerPlan,
    LedgerState,
    ZERO,
    health_label,
    plan_commit,
    plan_release,
    plan_reserve,
    to_money,
)
from budgetdesk.services.threshold_service import get_auto_approval_threshold

logger = structlog.get_logger()


@dataclass
class LedgerResult:
    success: bool
    budget_id: str
    requested: Decimal
    committed: Decimal
    reserved: Decimal
    available: Decimal
    error_code: Optional[str] = None
    message: Optional[str] = None


@dataclass
class BudgetCheckResult:
    found: bool
    available: bool
    requested: Decimal
    reason: str
    currency: Optional[str] = None
    budget_id: Optional[str] = None
    total_budget: Decimal = ZERO
    committed: Decimal = ZERO
    reserved: Decimal = ZERO
    pending_amount: Decimal = ZERO
    available_amount: Decimal = ZERO
    utilization_percent: Decimal = ZERO
    can_auto_approve: bool = False
    auto_approval_threshold: Optional[Decimal] = None
    siblings: list[dict] = field(default_factory=list)


def _require_positive(amount) -> Decimal:
    amount = to_money(amount)
    if amount <= ZERO:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_AMOUNT", "message": "Amount must be positive"},
        )
    return amount


def _result_from_plan(budget_id, plan: LedgerPlan) -> LedgerResult:
    after = plan.after
    return LedgerResult(
        success=plan.success,
        budget_id=str(budget_id),
        requested=plan.requested,
        committed=after.committed,
        reserved=after.reserved,
        available=after.available,
        error_code=None if plan.success else "INSUFFICIENT_BUDGET",
        message=plan.message,
    )


async def lock_budget(
    session: AsyncSession, budget_id, include_deleted: bool = False, customer_id=None
) -> Budget:
    """Load a budget and its utilization row under a row lock, or 404."""
    q = (
        select(Budget)
        .options(joinedload(Budget.utilization))
        .where(Budget.id == parse_uuid(budget_id))
        .with_for_update(of=Budget)
    )
    if not include_deleted:
        q = q.where(Budget.deleted_at == None)  # noqa: E711
    if customer_id is not None:
        q = q.where(Budget.customer_id == parse_uuid(customer_id, "Customer"))

    result = await session.execute(q)
    budget = result.unique().scalar_one_or_none()
    if not budget:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={"code": "BUDGET_NOT_FOUND", "message": "Budget not found"},
        )
    return budget


def _ensure_utilization(session: AsyncSession, budget: Budget) -> BudgetUtilization:
    if budget.utilization is None:
        util = BudgetUtilization(
            budget_id=budget.id, committed_amount=ZERO, reserved_amount=ZERO
        )
        session.add(util)
        budget.utilization = util
    return budget.utilization


async def _apply_plan(
    session: AsyncSession,
    budget: Budget,
    plan: LedgerPlan,
    action: str,
    actor: str,
    reason: Optional[str],
    request_id,
) -> None:
    util = _ensure_utilization(session, budget)
    util.committed_amount = plan.after.committed
    util.reserved_amount = plan.after.reserved
    await session.flush()

    await create_audit_log(
        session,
        budget_id=budget.id,
        action=action,
        old_value=format_ledger_value(plan.before.committed, plan.before.reserved),
        new_value=format_ledger_value(plan.after.committed, plan.after.reserved),
        changed_by=actor,
        reason=reason,
        request_id=request_id,
    )


async def reserve_budget(
    session: AsyncSession,
    budget_id,
    amount,
    actor: str,
    reason: Optional[str] = None,
    request_id=None,
    customer_id=None,
) -> LedgerResult:
    """Soft-hold amount against the budget (reserved += amount)."""
    amount = _require_positive(amount)
    budget = await lock_budget(session, budget_id, customer_id=customer_id)
    plan = plan_reserve(state_of(budget), amount)

    if not plan.success:
        logger.warning(
            "budget_reserve_insufficient",
            budget_id=str(budget.id),
            requested=str(amount),
            available=str(plan.before.available),
        )
        return _result_from_plan(budget.id, plan)

    await _apply_plan(
        session, budget, plan, "RESERVE", actor,
        reason or f"Reserved {amount}", request_id,
    )
    logger.info(
        "budget_reserved",
        budget_id=str(budget.id),
        amount=str(amount),
        reserved=str(plan.after.reserved),
        request_id=str(request_id) if request_id else None,
    )
    return _result_from_plan(budget.id, plan)


async def commit_budget(
    session: AsyncSession,
    budget_id,
    amount,
    was_reserved: bool,
    actor: str,
    reason: Optional[str] = None,
    request_id=None,
    customer_id=None,
) -> LedgerResult:
    """
    Hard-lock amount. With was_reserved the amount is moved out of reserved
    first; without it the amount is committed directly.
    """
    amount = _require_positive(amount)
    budget = await lock_budget(session, budget_id, customer_id=customer_id)
    plan = plan_commit(state_of(budget), amount, was_reserved)

    if not plan.success:
        logger.warning(
            "budget_commit_insufficient",
            budget_id=str(budget.id),
            requested=str(amount),
            was_reserved=was_reserved,
        )
        return _result_from_plan(budget.id, plan)

    await _apply_plan(
        session, budget, plan, "COMMIT", actor,
        reason or f"Committed {amount}", request_id,
    )
    logger.info(
        "budget_committed",
        budget_id=str(budget.id),
        amount=str(amount),
        was_reserved=was_reserved,
        committed=str(plan.after.committed),
        reserved=str(plan.after.reserved),
    )
    return _result_from_plan(budget.id, plan)


async def release_budget(
    session: AsyncSession,
    budget_id,
    amount,
    bucket: str,
    actor: str,
    reason: Optional[str] = None,
    request_id=None,
    customer_id=None,
) -> LedgerResult:
    """Return amount from the committed or reserved bucket, clamped at zero."""
    amount = _require_positive(amount)
    if bucket not in RELEASE_BUCKETS:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "INVALID_RELEASE_TYPE",
                "message": f"type must be one of: {', '.join(RELEASE_BUCKETS)}",
            },
        )

    budget = await lock_budget(
        session, budget_id, include_deleted=True, customer_id=customer_id
    )
    plan = plan_release(state_of(budget), amount, bucket)

    await _apply_plan(
        session, budget, plan, "RELEASE", actor,
        reason or f"Released {amount} from {bucket}", request_id,
    )
    logger.info(
        "budget_released",
        budget_id=str(budget.id),
        amount=str(amount),
        bucket=bucket,
        committed=str(plan.after.committed),
        reserved=str(plan.after.reserved),
    )
    return _result_from_plan(budget.id, plan)


def _sibling_view(budget: Budget) -> dict:
    return {
        "id": str(budget.id),
        "sub_category": budget.sub_category,
        "fiscal_period": budget.fiscal_period,
        "budgeted_amount": to_money(budget.budgeted_amount),
        "currency": budget.currency,
    }


async def check_budget(
    session: AsyncSession,
    customer_id,
    department: str,
    sub_category: Optional[str],
    fiscal_period: str,
    amount,
    currency: str = "USD",
) -> BudgetCheckResult:
    """
    Read-only availability check. Without sub_category every live budget of
    the department/period is aggregated.
    """
    amount = _require_positive(amount)
    budgets = await find_matching_budgets(
        session, customer_id, department, sub_category, fiscal_period
    )

    if not budgets:
        siblings = await find_department_siblings(session, customer_id, department)
        logger.info(
            "budget_check_not_found",
            department=department,
            sub_category=sub_category,
            fiscal_period=fiscal_period,
            sibling_count=len(siblings),
        )
        return BudgetCheckResult(
            found=False,
            available=False,
            requested=amount,
            currency=currency,
            reason="No budget found for this department/category",
            siblings=[_sibling_view(b) for b in siblings],
        )

    pending = await sum_pending_requests(session, [b.id for b in budgets])
    requested = convert_amount(amount, currency, budget_currency(budgets))
    snapshot = build_snapshot(budgets, pending, sub_category, requested)
    threshold = await get_auto_approval_threshold(session, customer_id, department)
    decision = decide(
        snapshot, requested, threshold, to_money(settings.CRITICAL_UTILIZATION_PERCENT)
    )

    is_available = requested <= snapshot.effective_available
    state = snapshot.state
    return BudgetCheckResult(
        found=True,
        available=is_available,
        requested=requested,
        currency=snapshot.currency,
        budget_id=snapshot.primary_budget_id,
        total_budget=state.budgeted,
        committed=state.committed,
        reserved=state.reserved,
        pending_amount=pending,
        available_amount=snapshot.effective_available,
        utilization_percent=state.utilization_percent,
        can_auto_approve=decision.outcome == AUTO_APPROVED,
        auto_approval_threshold=threshold,
        reason="Budget available" if is_available else decision.reason,
    )


async def get_budget_status(session: AsyncSession, budget_id, customer_id=None) -> dict:
    q = (
        select(Budget)
        .options(joinedload(Budget.utilization))
        .where(Budget.id == parse_uuid(budget_id))
    )
    if customer_id is not None:
        q = q.where(Budget.customer_id == parse_uuid(customer_id, "Customer"))
    result = await session.execute(q)
    budget = result.unique().scalar_one_or_none()
    if not budget:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={"code": "BUDGET_NOT_FOUND", "message": "Budget not found"},
        )

    state: LedgerState = state_of(budget)
    pct = state.utilization_percent
    return {
        "id": str(budget.id),
        "department": budget.department,
        "sub_category": budget.sub_category,
        "fiscal_period": budget.fiscal_period,
        "currency": budget.currency,
        "total_budget": state.budgeted,
        "committed": state.committed,
        "reserved": state.reserved,
        "available": state.available,
        "utilization_percent": pct,
        "status": health_label(pct),
        "deleted": budget.deleted_at is not None,
        "created_at": budget.created_at,
        "updated_at": budget.updated_at,
    }
