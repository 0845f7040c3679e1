"""
Budget resolution helpers shared by the ledger, the decision engine and the
request lifecycle.

All functions use the caller's session and never write.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
import uuid

from fastapi import HTTPException, status as http_status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
import structlog

from budgetdesk.config import settings
from budgetdesk.models.budget import Budget
from budgetdesk.models.spend_request import SpendRequest
from budgetdesk.services.ledger_state import (
    ZERO,
    BudgetSnapshot,
    LedgerState,
    to_money,
)

logger = structlog.get_logger()


def parse_uuid(value, label: str = "Budget") -> uuid.UUID:
    """Parse an id from the outside world; malformed ids are treated as absent."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={
                "code": f"{label.upper()}_NOT_FOUND",
                "message": f"{label} not found",
            },
        )


def state_of(budget: Budget) -> LedgerState:
    util = budget.utilization
    return LedgerState(
        budgeted=to_money(budget.budgeted_amount),
        committed=to_money(util.committed_amount) if util else ZERO,
        reserved=to_money(util.reserved_amount) if util else ZERO,
    )


async def find_matching_budgets(
    session: AsyncSession,
    customer_id,
    department: str,
    sub_category: Optional[str],
    fiscal_period: str,
) -> list[Budget]:
    """
    Exact match when sub_category is given; otherwise every live budget of the
    department for the period (department-wide aggregate).
    """
    q = (
        select(Budget)
        .options(joinedload(Budget.utilization))
        .where(
            Budget.customer_id == parse_uuid(customer_id, "Customer"),
            Budget.department == department,
            Budget.fiscal_period == fiscal_period,
            Budget.deleted_at == None,  # noqa: E711
        )
    )
    if sub_category:
        q = q.where(Budget.sub_category == sub_category)

    result = await session.execute(q.order_by(Budget.created_at))
    return list(result.unique().scalars().all())


async def find_department_siblings(
    session: AsyncSession, customer_id, department: str
) -> list[Budget]:
    """Every live budget of a department, used to explain a failed lookup."""
    result = await session.execute(
        select(Budget).where(
            Budget.customer_id == parse_uuid(customer_id, "Customer"),
            Budget.department == department,
            Budget.deleted_at == None,  # noqa: E711
        ).order_by(Budget.fiscal_period, Budget.sub_category)
    )
    return list(result.scalars().all())


async def sum_pending_requests(
    session: AsyncSession,
    budget_ids: list,
    exclude_request_id=None,
    now: Optional[datetime] = None,
) -> Decimal:
    """Sum of pending requests against the budgets inside the pending window."""
    if not budget_ids:
        return ZERO
    cutoff = (now or datetime.utcnow()) - timedelta(
        hours=settings.PENDING_REQUEST_WINDOW_HOURS
    )
    q = select(func.coalesce(func.sum(SpendRequest.amount), 0)).where(
        SpendRequest.budget_id.in_(budget_ids),
        SpendRequest.status == "pending",
        SpendRequest.created_at >= cutoff,
    )
    if exclude_request_id is not None:
        q = q.where(SpendRequest.id != exclude_request_id)

    result = await session.execute(q)
    return to_money(result.scalar() or 0)


def budget_currency(budgets: list[Budget]) -> str:
    """Currency an aggregate is evaluated in: that of the first matched budget."""
    return (budgets[0].currency if budgets else None) or "USD"


def pick_primary_budget(
    budgets: list[Budget],
    sub_category: Optional[str],
    amount: Optional[Decimal] = None,
) -> Optional[Budget]:
    """
    The single budget a request is linked to and reserved against.

    Exact selectors have at most one match. For a department-wide aggregate
    the department-level budget (no sub-category) wins when it can hold
    amount on its own, else the one with the most available capacity. The
    result may still be too small; decide() checks primary_available.
    """
    if not budgets:
        return None
    if sub_category or len(budgets) == 1:
        return budgets[0]

    department_level = next((b for b in budgets if b.sub_category is None), None)
    if department_level is not None and (
        amount is None or state_of(department_level).available >= amount
    ):
        return department_level
    return max(budgets, key=lambda b: state_of(b).available)


def build_snapshot(
    budgets: list[Budget],
    pending_amount: Decimal,
    sub_category: Optional[str],
    amount: Optional[Decimal] = None,
) -> Optional[BudgetSnapshot]:
    if not budgets:
        return None

    state = LedgerState(budgeted=ZERO)
    for b in budgets:
        state = state + state_of(b)

    currencies = {b.currency for b in budgets}
    if len(currencies) > 1:
        logger.warning(
            "budget_aggregate_mixed_currency",
            currencies=sorted(currencies),
            budget_count=len(budgets),
        )

    primary = pick_primary_budget(budgets, sub_category, amount)
    return BudgetSnapshot(
        budget_ids=tuple(str(b.id) for b in budgets),
        primary_budget_id=str(primary.id) if primary else None,
        state=state,
        pending_amount=pending_amount,
        currency=budget_currency(budgets),
        primary_available=state_of(primary).available if primary else None,
    )


async def load_budget_snapshot(
    session: AsyncSession,
    customer_id,
    department: str,
    sub_category: Optional[str],
    fiscal_period: str,
    exclude_request_id=None,
    amount: Optional[Decimal] = None,
) -> Optional[BudgetSnapshot]:
    budgets = await find_matching_budgets(
        session, customer_id, department, sub_category, fiscal_period
    )
    if not budgets:
        return None
    pending = await sum_pending_requests(
        session, [b.id for b in budgets], exclude_request_id=exclude_request_id
    )
    return build_snapshot(budgets, pending, sub_category, amount)


async def find_by_natural_key(
    session: AsyncSession,
    customer_id,
    department: str,
    sub_category: Optional[str],
    fiscal_period: str,
) -> Optional[Budget]:
    """Locked lookup by (department, sub_category, fiscal_period), soft-deleted included."""
    sub_filter = (
        Budget.sub_category == sub_category
        if sub_category
        else Budget.sub_category.is_(None)
    )
    result = await session.execute(
        select(Budget)
        .options(joinedload(Budget.utilization))
        .where(
            Budget.customer_id == parse_uuid(customer_id, "Customer"),
            Budget.department == department,
            sub_filter,
            Budget.fiscal_period == fiscal_period,
        )
        .order_by(Budget.deleted_at.nulls_first(), Budget.created_at)
        .with_for_update(of=Budget)
    )
    return result.unique().scalars().first()
