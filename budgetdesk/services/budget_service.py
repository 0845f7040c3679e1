"""
Budget administration: create, update, hard delete, duplicate cleanup,
dashboard statistics.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from fastapi import HTTPException, status as http_status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
import structlog

from budgetdesk.models.budget import Budget, BudgetUtilization
from budgetdesk.services.audit_service import create_audit_log
from budgetdesk.services.budget_lookup import parse_uuid, state_of
from budgetdesk.services.ledger_service import lock_budget
from budgetdesk.services.ledger_state import (
    HUNDRED,
    ZERO,
    LedgerState,
    health_label,
    to_money,
)

logger = structlog.get_logger()


def natural_key(department: str, sub_category: Optional[str], fiscal_period: str) -> tuple:
    return (department, sub_category or None, fiscal_period)


def duplicate_conflict() -> HTTPException:
    return HTTPException(
        status_code=http_status.HTTP_409_CONFLICT,
        detail={
            "code": "BUDGET_EXISTS",
            "message": "Budget already exists for this department/category/period",
        },
    )


async def create_budget(
    session: AsyncSession,
    customer_id,
    department: str,
    sub_category: Optional[str],
    fiscal_period: str,
    budgeted_amount: Decimal,
    currency: str,
    actor: str,
    source: str = "manual",
    reason: str = "Manual creation",
) -> Budget:
    """Create a budget with a zeroed utilization row and a CREATE audit entry."""
    customer_uuid = parse_uuid(customer_id, "Customer")
    sub_filter = (
        Budget.sub_category == sub_category
        if sub_category
        else Budget.sub_category.is_(None)
    )
    existing = await session.execute(
        select(Budget.id).where(
            Budget.customer_id == customer_uuid,
            Budget.department == department,
            sub_filter,
            Budget.fiscal_period == fiscal_period,
        )
    )
    # Soft-deleted rows still hold the natural key; import or sync restores them
    if existing.first():
        raise duplicate_conflict()

    budget = Budget(
        id=uuid.uuid4(),
        customer_id=customer_uuid,
        department=department,
        sub_category=sub_category or None,
        fiscal_period=fiscal_period,
        budgeted_amount=to_money(budgeted_amount),
        currency=currency,
        source=source,
    )
    budget.utilization = BudgetUtilization(committed_amount=ZERO, reserved_amount=ZERO)
    session.add(budget)
    await session.flush()

    await create_audit_log(
        session,
        budget_id=budget.id,
        action="CREATE",
        old_value=None,
        new_value=str(budget.budgeted_amount),
        changed_by=actor,
        reason=reason,
    )
    logger.info(
        "budget_created",
        budget_id=str(budget.id),
        department=department,
        sub_category=sub_category,
        fiscal_period=fiscal_period,
        amount=str(budgeted_amount),
        source=source,
    )
    return budget


async def update_budget_amount(
    session: AsyncSession,
    budget_id,
    budgeted_amount: Decimal,
    actor: str,
    currency: Optional[str] = None,
    reason: str = "Manual update",
    customer_id=None,
) -> Budget:
    """Change the budgeted amount; never below committed + reserved."""
    budget = await lock_budget(session, budget_id, customer_id=customer_id)
    state = state_of(budget)
    minimum = state.committed + state.reserved
    new_amount = to_money(budgeted_amount)

    if new_amount < minimum:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "BUDGET_BELOW_MINIMUM",
                "message": f"Cannot reduce budget below committed + reserved ({minimum})",
                "minimum": str(minimum),
            },
        )

    old_amount = to_money(budget.budgeted_amount)
    budget.budgeted_amount = new_amount
    if currency:
        budget.currency = currency
    budget.updated_at = datetime.utcnow()
    await session.flush()

    await create_audit_log(
        session,
        budget_id=budget.id,
        action="UPDATE",
        old_value=str(old_amount),
        new_value=str(new_amount),
        changed_by=actor,
        reason=reason,
    )
    logger.info(
        "budget_updated",
        budget_id=str(budget.id),
        old_amount=str(old_amount),
        new_amount=str(new_amount),
    )
    return budget


async def delete_budget(
    session: AsyncSession, budget_id, actor: str, customer_id=None
) -> None:
    """
    Hard delete. Only allowed when nothing is committed or reserved; the
    utilization row and audit history go with it.
    """
    budget = await lock_budget(
        session, budget_id, include_deleted=True, customer_id=customer_id
    )
    state = state_of(budget)
    if state.committed > ZERO or state.reserved > ZERO:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "BUDGET_IN_USE",
                "message": "Cannot delete budget with active commitments or reservations",
                "committed": str(state.committed),
                "reserved": str(state.reserved),
            },
        )

    await session.delete(budget)
    await session.flush()
    logger.info("budget_deleted", budget_id=str(budget_id), deleted_by=actor)


# ---------- Row application (import / sync) ----------

ROW_CREATED = "created"
ROW_UPDATED = "updated"
ROW_RESTORED = "restored"
ROW_UNCHANGED = "unchanged"


async def apply_row_to_budget(
    session: AsyncSession,
    budget: Budget,
    amount: Decimal,
    currency: str,
    actor: str,
    reason: str,
) -> str:
    """
    Bring an existing budget in line with an incoming row. Restores a
    soft-deleted budget. Raises ValueError when the new amount would drop
    below committed + reserved.
    """
    state = state_of(budget)
    minimum = state.committed + state.reserved
    amount = to_money(amount)
    if amount < minimum:
        raise ValueError(
            f"Cannot reduce budget below committed + reserved ({minimum})"
        )

    restored = budget.deleted_at is not None
    changed = amount != to_money(budget.budgeted_amount) or currency != budget.currency
    if not restored and not changed:
        return ROW_UNCHANGED

    old_amount = to_money(budget.budgeted_amount)
    budget.budgeted_amount = amount
    budget.currency = currency
    budget.deleted_at = None
    budget.updated_at = datetime.utcnow()
    if budget.utilization is None:
        budget.utilization = BudgetUtilization(committed_amount=ZERO, reserved_amount=ZERO)
    await session.flush()

    await create_audit_log(
        session,
        budget_id=budget.id,
        action="UPDATE",
        old_value=str(old_amount),
        new_value=str(amount),
        changed_by=actor,
        reason=f"{reason} (restored)" if restored else reason,
    )
    return ROW_RESTORED if restored else ROW_UPDATED


async def soft_delete_budget(
    session: AsyncSession, budget: Budget, actor: str, reason: str
) -> None:
    budget.deleted_at = datetime.utcnow()
    await session.flush()
    await create_audit_log(
        session,
        budget_id=budget.id,
        action="UPDATE",
        old_value=str(budget.budgeted_amount),
        new_value=str(budget.budgeted_amount),
        changed_by=actor,
        reason=reason,
    )
    logger.info("budget_soft_deleted", budget_id=str(budget.id), reason=reason)


# ---------- Duplicates ----------


@dataclass
class DuplicateGroup:
    key: tuple
    keep: Budget
    remove: list = field(default_factory=list)
    unresolved: list = field(default_factory=list)

    @property
    def budgets(self) -> list:
        return [self.keep, *self.remove, *self.unresolved]


def _is_used(budget: Budget) -> bool:
    state = state_of(budget)
    return state.committed > ZERO or state.reserved > ZERO


def plan_duplicate_cleanup(budgets: list[Budget]) -> list[DuplicateGroup]:
    """
    Group live budgets by natural key. Per group keep the first budget with
    utilization, else the oldest; other unused budgets are removed, other
    used budgets are left in place and reported as unresolved.
    """
    groups: dict[tuple, list[Budget]] = {}
    for b in sorted(budgets, key=lambda b: (b.created_at or datetime.min)):
        groups.setdefault(natural_key(b.department, b.sub_category, b.fiscal_period), []).append(b)

    plans = []
    for key, members in groups.items():
        if len(members) < 2:
            continue
        keep = next((b for b in members if _is_used(b)), members[0])
        group = DuplicateGroup(key=key, keep=keep)
        for b in members:
            if b is keep:
                continue
            if _is_used(b):
                group.unresolved.append(b)
            else:
                group.remove.append(b)
        plans.append(group)
    return plans


async def _load_live_budgets(session: AsyncSession, customer_id) -> list[Budget]:
    result = await session.execute(
        select(Budget)
        .options(joinedload(Budget.utilization))
        .where(
            Budget.customer_id == parse_uuid(customer_id, "Customer"),
            Budget.deleted_at == None,  # noqa: E711
        )
        .order_by(Budget.department, Budget.sub_category, Budget.fiscal_period, Budget.created_at)
    )
    return list(result.unique().scalars().all())


async def find_duplicates(session: AsyncSession, customer_id) -> list[DuplicateGroup]:
    return plan_duplicate_cleanup(await _load_live_budgets(session, customer_id))


async def cleanup_duplicates(
    session: AsyncSession, customer_id, actor: str
) -> tuple[list[DuplicateGroup], int]:
    groups = await find_duplicates(session, customer_id)
    deleted = 0
    for group in groups:
        for budget in group.remove:
            await session.delete(budget)
            deleted += 1
    await session.flush()

    logger.info(
        "budget_duplicates_cleaned",
        groups=len(groups),
        deleted=deleted,
        unresolved=sum(len(g.unresolved) for g in groups),
        cleaned_by=actor,
    )
    return groups, deleted


# ---------- Dashboard ----------


def summarize_budgets(budgets: list[Budget]) -> dict:
    """Totals, health distribution and the list of critical budgets."""
    total = LedgerState(budgeted=ZERO)
    health = {"healthy": 0, "warning": 0, "high-risk": 0, "critical": 0}
    critical = []

    for b in budgets:
        state = state_of(b)
        total = total + state
        pct = state.utilization_percent
        label = health_label(pct)
        health[label] += 1
        if label == "critical":
            critical.append({
                "id": str(b.id),
                "department": b.department,
                "sub_category": b.sub_category,
                "fiscal_period": b.fiscal_period,
                "total_budget": state.budgeted,
                "utilized": state.committed + state.reserved,
                "available": state.available,
                "utilization_percent": pct,
            })

    total_pct = (
        (total.committed + total.reserved) / total.budgeted * HUNDRED
        if total.budgeted > ZERO
        else ZERO
    )
    return {
        "summary": {
            "total_budget": total.budgeted,
            "total_committed": total.committed,
            "total_reserved": total.reserved,
            "total_available": total.available,
            "total_utilization_percent": total_pct,
        },
        "health": health,
        "critical_budgets": critical,
        "total_budgets": len(budgets),
    }


async def dashboard_stats(
    session: AsyncSession,
    customer_id,
    fiscal_period: Optional[str] = None,
    source: Optional[str] = None,
) -> dict:
    q = (
        select(Budget)
        .options(joinedload(Budget.utilization))
        .where(
            Budget.customer_id == parse_uuid(customer_id, "Customer"),
            Budget.deleted_at == None,  # noqa: E711
        )
    )
    if fiscal_period:
        q = q.where(Budget.fiscal_period == fiscal_period)
    if source:
        q = q.where(Budget.source == source)

    result = await session.execute(q)
    return summarize_budgets(list(result.unique().scalars().all()))
