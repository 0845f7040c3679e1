"""
Auto-approval decision engine.

Rules, in order:
  1. no matching budget                      → rejected
  2. amount > available - pending (48h)      → rejected
  3. amount > department threshold           → pending (FP&A approval)
  4. utilization >= CRITICAL_UTILIZATION     → pending (FP&A review)
  5. no single matched budget holds amount   → pending (FP&A split)
  6. requester missing or inactive           → rejected
  7. otherwise                               → auto_approved

decide() covers rules 1-5 and is free of I/O; evaluate_request() loads the
snapshot, threshold and requester and applies rule 6.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from budgetdesk.config import settings
from budgetdesk.models.user import User
from budgetdesk.services.budget_lookup import load_budget_snapshot
from budgetdesk.services.ledger_state import BudgetSnapshot, to_money
from budgetdesk.services.threshold_service import get_auto_approval_threshold

logger = structlog.get_logger()

AUTO_APPROVED = "auto_approved"
PENDING = "pending"
REJECTED = "rejected"

NO_BUDGET_REASON = "No budget found for this department/category"
INACTIVE_REQUESTER_REASON = "Requester account is inactive"
NO_SINGLE_BUDGET_REASON = (
    "No single budget in this department can hold the full amount. "
    "Requires FP&A approval."
)


@dataclass(frozen=True)
class Decision:
    outcome: str
    reason: str
    available: Optional[Decimal] = None
    pending_amount: Optional[Decimal] = None
    threshold: Optional[Decimal] = None
    utilization_percent: Optional[Decimal] = None
    threshold_exceeded: bool = False
    budget_id: Optional[str] = None

    @property
    def is_auto_approved(self) -> bool:
        return self.outcome == AUTO_APPROVED


def _money(value: Decimal) -> str:
    return f"${value:,.2f}"


def decide(
    snapshot: Optional[BudgetSnapshot],
    amount: Decimal,
    threshold: Decimal,
    critical_percent: Decimal,
) -> Decision:
    if snapshot is None:
        return Decision(outcome=REJECTED, reason=NO_BUDGET_REASON)

    effective = snapshot.effective_available
    utilization = snapshot.state.utilization_percent
    common = dict(
        available=effective,
        pending_amount=snapshot.pending_amount,
        threshold=threshold,
        utilization_percent=utilization,
        budget_id=snapshot.primary_budget_id,
    )

    if amount > effective:
        return Decision(
            outcome=REJECTED,
            reason=(
                f"Insufficient budget. Available: {_money(effective)}, "
                f"Requested: {_money(amount)}. Please contact FP&A team."
            ),
            **common,
        )

    if amount > threshold:
        return Decision(
            outcome=PENDING,
            reason=(
                f"Amount exceeds auto-approval threshold of {_money(threshold)}. "
                "Requires FP&A approval."
            ),
            threshold_exceeded=True,
            **common,
        )

    if utilization >= critical_percent:
        return Decision(
            outcome=PENDING,
            reason=(
                f"Budget is {utilization:.0f}% utilized (critical). "
                "Requires FP&A review."
            ),
            **common,
        )

    if snapshot.primary_available is not None and amount > snapshot.primary_available:
        return Decision(outcome=PENDING, reason=NO_SINGLE_BUDGET_REASON, **common)

    return Decision(
        outcome=AUTO_APPROVED,
        reason=f"Budget available. Auto-approved for {_money(amount)}.",
        **common,
    )


async def _requester_is_active(session: AsyncSession, requester_id) -> bool:
    if requester_id is None:
        return False
    result = await session.execute(select(User).where(User.id == requester_id))
    user = result.scalar_one_or_none()
    return bool(user and user.is_active)


async def evaluate_request(
    session: AsyncSession,
    customer_id,
    department: str,
    sub_category: Optional[str],
    fiscal_period: str,
    amount: Decimal,
    requester_id,
    exclude_request_id=None,
) -> Decision:
    """amount must already be in the currency of the matched budgets."""
    amount = to_money(amount)
    snapshot = await load_budget_snapshot(
        session,
        customer_id,
        department,
        sub_category,
        fiscal_period,
        exclude_request_id=exclude_request_id,
        amount=amount,
    )
    threshold = await get_auto_approval_threshold(session, customer_id, department)
    decision = decide(
        snapshot,
        amount,
        threshold,
        to_money(settings.CRITICAL_UTILIZATION_PERCENT),
    )

    if decision.is_auto_approved and not await _requester_is_active(session, requester_id):
        decision = Decision(
            outcome=REJECTED,
            reason=INACTIVE_REQUESTER_REASON,
            available=decision.available,
            pending_amount=decision.pending_amount,
            threshold=decision.threshold,
            utilization_percent=decision.utilization_percent,
            budget_id=decision.budget_id,
        )

    logger.info(
        "request_evaluated",
        department=department,
        sub_category=sub_category,
        fiscal_period=fiscal_period,
        amount=str(amount),
        outcome=decision.outcome,
        budget_id=decision.budget_id,
    )
    return decision
