"""
Auto-approval threshold policy.

Lookup order for a department:
  1. customer override row (approval_thresholds)
  2. AUTO_APPROVAL_THRESHOLDS from settings
  3. DEFAULT_AUTO_APPROVAL_THRESHOLD
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from budgetdesk.config import settings
from budgetdesk.models.approval_threshold import ApprovalThreshold
from budgetdesk.services.budget_lookup import parse_uuid
from budgetdesk.services.ledger_state import to_money

logger = structlog.get_logger()


def default_threshold(department: str) -> Decimal:
    configured = settings.AUTO_APPROVAL_THRESHOLDS.get(department)
    if configured is None:
        return to_money(settings.DEFAULT_AUTO_APPROVAL_THRESHOLD)
    return to_money(configured)


async def get_auto_approval_threshold(
    session: AsyncSession, customer_id, department: str
) -> Decimal:
    result = await session.execute(
        select(ApprovalThreshold.amount).where(
            ApprovalThreshold.customer_id == parse_uuid(customer_id, "Customer"),
            ApprovalThreshold.department == department,
        )
    )
    override = result.scalar_one_or_none()
    if override is not None:
        return to_money(override)
    return default_threshold(department)


async def list_thresholds(session: AsyncSession, customer_id) -> dict[str, dict]:
    """Effective policy: configured departments merged with customer overrides."""
    policy = {
        dept: {"amount": to_money(amount), "source": "default"}
        for dept, amount in settings.AUTO_APPROVAL_THRESHOLDS.items()
    }
    result = await session.execute(
        select(ApprovalThreshold).where(
            ApprovalThreshold.customer_id == parse_uuid(customer_id, "Customer")
        )
    )
    for row in result.scalars().all():
        policy[row.department] = {"amount": to_money(row.amount), "source": "override"}
    return policy


async def set_threshold(
    session: AsyncSession,
    customer_id,
    department: str,
    amount: Decimal,
    updated_by: str,
) -> ApprovalThreshold:
    customer_uuid = parse_uuid(customer_id, "Customer")
    result = await session.execute(
        select(ApprovalThreshold)
        .where(
            ApprovalThreshold.customer_id == customer_uuid,
            ApprovalThreshold.department == department,
        )
        .with_for_update()
    )
    row = result.scalar_one_or_none()
    previous = to_money(row.amount) if row else default_threshold(department)

    if row is None:
        row = ApprovalThreshold(
            customer_id=customer_uuid,
            department=department,
            amount=amount,
            updated_by=updated_by,
        )
        session.add(row)
    else:
        row.amount = amount
        row.updated_by = updated_by
        row.updated_at = datetime.utcnow()

    await session.flush()
    logger.info(
        "approval_threshold_updated",
        department=department,
        previous=str(previous),
        amount=str(amount),
        updated_by=updated_by,
    )
    return row
