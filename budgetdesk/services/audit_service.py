"""Audit trail service: append-only record of every budget ledger mutation."""

from decimal import Decimal
from typing import Optional
from datetime import datetime
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from budgetdesk.models.audit_log import AuditLog, AUDIT_ACTIONS

logger = structlog.get_logger()

SYSTEM_ACTOR = "system"


def _to_uuid(value, field_name: str, required: bool = False) -> Optional[uuid.UUID]:
    if value is None:
        if required:
            raise ValueError(f"{field_name} is required")
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        if required:
            raise ValueError(f"{field_name} must be a valid UUID")
        logger.warning("audit_invalid_uuid", field=field_name, value=str(value))
        return None


def format_actor(user: Optional[dict]) -> str:
    """Render an identity claims dict as the changed_by string."""
    if not user:
        return SYSTEM_ACTOR
    name = user.get("name")
    email = user.get("email")
    if name and email:
        return f"{name} ({email})"
    return email or name or str(user.get("user_id") or SYSTEM_ACTOR)


def format_ledger_value(committed: Decimal, reserved: Decimal) -> str:
    return f"committed:{committed},reserved:{reserved}"


async def create_audit_log(
    session: AsyncSession,
    budget_id,
    action: str,
    old_value: Optional[str],
    new_value: Optional[str],
    changed_by: str,
    reason: Optional[str] = None,
    request_id=None,
) -> AuditLog:
    """
    Append an audit row.

    Uses session.flush(); the caller owns the transaction, so the row commits
    or rolls back together with the ledger write it describes.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    audit = AuditLog(
        budget_id=_to_uuid(budget_id, "budget_id", required=True),
        action=action,
        old_value=old_value,
        new_value=new_value,
        changed_by=changed_by or SYSTEM_ACTOR,
        reason=reason,
        request_id=_to_uuid(request_id, "request_id"),
        created_at=datetime.utcnow(),
    )
    session.add(audit)
    await session.flush()

    logger.info(
        "audit_log_created",
        action=action,
        budget_id=str(budget_id),
        changed_by=audit.changed_by,
    )
    return audit
