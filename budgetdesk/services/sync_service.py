"""
Reconciling budget sync.

The source set and the stored set are compared by natural key
(department, sub_category, fiscal_period):

  in source, not stored          → create
  in source, stored, differs     → update
  in source, stored soft-deleted → restore
  in source, stored, same        → unchanged
  stored (this source), missing  → soft delete

The diff is a pure function; run_sync applies it and records SyncHistory.
"""

from dataclasses import dataclass, field
from datetime import datetime
import time
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
import structlog

from budgetdesk.connectors.base import BudgetRow, BudgetRowSource, parse_row
from budgetdesk.models.budget import Budget
from budgetdesk.models.sync_history import SyncHistory
from budgetdesk.services import budget_service
from budgetdesk.services.budget_lookup import parse_uuid
from budgetdesk.services.ledger_state import to_money

logger = structlog.get_logger()


@dataclass
class SyncPlan:
    create: list = field(default_factory=list)
    update: list = field(default_factory=list)
    restore: list = field(default_factory=list)
    unchanged: list = field(default_factory=list)
    soft_delete: list = field(default_factory=list)
    errors: list = field(default_factory=list)


def _budget_key(budget) -> tuple:
    return budget_service.natural_key(budget.department, budget.sub_category, budget.fiscal_period)


def _differs(budget, row: BudgetRow) -> bool:
    return (
        to_money(budget.budgeted_amount) != row.budgeted_amount
        or (budget.currency or "USD") != row.currency
    )


def diff_budget_sets(existing: list, incoming: list[BudgetRow], source_type: str) -> SyncPlan:
    """
    Three-way diff. Every stored budget participates in matching; only
    budgets owned by source_type are soft-deleted when absent. When a key
    is stored twice the live row wins.
    """
    by_key: dict[tuple, object] = {}
    for b in existing:
        key = _budget_key(b)
        current = by_key.get(key)
        if current is None or (current.deleted_at is not None and b.deleted_at is None):
            by_key[key] = b

    plan = SyncPlan()
    seen: set[tuple] = set()
    for row in incoming:
        if row.key in seen:
            plan.errors.append({"budget": "|".join(str(p or "") for p in row.key),
                                "error": "Duplicate row in source", "severity": "error"})
            continue
        seen.add(row.key)

        budget = by_key.get(row.key)
        if budget is None:
            plan.create.append(row)
        elif budget.deleted_at is not None:
            plan.restore.append((budget, row))
        elif _differs(budget, row):
            plan.update.append((budget, row))
        else:
            plan.unchanged.append((budget, row))

    for key, budget in by_key.items():
        if key not in seen and budget.deleted_at is None and budget.source == source_type:
            plan.soft_delete.append(budget)

    return plan


@dataclass
class SyncResult:
    sync_id: str
    status: str
    total_rows: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    soft_deleted: int = 0
    errors: list = field(default_factory=list)
    duration_ms: int = 0


async def _apply_plan(
    session: AsyncSession, customer_id, plan: SyncPlan, source_type: str, actor: str,
    result: SyncResult,
) -> None:
    reason = f"Synced from {source_type}"

    for row in plan.create:
        await budget_service.create_budget(
            session, customer_id, row.department, row.sub_category, row.fiscal_period,
            row.budgeted_amount, row.currency, actor=actor, source=source_type,
            reason=reason,
        )
        result.created += 1

    for budget, row in plan.update + plan.restore:
        try:
            outcome = await budget_service.apply_row_to_budget(
                session, budget, row.budgeted_amount, row.currency, actor=actor,
                reason=reason,
            )
        except ValueError as e:
            result.errors.append({"budget": "|".join(str(p or "") for p in row.key),
                                  "error": str(e), "severity": "error"})
            continue
        if outcome == budget_service.ROW_UNCHANGED:
            result.unchanged += 1
        else:
            result.updated += 1

    result.unchanged += len(plan.unchanged)

    for budget in plan.soft_delete:
        await budget_service.soft_delete_budget(
            session, budget, actor=actor,
            reason=f"No longer present in {source_type} source",
        )
        result.soft_deleted += 1


async def run_sync(
    session: AsyncSession,
    customer_id,
    source: BudgetRowSource,
    actor: str,
    triggered_by: str = "manual",
) -> SyncResult:
    customer_uuid = parse_uuid(customer_id, "Customer")
    sync_id = f"sync_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
    started_at = datetime.utcnow()
    started = time.monotonic()
    result = SyncResult(sync_id=sync_id, status="success")

    logger.info("budget_sync_started", sync_id=sync_id, source_type=source.source_type)

    try:
        raw_rows = await source.fetch_rows(customer_id)
        result.total_rows = len(raw_rows)

        rows: list[BudgetRow] = []
        for index, raw in enumerate(raw_rows, start=1):
            try:
                rows.append(parse_row(raw))
            except ValueError as e:
                result.errors.append({"row": index, "error": str(e), "severity": "error"})

        existing = await session.execute(
            select(Budget)
            .options(joinedload(Budget.utilization))
            .where(Budget.customer_id == customer_uuid)
            .with_for_update(of=Budget)
        )
        plan = diff_budget_sets(list(existing.unique().scalars().all()), rows, source.source_type)
        result.errors.extend(plan.errors)

        await _apply_plan(session, customer_id, plan, source.source_type, actor, result)
        result.status = "partial" if result.errors else "success"
    except (SQLAlchemyError, OSError) as e:
        await session.rollback()
        result = SyncResult(
            sync_id=sync_id,
            status="failed",
            total_rows=result.total_rows,
            errors=[{"error": str(e) or e.__class__.__name__, "severity": "fatal"}],
        )
        logger.error("budget_sync_failed", sync_id=sync_id, error=str(e))

    result.duration_ms = int((time.monotonic() - started) * 1000)
    session.add(SyncHistory(
        sync_id=sync_id,
        customer_id=customer_uuid,
        source_type=source.source_type,
        status=result.status,
        triggered_by=triggered_by,
        started_at=started_at,
        ended_at=datetime.utcnow(),
        duration_ms=result.duration_ms,
        total_rows=result.total_rows,
        created_count=result.created,
        updated_count=result.updated,
        unchanged_count=result.unchanged,
        soft_deleted_count=result.soft_deleted,
        error_count=len(result.errors),
        errors=result.errors or None,
    ))
    await session.flush()

    logger.info(
        "budget_sync_completed",
        sync_id=sync_id,
        status=result.status,
        created=result.created,
        updated=result.updated,
        unchanged=result.unchanged,
        soft_deleted=result.soft_deleted,
        errors=len(result.errors),
    )
    return result


async def list_sync_history(
    session: AsyncSession, customer_id, page: int, limit: int
) -> tuple[list[SyncHistory], int]:
    customer_uuid = parse_uuid(customer_id, "Customer")
    total = (
        await session.execute(
            select(func.count(SyncHistory.id)).where(SyncHistory.customer_id == customer_uuid)
        )
    ).scalar() or 0
    result = await session.execute(
        select(SyncHistory)
        .where(SyncHistory.customer_id == customer_uuid)
        .order_by(SyncHistory.started_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total
