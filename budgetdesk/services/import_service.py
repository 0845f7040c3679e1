"""
Bulk budget import.

Rows are upserted by (department, sub_category, fiscal_period) inside the
request transaction, bounded by IMPORT_TRANSACTION_TIMEOUT_SECONDS. Rows that
fail validation are collected; more than IMPORT_MAX_ROW_FAILURES of them, a
timeout, or any database error aborts the batch: the session is rolled back
(or its connection invalidated after a timeout) and only a failed
ImportHistory row is written.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from budgetdesk.config import settings
from budgetdesk.database import set_statement_timeout
from budgetdesk.connectors.base import BudgetRowSource, parse_row
from budgetdesk.models.import_history import ImportHistory
from budgetdesk.services import budget_service
from budgetdesk.services.budget_lookup import find_by_natural_key, parse_uuid

logger = structlog.get_logger()


class ImportAborted(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass
class ImportResult:
    success: bool
    import_id: Optional[str]
    total_rows: int
    success_count: int = 0
    failure_count: int = 0
    created_count: int = 0
    updated_count: int = 0
    errors: list = field(default_factory=list)
    message: Optional[str] = None


async def _apply_rows(
    session: AsyncSession,
    customer_id,
    raw_rows: list[dict],
    source_type: str,
    actor: str,
    result: ImportResult,
) -> None:
    for index, raw in enumerate(raw_rows, start=1):
        try:
            row = parse_row(raw)
            existing = await find_by_natural_key(
                session, customer_id, row.department, row.sub_category, row.fiscal_period
            )
            if existing is None:
                await budget_service.create_budget(
                    session,
                    customer_id,
                    row.department,
                    row.sub_category,
                    row.fiscal_period,
                    row.budgeted_amount,
                    row.currency,
                    actor=actor,
                    source=source_type,
                    reason=f"Created by {source_type} import",
                )
                result.created_count += 1
            else:
                outcome = await budget_service.apply_row_to_budget(
                    session,
                    existing,
                    row.budgeted_amount,
                    row.currency,
                    actor=actor,
                    reason=f"Updated by {source_type} import",
                )
                if outcome != budget_service.ROW_UNCHANGED:
                    result.updated_count += 1
            result.success_count += 1
        except ValueError as e:
            result.failure_count += 1
            result.errors.append({"row": index, "error": str(e)})
            if result.failure_count > settings.IMPORT_MAX_ROW_FAILURES:
                raise ImportAborted("Too many errors during import. Transaction aborted.")


async def run_import(
    session: AsyncSession,
    customer_id,
    source: BudgetRowSource,
    imported_by_id,
    actor: str,
    file_name: Optional[str] = None,
) -> ImportResult:
    raw_rows = await source.fetch_rows(customer_id)
    customer_uuid = parse_uuid(customer_id, "Customer")
    result = ImportResult(success=False, import_id=None, total_rows=len(raw_rows))

    logger.info(
        "budget_import_started",
        source_type=source.source_type,
        file_name=file_name,
        total_rows=len(raw_rows),
    )

    try:
        # The server cancels any single statement that outlives the batch budget
        await set_statement_timeout(session, settings.IMPORT_TRANSACTION_TIMEOUT_SECONDS)
        await asyncio.wait_for(
            _apply_rows(session, customer_id, raw_rows, source.source_type, actor, result),
            timeout=settings.IMPORT_TRANSACTION_TIMEOUT_SECONDS,
        )
    except (ImportAborted, asyncio.TimeoutError, SQLAlchemyError) as e:
        if isinstance(e, ImportAborted):
            message = e.message
        elif isinstance(e, asyncio.TimeoutError):
            message = "Import timed out. Transaction aborted."
        else:
            message = f"Database error during import: {e.__class__.__name__}"

        if isinstance(e, asyncio.TimeoutError):
            # The cancelled task may have left a statement in flight on this
            # connection; drop it instead of rolling back over it
            await session.invalidate()
        else:
            await session.rollback()
        history = ImportHistory(
            customer_id=customer_uuid,
            source_type=source.source_type,
            file_name=file_name,
            total_rows=result.total_rows,
            success_count=0,
            failure_count=result.failure_count,
            errors=result.errors + [{"row": None, "error": message}],
            status="failed",
            imported_by_id=parse_uuid(imported_by_id, "User"),
            completed_at=datetime.utcnow(),
        )
        session.add(history)
        await session.flush()

        logger.error(
            "budget_import_failed",
            import_id=str(history.id),
            reason=message,
            processed=result.success_count,
            failures=result.failure_count,
        )
        result.import_id = str(history.id) if history.id else None
        result.message = message
        return result

    history = ImportHistory(
        customer_id=customer_uuid,
        source_type=source.source_type,
        file_name=file_name,
        total_rows=result.total_rows,
        success_count=result.success_count,
        failure_count=result.failure_count,
        errors=result.errors or None,
        status="completed",
        imported_by_id=parse_uuid(imported_by_id, "User"),
        completed_at=datetime.utcnow(),
    )
    session.add(history)
    await session.flush()

    result.success = True
    result.import_id = str(history.id) if history.id else None
    logger.info(
        "budget_import_completed",
        import_id=result.import_id,
        success_count=result.success_count,
        failure_count=result.failure_count,
        created=result.created_count,
        updated=result.updated_count,
    )
    return result


async def list_import_history(
    session: AsyncSession, customer_id, page: int, limit: int
) -> tuple[list[ImportHistory], int]:
    customer_uuid = parse_uuid(customer_id, "Customer")
    total = (
        await session.execute(
            select(func.count(ImportHistory.id)).where(ImportHistory.customer_id == customer_uuid)
        )
    ).scalar() or 0
    result = await session.execute(
        select(ImportHistory)
        .where(ImportHistory.customer_id == customer_uuid)
        .order_by(ImportHistory.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total
