from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
import structlog

from budgetdesk.database import get_db
from budgetdesk.middleware.auth import get_current_user
from budgetdesk.middleware.authorization import FPA_ROLES, require_roles
from budgetdesk.models.budget import Budget
from budgetdesk.schemas.budget import (
    BudgetCreate,
    BudgetResponse,
    BudgetUpdate,
    CleanupResult,
    DuplicateBudget,
    DuplicateGroupResponse,
    DuplicateReport,
)
from budgetdesk.schemas.common import PaginatedResponse, build_pagination
from budgetdesk.services import budget_service
from budgetdesk.services.audit_service import format_actor
from budgetdesk.services.budget_lookup import parse_uuid, state_of
from budgetdesk.services.ledger_state import health_label

logger = structlog.get_logger()
router = APIRouter()


def _to_response(b: Budget) -> BudgetResponse:
    state = state_of(b)
    pct = state.utilization_percent
    return BudgetResponse(
        id=str(b.id),
        customer_id=str(b.customer_id),
        department=b.department,
        sub_category=b.sub_category,
        fiscal_period=b.fiscal_period,
        budgeted_amount=state.budgeted,
        committed_amount=state.committed,
        reserved_amount=state.reserved,
        available_amount=state.available,
        utilization_percent=pct,
        health=health_label(pct),
        currency=b.currency,
        source=b.source,
        created_at=b.created_at.isoformat() if b.created_at else "",
        updated_at=b.updated_at.isoformat() if b.updated_at else "",
        deleted_at=b.deleted_at.isoformat() if b.deleted_at else None,
    )


def _group_response(group: budget_service.DuplicateGroup) -> DuplicateGroupResponse:
    department, sub_category, fiscal_period = group.key
    return DuplicateGroupResponse(
        department=department,
        sub_category=sub_category,
        fiscal_period=fiscal_period,
        count=len(group.budgets),
        keep_id=str(group.keep.id),
        remove_ids=[str(b.id) for b in group.remove],
        unresolved_ids=[str(b.id) for b in group.unresolved],
        budgets=[
            DuplicateBudget(
                id=str(b.id),
                budgeted_amount=state_of(b).budgeted,
                committed=state_of(b).committed,
                reserved=state_of(b).reserved,
                created_at=b.created_at.isoformat() if b.created_at else "",
            )
            for b in group.budgets
        ],
    )


@router.get("", response_model=PaginatedResponse[BudgetResponse])
async def list_budgets(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    department: Optional[str] = Query(None),
    sub_category: Optional[str] = Query(None),
    fiscal_period: Optional[str] = Query(None),
    source: Optional[str] = Query(None),
    include_deleted: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    customer_id = parse_uuid(current_user["customer_id"], "Customer")
    q = select(Budget).options(joinedload(Budget.utilization)).where(Budget.customer_id == customer_id)
    count_q = select(func.count(Budget.id)).where(Budget.customer_id == customer_id)

    if not include_deleted:
        q = q.where(Budget.deleted_at == None)  # noqa: E711
        count_q = count_q.where(Budget.deleted_at == None)  # noqa: E711
    if department:
        q = q.where(Budget.department == department)
        count_q = count_q.where(Budget.department == department)
    if sub_category:
        q = q.where(Budget.sub_category == sub_category)
        count_q = count_q.where(Budget.sub_category == sub_category)
    if fiscal_period:
        q = q.where(Budget.fiscal_period == fiscal_period)
        count_q = count_q.where(Budget.fiscal_period == fiscal_period)
    if source:
        q = q.where(Budget.source == source)
        count_q = count_q.where(Budget.source == source)

    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        q.order_by(Budget.fiscal_period.desc(), Budget.department, Budget.sub_category)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(b) for b in result.unique().scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/duplicates", response_model=DuplicateReport)
async def list_duplicates(
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    groups = await budget_service.find_duplicates(db, current_user["customer_id"])
    return DuplicateReport(
        duplicates_found=len(groups),
        groups=[_group_response(g) for g in groups],
    )


@router.post("/cleanup-duplicates", response_model=CleanupResult)
async def cleanup_duplicates(
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    groups, deleted = await budget_service.cleanup_duplicates(
        db, current_user["customer_id"], actor=format_actor(current_user)
    )
    report = [_group_response(g) for g in groups]
    return CleanupResult(
        duplicates_found=len(groups),
        groups=report,
        budgets_deleted=deleted,
        message=(
            f"Cleaned up {deleted} duplicate budgets. "
            "Kept budgets with utilization data or oldest entries."
        ),
    )


@router.get("/{budget_id}", response_model=BudgetResponse)
async def get_budget(
    budget_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Budget)
        .options(joinedload(Budget.utilization))
        .where(
            Budget.id == parse_uuid(budget_id),
            Budget.customer_id == parse_uuid(current_user["customer_id"], "Customer"),
        )
    )
    budget = result.unique().scalar_one_or_none()
    if not budget:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "BUDGET_NOT_FOUND", "message": "Budget not found"},
        )
    return _to_response(budget)


@router.post("", response_model=BudgetResponse, status_code=status.HTTP_201_CREATED)
async def create_budget(
    body: BudgetCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        budget = await budget_service.create_budget(
            db,
            current_user["customer_id"],
            body.department,
            body.sub_category,
            body.fiscal_period,
            body.budgeted_amount,
            body.currency.upper(),
            actor=format_actor(current_user),
        )
    except IntegrityError:
        # A concurrent create won the natural-key index
        logger.warning("budget_create_conflict", department=body.department,
                       fiscal_period=body.fiscal_period)
        raise budget_service.duplicate_conflict()
    return _to_response(budget)


@router.patch("/{budget_id}", response_model=BudgetResponse)
async def update_budget(
    budget_id: str,
    body: BudgetUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    budget = await budget_service.update_budget_amount(
        db,
        budget_id,
        body.budgeted_amount,
        actor=format_actor(current_user),
        currency=body.currency.upper() if body.currency else None,
        reason=body.reason or "Manual update",
        customer_id=current_user["customer_id"],
    )
    return _to_response(budget)


@router.delete("/{budget_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_budget(
    budget_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FPA_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    await budget_service.delete_budget(
        db,
        budget_id,
        actor=format_actor(current_user),
        customer_id=current_user["customer_id"],
    )
