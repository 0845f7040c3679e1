from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from budgetdesk.config import settings
from budgetdesk.database import get_db
from budgetdesk.middleware.auth import get_current_user
from budgetdesk.middleware.authorization import POLICY_ROLES, require_roles
from budgetdesk.schemas.threshold import ThresholdPolicy, ThresholdResponse, ThresholdUpdate
from budgetdesk.services import threshold_service
from budgetdesk.services.audit_service import format_actor
from budgetdesk.services.ledger_state import to_money

router = APIRouter()


@router.get("", response_model=ThresholdPolicy)
async def get_policy(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    policy = await threshold_service.list_thresholds(db, current_user["customer_id"])
    return ThresholdPolicy(
        default=to_money(settings.DEFAULT_AUTO_APPROVAL_THRESHOLD),
        critical_utilization_percent=to_money(settings.CRITICAL_UTILIZATION_PERCENT),
        pending_window_hours=settings.PENDING_REQUEST_WINDOW_HOURS,
        departments=[
            ThresholdResponse(department=dept, **entry)
            for dept, entry in sorted(policy.items())
        ],
    )


@router.put("/{department}", response_model=ThresholdResponse)
async def set_threshold(
    body: ThresholdUpdate,
    department: str = Path(..., min_length=1, max_length=100),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*POLICY_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    row = await threshold_service.set_threshold(
        db,
        current_user["customer_id"],
        department,
        body.amount,
        updated_by=format_actor(current_user),
    )
    return ThresholdResponse(department=row.department, amount=row.amount, source="override")
