from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from budgetdesk.database import get_db
from budgetdesk.middleware.auth import get_current_user
from budgetdesk.schemas.budget import DashboardStats
from budgetdesk.services import budget_service

router = APIRouter()


@router.get("/stats", response_model=DashboardStats)
async def dashboard_stats(
    fiscal_period: Optional[str] = Query(None),
    source: Optional[str] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    stats = await budget_service.dashboard_stats(
        db, current_user["customer_id"], fiscal_period=fiscal_period, source=source
    )
    return DashboardStats(**stats)
