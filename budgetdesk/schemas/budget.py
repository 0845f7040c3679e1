from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from budgetdesk.schemas.common import Money


class BudgetCreate(BaseModel):
    department: str = Field(..., min_length=1, max_length=100)
    sub_category: Optional[str] = Field(None, max_length=100)
    fiscal_period: str = Field(..., min_length=1, max_length=20)
    budgeted_amount: Decimal = Field(..., ge=0, max_digits=18, decimal_places=2)
    currency: str = Field("USD", min_length=3, max_length=3)


class BudgetUpdate(BaseModel):
    budgeted_amount: Decimal = Field(..., ge=0, max_digits=18, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    reason: Optional[str] = Field(None, max_length=500)


class BudgetResponse(BaseModel):
    id: str
    customer_id: str
    department: str
    sub_category: Optional[str] = None
    fiscal_period: str
    budgeted_amount: Money
    committed_amount: Money
    reserved_amount: Money
    available_amount: Money
    utilization_percent: Money
    health: str
    currency: str
    source: str
    created_at: str
    updated_at: str
    deleted_at: Optional[str] = None

    model_config = {"from_attributes": True}


class DuplicateBudget(BaseModel):
    id: str
    budgeted_amount: Money
    committed: Money
    reserved: Money
    created_at: str


class DuplicateGroupResponse(BaseModel):
    department: str
    sub_category: Optional[str] = None
    fiscal_period: str
    count: int
    keep_id: str
    remove_ids: List[str] = []
    unresolved_ids: List[str] = []
    budgets: List[DuplicateBudget] = []


class DuplicateReport(BaseModel):
    duplicates_found: int
    groups: List[DuplicateGroupResponse] = []


class CleanupResult(DuplicateReport):
    budgets_deleted: int
    message: str


class DashboardSummary(BaseModel):
    total_budget: Money
    total_committed: Money
    total_reserved: Money
    total_available: Money
    total_utilization_percent: Money


class CriticalBudget(BaseModel):
    id: str
    department: str
    sub_category: Optional[str] = None
    fiscal_period: str
    total_budget: Money
    utilized: Money
    available: Money
    utilization_percent: Money


class DashboardStats(BaseModel):
    summary: DashboardSummary
    health: dict[str, int]
    critical_budgets: List[CriticalBudget] = []
    total_budgets: int
