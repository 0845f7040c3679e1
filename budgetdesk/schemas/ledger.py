from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from budgetdesk.schemas.common import Money


class BudgetCheckRequest(BaseModel):
    department: str = Field(..., min_length=1, max_length=100)
    sub_category: Optional[str] = Field(None, max_length=100)
    fiscal_period: str = Field(..., min_length=1, max_length=20)
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)
    currency: str = Field("USD", min_length=3, max_length=3)


class BudgetBreakdown(BaseModel):
    total_budget: Money
    committed: Money
    reserved: Money
    pending: Money
    available: Money
    utilization_percent: Money


class SiblingBudget(BaseModel):
    id: str
    sub_category: Optional[str] = None
    fiscal_period: str
    budgeted_amount: Money
    currency: str


class BudgetCheckResponse(BaseModel):
    found: bool
    available: bool
    requested: Money
    currency: Optional[str] = None
    budget_id: Optional[str] = None
    breakdown: Optional[BudgetBreakdown] = None
    can_auto_approve: bool = False
    auto_approval_threshold: Optional[Money] = None
    reason: str
    siblings: List[SiblingBudget] = []


class ReserveRequest(BaseModel):
    budget_id: str
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)
    request_id: Optional[str] = None
    reason: Optional[str] = Field(None, max_length=500)


class CommitRequest(ReserveRequest):
    was_reserved: bool = False


class ReleaseRequest(ReserveRequest):
    type: Literal["committed", "reserved"]


class LedgerResponse(BaseModel):
    success: bool
    budget_id: str
    requested: Money
    committed: Money
    reserved: Money
    available: Money
    error: Optional[str] = None
    message: Optional[str] = None


class BudgetStatusResponse(BaseModel):
    id: str
    department: str
    sub_category: Optional[str] = None
    fiscal_period: str
    currency: str
    total_budget: Money
    committed: Money
    reserved: Money
    available: Money
    utilization_percent: Money
    status: str
    deleted: bool = False
    created_at: str
    updated_at: str
