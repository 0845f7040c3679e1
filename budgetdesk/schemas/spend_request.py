from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from budgetdesk.schemas.common import Money


class SpendRequestCreate(BaseModel):
    supplier: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)
    currency: str = Field("USD", min_length=3, max_length=3)
    department: str = Field(..., min_length=1, max_length=100)
    sub_category: Optional[str] = Field(None, max_length=100)
    fiscal_period: str = Field(..., min_length=1, max_length=20)


class SpendRequestResponse(BaseModel):
    id: str
    customer_id: str
    supplier: str
    description: str
    amount: Money
    currency: str
    requested_amount: Optional[Money] = None
    requested_currency: Optional[str] = None
    budget_category: str
    sub_category: Optional[str] = None
    fiscal_period: str
    budget_id: Optional[str] = None
    status: str
    auto_approved: bool
    approval_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_by_id: str
    created_at: str
    updated_at: str
    decided_at: Optional[str] = None

    model_config = {"from_attributes": True}


class SubmitResponse(BaseModel):
    success: bool
    request: SpendRequestResponse
    status: str
    reason: str
    requires_approval: bool = False
    budget_reserved: bool = False
    available: Optional[Money] = None


class ApproveRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=500)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=1000)


class ManualDecisionResponse(BaseModel):
    success: bool
    request: SpendRequestResponse
    error: Optional[str] = None
    available: Optional[Money] = None
    requested: Optional[Money] = None
