from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field

from budgetdesk.schemas.common import Money


class ThresholdResponse(BaseModel):
    department: str
    amount: Money
    source: str


class ThresholdPolicy(BaseModel):
    default: Money
    critical_utilization_percent: Money
    pending_window_hours: int
    departments: List[ThresholdResponse] = []


class ThresholdUpdate(BaseModel):
    amount: Decimal = Field(..., ge=0, max_digits=18, decimal_places=2)
