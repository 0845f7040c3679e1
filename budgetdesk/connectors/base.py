"""
Budget row sources.

A source yields already-structured budget rows; file parsing and column
mapping happen upstream. Import and sync consume any BudgetRowSource.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional


@dataclass(frozen=True)
class BudgetRow:
    department: str
    fiscal_period: str
    budgeted_amount: Decimal
    sub_category: Optional[str] = None
    currency: str = "USD"

    @property
    def key(self) -> tuple:
        return (self.department, self.sub_category or None, self.fiscal_period)


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_row(raw: dict) -> BudgetRow:
    """Validate one mapped row. Raises ValueError with a displayable message."""
    department = _clean(raw.get("department"))
    if not department:
        raise ValueError("department is required")

    fiscal_period = _clean(raw.get("fiscal_period"))
    if not fiscal_period:
        raise ValueError("fiscal_period is required")

    amount_raw = raw.get("budgeted_amount")
    if amount_raw is None or str(amount_raw).strip() == "":
        raise ValueError("budgeted_amount is required")
    try:
        amount = Decimal(str(amount_raw).replace(",", "").strip())
    except InvalidOperation:
        raise ValueError(f"budgeted_amount is not a number: {amount_raw!r}")
    if not amount.is_finite():
        raise ValueError(f"budgeted_amount is not a number: {amount_raw!r}")
    if amount < 0:
        raise ValueError("budgeted_amount must not be negative")

    currency = (_clean(raw.get("currency")) or "USD").upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValueError(f"currency must be a 3-letter ISO code: {currency!r}")

    return BudgetRow(
        department=department,
        sub_category=_clean(raw.get("sub_category")),
        fiscal_period=fiscal_period,
        budgeted_amount=amount.quantize(Decimal("0.01")),
        currency=currency,
    )


class BudgetRowSource(ABC):
    source_type: str = "api"

    @abstractmethod
    async def fetch_rows(self, customer_id) -> list[dict]:
        """Return raw mapped rows for the customer."""


class StaticRowSource(BudgetRowSource):
    """Rows supplied in the request body."""

    def __init__(self, rows: Iterable[dict], source_type: str = "api"):
        self._rows = list(rows)
        self.source_type = source_type

    async def fetch_rows(self, customer_id) -> list[dict]:
        return list(self._rows)
