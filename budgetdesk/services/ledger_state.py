"""
Pure budget ledger arithmetic.

Every ledger mutation is planned here against an immutable LedgerState
snapshot and only then written by ledger_service. Keeping the arithmetic
free of I/O lets the invariants be checked directly:

  committed >= 0, reserved >= 0, committed + reserved <= budgeted
  available = budgeted - committed - reserved (derived, never stored)
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")

BUCKET_COMMITTED = "committed"
BUCKET_RESERVED = "reserved"
RELEASE_BUCKETS = (BUCKET_COMMITTED, BUCKET_RESERVED)

# Health label cutoffs on utilization percent, checked from the top
HEALTH_CUTOFFS = (
    (Decimal("90"), "critical"),
    (Decimal("80"), "high-risk"),
    (Decimal("70"), "warning"),
)


def to_money(value) -> Decimal:
    """Coerce int/float/str/Decimal into Decimal without float artefacts."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def utilization_percent(budgeted: Decimal, committed: Decimal, reserved: Decimal) -> Decimal:
    """(committed + reserved) / budgeted * 100; a zero budget is 0% unless used."""
    used = committed + reserved
    if budgeted <= ZERO:
        return ZERO if used <= ZERO else HUNDRED
    return used / budgeted * HUNDRED


def health_label(percent: Decimal) -> str:
    for cutoff, label in HEALTH_CUTOFFS:
        if percent >= cutoff:
            return label
    return "healthy"


@dataclass(frozen=True)
class LedgerState:
    budgeted: Decimal
    committed: Decimal = ZERO
    reserved: Decimal = ZERO

    @property
    def available(self) -> Decimal:
        return self.budgeted - self.committed - self.reserved

    @property
    def utilization_percent(self) -> Decimal:
        return utilization_percent(self.budgeted, self.committed, self.reserved)

    @property
    def is_consistent(self) -> bool:
        return (
            self.committed >= ZERO
            and self.reserved >= ZERO
            and self.committed + self.reserved <= self.budgeted
        )

    def __add__(self, other: "LedgerState") -> "LedgerState":
        return LedgerState(
            budgeted=self.budgeted + other.budgeted,
            committed=self.committed + other.committed,
            reserved=self.reserved + other.reserved,
        )


@dataclass(frozen=True)
class LedgerPlan:
    """Outcome of planning one mutation. On failure after == before."""

    success: bool
    before: LedgerState
    after: LedgerState
    requested: Decimal
    message: Optional[str] = None


def _insufficient(state: LedgerState, amount: Decimal) -> LedgerPlan:
    return LedgerPlan(
        success=False,
        before=state,
        after=state,
        requested=amount,
        message=(
            f"Insufficient budget: requested {amount}, available {state.available}"
        ),
    )


def plan_reserve(state: LedgerState, amount: Decimal) -> LedgerPlan:
    """Soft hold: succeeds iff amount <= available."""
    if amount > state.available:
        return _insufficient(state, amount)
    after = replace(state, reserved=state.reserved + amount)
    return LedgerPlan(success=True, before=state, after=after, requested=amount)


def plan_commit(state: LedgerState, amount: Decimal, was_reserved: bool) -> LedgerPlan:
    """
    Hard lock. A previously reserved amount is moved out of reserved
    (floored at zero) before being added to committed; the plan fails
    without mutation if the result would exceed the budget.
    """
    new_reserved = max(ZERO, state.reserved - amount) if was_reserved else state.reserved
    new_committed = state.committed + amount
    if new_committed + new_reserved > state.budgeted:
        return _insufficient(state, amount)
    after = LedgerState(
        budgeted=state.budgeted,
        committed=new_committed,
        reserved=new_reserved,
    )
    return LedgerPlan(success=True, before=state, after=after, requested=amount)


def plan_release(state: LedgerState, amount: Decimal, bucket: str) -> LedgerPlan:
    """Decrement one bucket, clamped at zero. Over-release is not an error."""
    if bucket == BUCKET_COMMITTED:
        after = replace(state, committed=max(ZERO, state.committed - amount))
    elif bucket == BUCKET_RESERVED:
        after = replace(state, reserved=max(ZERO, state.reserved - amount))
    else:
        raise ValueError(f"Unknown release bucket: {bucket}")
    return LedgerPlan(success=True, before=state, after=after, requested=amount)


@dataclass(frozen=True)
class BudgetSnapshot:
    """
    Aggregated ledger view over every budget matched by a selector,
    plus the pending-request discount used by checks and decisions.

    primary_available is the own capacity of the budget a request would be
    reserved against; None when the caller did not resolve one.
    """

    budget_ids: tuple
    primary_budget_id: Optional[str]
    state: LedgerState
    pending_amount: Decimal
    currency: str
    primary_available: Optional[Decimal] = None

    @property
    def effective_available(self) -> Decimal:
        return self.state.available - self.pending_amount
