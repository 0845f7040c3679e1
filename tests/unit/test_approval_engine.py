"""
Unit tests for budgetdesk/services/approval_engine.py

decide() is exercised directly with snapshots; evaluate_request() runs
against an AsyncMock session whose execute() results are queued in call
order: matching budgets, pending sum, threshold override, requester.
"""

import uuid
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from budgetdesk.services.approval_engine import (
    AUTO_APPROVED,
    INACTIVE_REQUESTER_REASON,
    NO_BUDGET_REASON,
    NO_SINGLE_BUDGET_REASON,
    PENDING,
    REJECTED,
    decide,
    evaluate_request,
)
from budgetdesk.services.ledger_state import BudgetSnapshot, LedgerState

D = Decimal
CRITICAL = D("90")
CUSTOMER_ID = str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _snapshot(budgeted="100000", committed="0", reserved="0", pending="0", primary_available=None):
    return BudgetSnapshot(
        budget_ids=("b1",),
        primary_budget_id="b1",
        state=LedgerState(budgeted=D(budgeted), committed=D(committed), reserved=D(reserved)),
        pending_amount=D(pending),
        currency="USD",
        primary_available=D(primary_available) if primary_available else None,
    )


def _make_budget(budgeted="100000", committed="0", reserved="0", sub_category: Optional[str] = None):
    b = MagicMock()
    b.id = uuid.uuid4()
    b.budgeted_amount = D(budgeted)
    b.sub_category = sub_category
    b.currency = "USD"
    b.deleted_at = None
    b.utilization = MagicMock(committed_amount=D(committed), reserved_amount=D(reserved))
    return b


def _result(rows=None, scalar=None, one=None):
    r = MagicMock()
    r.scalar.return_value = scalar
    r.scalar_one_or_none.return_value = one
    r.unique.return_value.scalars.return_value.all.return_value = rows or []
    return r


def _session(*results) -> AsyncMock:
    session = AsyncMock()
    session.execute.side_effect = list(results)
    return session


# ---------------------------------------------------------------------------
# decide
# ---------------------------------------------------------------------------


def test_no_budget_is_rejected():
    decision = decide(None, D("100"), D("5000"), CRITICAL)
    assert decision.outcome == REJECTED
    assert decision.reason == NO_BUDGET_REASON


def test_fresh_budget_auto_approves():
    decision = decide(_snapshot(), D("5000"), D("10000"), CRITICAL)
    assert decision.outcome == AUTO_APPROVED
    assert decision.is_auto_approved
    assert decision.budget_id == "b1"


def test_insufficient_budget_is_rejected_with_numbers():
    decision = decide(_snapshot(budgeted="10000", reserved="9000"), D("5000"), D("10000"), CRITICAL)
    assert decision.outcome == REJECTED
    assert decision.available == D("1000")
    assert "Insufficient budget" in decision.reason
    assert "$1,000.00" in decision.reason
    assert "$5,000.00" in decision.reason


def test_pending_requests_reduce_available():
    decision = decide(_snapshot(budgeted="10000", pending="9500"), D("600"), D("10000"), CRITICAL)
    assert decision.outcome == REJECTED
    assert decision.pending_amount == D("9500")


def test_amount_exactly_at_threshold_auto_approves():
    decision = decide(_snapshot(), D("5000.00"), D("5000"), CRITICAL)
    assert decision.outcome == AUTO_APPROVED


def test_amount_one_cent_over_threshold_needs_review():
    decision = decide(_snapshot(), D("5000.01"), D("5000"), CRITICAL)
    assert decision.outcome == PENDING
    assert decision.threshold_exceeded is True
    assert "threshold" in decision.reason


def test_utilization_exactly_ninety_percent_needs_review():
    decision = decide(_snapshot(budgeted="1000", committed="600", reserved="300"), D("10"), D("5000"), CRITICAL)
    assert decision.outcome == PENDING
    assert decision.threshold_exceeded is False
    assert "90% utilized" in decision.reason


def test_utilization_just_below_ninety_percent_auto_approves():
    decision = decide(_snapshot(budgeted="1000", committed="899.99"), D("10"), D("5000"), CRITICAL)
    assert decision.outcome == AUTO_APPROVED


def test_same_amount_differs_by_department_threshold():
    eng = decide(_snapshot(), D("10000"), D("20000"), CRITICAL)
    sales = decide(_snapshot(), D("10000"), D("5000"), CRITICAL)
    assert eng.outcome == AUTO_APPROVED
    assert sales.outcome == PENDING


def test_aggregate_that_no_single_budget_can_hold_needs_review():
    decision = decide(_snapshot(primary_available="4000"), D("4000.01"), D("5000"), CRITICAL)
    assert decision.outcome == PENDING
    assert decision.reason == NO_SINGLE_BUDGET_REASON


def test_aggregate_primary_with_room_auto_approves():
    decision = decide(_snapshot(primary_available="4000"), D("4000"), D("5000"), CRITICAL)
    assert decision.outcome == AUTO_APPROVED


# ---------------------------------------------------------------------------
# evaluate_request
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_evaluate_auto_approves_for_active_requester():
    user = MagicMock(is_active=True)
    session = _session(
        _result(rows=[_make_budget()]),
        _result(scalar=0),
        _result(one=None),  # no override, settings threshold applies
        _result(one=user),
    )

    decision = await evaluate_request(
        session, CUSTOMER_ID, "Engineering", None, "FY2026-Q1", D("5000"), uuid.uuid4()
    )

    assert decision.outcome == AUTO_APPROVED
    assert session.execute.await_count == 4


@pytest.mark.asyncio
async def test_evaluate_rejects_inactive_requester():
    session = _session(
        _result(rows=[_make_budget()]),
        _result(scalar=0),
        _result(one=None),
        _result(one=MagicMock(is_active=False)),
    )

    decision = await evaluate_request(
        session, CUSTOMER_ID, "Engineering", None, "FY2026-Q1", D("100"), uuid.uuid4()
    )

    assert decision.outcome == REJECTED
    assert decision.reason == INACTIVE_REQUESTER_REASON


@pytest.mark.asyncio
async def test_evaluate_uses_customer_threshold_override():
    session = _session(
        _result(rows=[_make_budget()]),
        _result(scalar=0),
        _result(one=D("20000")),
        _result(one=MagicMock(is_active=True)),
    )

    decision = await evaluate_request(
        session, CUSTOMER_ID, "Sales", None, "FY2026-Q1", D("10000"), uuid.uuid4()
    )

    assert decision.outcome == AUTO_APPROVED
    assert decision.threshold == D("20000")


@pytest.mark.asyncio
async def test_evaluate_pending_skips_requester_lookup():
    session = _session(
        _result(rows=[_make_budget()]),
        _result(scalar=0),
        _result(one=None),
    )

    decision = await evaluate_request(
        session, CUSTOMER_ID, "Sales", None, "FY2026-Q1", D("10000"), uuid.uuid4()
    )

    assert decision.outcome == PENDING
    assert session.execute.await_count == 3


@pytest.mark.asyncio
async def test_evaluate_aggregates_department_budgets():
    session = _session(
        _result(rows=[
            _make_budget(budgeted="3000", committed="2500", sub_category="Software"),
            _make_budget(budgeted="3000", committed="2500", sub_category="Hardware"),
        ]),
        _result(scalar=0),
        _result(one=None),
    )

    decision = await evaluate_request(
        session, CUSTOMER_ID, "Engineering", None, "FY2026-Q1", D("1200"), uuid.uuid4()
    )

    assert decision.outcome == REJECTED
    assert decision.available == D("1000")


@pytest.mark.asyncio
async def test_evaluate_aggregate_split_across_budgets_needs_review():
    session = _session(
        _result(rows=[
            _make_budget(budgeted="10000", reserved="6000"),
            _make_budget(budgeted="10000", reserved="6000", sub_category="Software"),
        ]),
        _result(scalar=0),
        _result(one=None),
    )

    decision = await evaluate_request(
        session, CUSTOMER_ID, "Engineering", None, "FY2026-Q1", D("6000"), uuid.uuid4()
    )

    assert decision.outcome == PENDING
    assert decision.reason == NO_SINGLE_BUDGET_REASON
    assert decision.available == D("8000")
    assert session.execute.await_count == 3
