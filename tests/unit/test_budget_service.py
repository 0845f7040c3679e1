"""
Unit tests for budgetdesk/services/budget_service.py

Uses AsyncMock to isolate from the database.
Tests: create_budget, update_budget_amount, delete_budget,
       apply_row_to_budget, plan_duplicate_cleanup, summarize_budgets.
"""

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException

from budgetdesk.models.audit_log import AuditLog
from budgetdesk.models.budget import Budget
from budgetdesk.services.budget_service import (
    ROW_RESTORED,
    ROW_UNCHANGED,
    ROW_UPDATED,
    apply_row_to_budget,
    create_budget,
    delete_budget,
    plan_duplicate_cleanup,
    summarize_budgets,
    update_budget_amount,
)

D = Decimal
CUSTOMER_ID = str(uuid.uuid4())
BASE_TIME = datetime(2026, 1, 1)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_budget(
    budgeted="1000",
    committed="0",
    reserved="0",
    sub_category: Optional[str] = "Software",
    age_days: int = 0,
    deleted: bool = False,
):
    b = MagicMock()
    b.id = uuid.uuid4()
    b.department = "Engineering"
    b.sub_category = sub_category
    b.fiscal_period = "FY2026-Q1"
    b.budgeted_amount = D(budgeted)
    b.currency = "USD"
    b.created_at = BASE_TIME + timedelta(days=age_days)
    b.deleted_at = BASE_TIME if deleted else None
    b.utilization = MagicMock(committed_amount=D(committed), reserved_amount=D(reserved))
    return b


def _mock_session(*results) -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    session.delete = AsyncMock()
    session.execute.side_effect = list(results)
    return session


def _locked(budget):
    r = MagicMock()
    r.unique.return_value.scalar_one_or_none.return_value = budget
    return r


def _audits(session) -> list[AuditLog]:
    return [c.args[0] for c in session.add.call_args_list if isinstance(c.args[0], AuditLog)]


# ---------------------------------------------------------------------------
# create / update / delete
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_budget_writes_zeroed_utilization_and_audit():
    existing = MagicMock()
    existing.first.return_value = None
    session = _mock_session(existing)

    budget = await create_budget(
        session, CUSTOMER_ID, "Engineering", "Software", "FY2026-Q1",
        D("100000"), "USD", actor="fpa@acme.com",
    )

    assert isinstance(budget, Budget)
    assert budget.source == "manual"
    assert budget.utilization.committed_amount == D("0")
    audit = _audits(session)[0]
    assert audit.action == "CREATE"
    assert audit.new_value == "100000"
    assert audit.budget_id == budget.id


@pytest.mark.asyncio
async def test_create_budget_duplicate_key_is_409():
    existing = MagicMock()
    existing.first.return_value = (uuid.uuid4(),)
    session = _mock_session(existing)

    with pytest.raises(HTTPException) as exc:
        await create_budget(
            session, CUSTOMER_ID, "Engineering", None, "FY2026-Q1",
            D("100"), "USD", actor="fpa@acme.com",
        )
    assert exc.value.status_code == 409
    assert exc.value.detail["code"] == "BUDGET_EXISTS"


def test_natural_key_index_treats_null_sub_category_as_a_value():
    index = next(
        i for i in Budget.__table__.indexes if i.name == "uq_budget_customer_dept_sub_period"
    )
    assert index.unique
    assert "coalesce(sub_category, '')" in [str(e) for e in index.expressions]


@pytest.mark.asyncio
async def test_update_below_committed_plus_reserved_is_rejected():
    budget = _make_budget(budgeted="1000", committed="600", reserved="200")
    session = _mock_session(_locked(budget))

    with pytest.raises(HTTPException) as exc:
        await update_budget_amount(session, str(budget.id), D("799.99"), actor="fpa")

    assert exc.value.status_code == 400
    assert exc.value.detail["code"] == "BUDGET_BELOW_MINIMUM"
    assert exc.value.detail["minimum"] == "800"
    assert budget.budgeted_amount == D("1000")


@pytest.mark.asyncio
async def test_update_to_exact_minimum_is_allowed():
    budget = _make_budget(budgeted="1000", committed="600", reserved="200")
    session = _mock_session(_locked(budget))

    await update_budget_amount(session, str(budget.id), D("800"), actor="fpa", reason="Reforecast")

    assert budget.budgeted_amount == D("800")
    audit = _audits(session)[0]
    assert audit.action == "UPDATE"
    assert (audit.old_value, audit.new_value) == ("1000", "800")
    assert audit.reason == "Reforecast"


@pytest.mark.asyncio
async def test_delete_budget_in_use_is_refused():
    budget = _make_budget(reserved="1")
    session = _mock_session(_locked(budget))

    with pytest.raises(HTTPException) as exc:
        await delete_budget(session, str(budget.id), actor="fpa")
    assert exc.value.detail["code"] == "BUDGET_IN_USE"
    session.delete.assert_not_awaited()


@pytest.mark.asyncio
async def test_delete_unused_budget():
    budget = _make_budget()
    session = _mock_session(_locked(budget))

    await delete_budget(session, str(budget.id), actor="fpa")

    session.delete.assert_awaited_once_with(budget)


# ---------------------------------------------------------------------------
# apply_row_to_budget
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_apply_row_unchanged():
    budget = _make_budget(budgeted="1000")
    session = _mock_session()
    outcome = await apply_row_to_budget(session, budget, D("1000.00"), "USD", actor="system", reason="sync")
    assert outcome == ROW_UNCHANGED
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_apply_row_updates_amount():
    budget = _make_budget(budgeted="1000")
    session = _mock_session()
    outcome = await apply_row_to_budget(session, budget, D("1500"), "USD", actor="system", reason="sync")
    assert outcome == ROW_UPDATED
    assert budget.budgeted_amount == D("1500")


@pytest.mark.asyncio
async def test_apply_row_restores_soft_deleted_budget():
    budget = _make_budget(budgeted="1000", deleted=True)
    session = _mock_session()
    outcome = await apply_row_to_budget(session, budget, D("1000"), "USD", actor="system", reason="sync")
    assert outcome == ROW_RESTORED
    assert budget.deleted_at is None
    assert _audits(session)[0].reason == "sync (restored)"


@pytest.mark.asyncio
async def test_apply_row_below_minimum_raises_value_error():
    budget = _make_budget(budgeted="1000", committed="900")
    with pytest.raises(ValueError):
        await apply_row_to_budget(_mock_session(), budget, D("500"), "USD", actor="system", reason="sync")


# ---------------------------------------------------------------------------
# duplicates
# ---------------------------------------------------------------------------


def test_duplicate_cleanup_keeps_used_budget():
    oldest = _make_budget(age_days=0)
    used = _make_budget(committed="100", age_days=1)
    newest = _make_budget(age_days=2)

    [group] = plan_duplicate_cleanup([newest, used, oldest])

    assert group.keep is used
    assert group.remove == [oldest, newest]
    assert group.unresolved == []


def test_duplicate_cleanup_keeps_oldest_when_none_used():
    oldest = _make_budget(age_days=0)
    newer = _make_budget(age_days=3)

    [group] = plan_duplicate_cleanup([newer, oldest])

    assert group.keep is oldest
    assert group.remove == [newer]


def test_duplicate_cleanup_never_removes_used_budgets():
    first = _make_budget(committed="10", age_days=0)
    second = _make_budget(reserved="20", age_days=1)

    [group] = plan_duplicate_cleanup([first, second])

    assert group.keep is first
    assert group.remove == []
    assert group.unresolved == [second]


def test_distinct_keys_are_not_duplicates():
    assert plan_duplicate_cleanup([
        _make_budget(sub_category="Software"),
        _make_budget(sub_category="Hardware"),
        _make_budget(sub_category=None),
    ]) == []


# ---------------------------------------------------------------------------
# summarize_budgets
# ---------------------------------------------------------------------------


def test_summarize_budgets_totals_and_health():
    budgets = [
        _make_budget(budgeted="1000", committed="100"),                   # 10% healthy
        _make_budget(budgeted="1000", committed="700", reserved="50"),    # 75% warning
        _make_budget(budgeted="1000", committed="950"),                   # 95% critical
    ]

    stats = summarize_budgets(budgets)

    assert stats["total_budgets"] == 3
    assert stats["summary"]["total_budget"] == D("3000")
    assert stats["summary"]["total_committed"] == D("1750")
    assert stats["summary"]["total_reserved"] == D("50")
    assert stats["summary"]["total_available"] == D("1200")
    assert stats["summary"]["total_utilization_percent"] == D("60")
    assert stats["health"] == {"healthy": 1, "warning": 1, "high-risk": 0, "critical": 1}
    assert [c["id"] for c in stats["critical_budgets"]] == [str(budgets[2].id)]


def test_summarize_no_budgets():
    stats = summarize_budgets([])
    assert stats["summary"]["total_utilization_percent"] == D("0")
    assert stats["total_budgets"] == 0
