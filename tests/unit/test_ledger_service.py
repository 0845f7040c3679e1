"""
Unit tests for budgetdesk/services/ledger_service.py

Uses AsyncMock to isolate from the database. Each mutation locks the
budget with one execute() and then writes the utilization row plus one
audit entry through session.add/flush.
"""

import uuid
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException

from budgetdesk.models.audit_log import AuditLog
from budgetdesk.services.ledger_service import (
    check_budget,
    commit_budget,
    get_budget_status,
    release_budget,
    reserve_budget,
)

D = Decimal
CUSTOMER_ID = str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_budget(
    budgeted="100000",
    committed="0",
    reserved="0",
    sub_category: Optional[str] = "Software",
    department: str = "Engineering",
):
    b = MagicMock()
    b.id = uuid.uuid4()
    b.department = department
    b.sub_category = sub_category
    b.fiscal_period = "FY2026-Q1"
    b.budgeted_amount = D(budgeted)
    b.currency = "USD"
    b.deleted_at = None
    b.utilization = MagicMock(committed_amount=D(committed), reserved_amount=D(reserved))
    return b


def _locked(budget):
    r = MagicMock()
    r.unique.return_value.scalar_one_or_none.return_value = budget
    return r


def _result(rows=None, scalar=None, one=None):
    r = MagicMock()
    r.scalar.return_value = scalar
    r.scalar_one_or_none.return_value = one
    r.unique.return_value.scalars.return_value.all.return_value = rows or []
    r.scalars.return_value.all.return_value = rows or []
    return r


def _mock_session(*results) -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    session.execute.side_effect = list(results)
    return session


def _audit_rows(session) -> list[AuditLog]:
    return [c.args[0] for c in session.add.call_args_list if isinstance(c.args[0], AuditLog)]


# ---------------------------------------------------------------------------
# reserve
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reserve_updates_utilization_and_audits():
    budget = _make_budget()
    session = _mock_session(_locked(budget))

    result = await reserve_budget(session, str(budget.id), D("5000"), actor="FP&A (fpa@acme.com)")

    assert result.success is True
    assert result.reserved == D("5000")
    assert result.available == D("95000")
    assert budget.utilization.reserved_amount == D("5000")

    audits = _audit_rows(session)
    assert len(audits) == 1
    assert audits[0].action == "RESERVE"
    assert audits[0].old_value == "committed:0,reserved:0"
    assert audits[0].new_value == "committed:0,reserved:5000"
    assert audits[0].changed_by == "FP&A (fpa@acme.com)"


@pytest.mark.asyncio
async def test_reserve_insufficient_returns_failure_without_writes():
    budget = _make_budget(budgeted="10000", reserved="9000")
    session = _mock_session(_locked(budget))

    result = await reserve_budget(session, str(budget.id), D("5000"), actor="system")

    assert result.success is False
    assert result.error_code == "INSUFFICIENT_BUDGET"
    assert result.available == D("1000")
    assert result.requested == D("5000")
    assert budget.utilization.reserved_amount == D("9000")
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_reserve_rejects_non_positive_amount():
    session = _mock_session()
    with pytest.raises(HTTPException) as exc:
        await reserve_budget(session, str(uuid.uuid4()), D("0"), actor="system")
    assert exc.value.status_code == 400
    assert exc.value.detail["code"] == "INVALID_AMOUNT"
    session.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_reserve_unknown_budget_is_404():
    session = _mock_session(_locked(None))
    with pytest.raises(HTTPException) as exc:
        await reserve_budget(session, str(uuid.uuid4()), D("10"), actor="system")
    assert exc.value.status_code == 404
    assert exc.value.detail["code"] == "BUDGET_NOT_FOUND"


@pytest.mark.asyncio
async def test_malformed_budget_id_is_404():
    session = _mock_session()
    with pytest.raises(HTTPException) as exc:
        await reserve_budget(session, "not-a-uuid", D("10"), actor="system")
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_reserve_creates_missing_utilization_row():
    budget = _make_budget()
    budget.utilization = None
    session = _mock_session(_locked(budget))

    result = await reserve_budget(session, str(budget.id), D("10"), actor="system")

    assert result.success is True
    assert budget.utilization.reserved_amount == D("10")


# ---------------------------------------------------------------------------
# commit
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_commit_reserved_amount():
    budget = _make_budget(reserved="5000")
    session = _mock_session(_locked(budget))

    result = await commit_budget(
        session, str(budget.id), D("5000"), was_reserved=True, actor="system"
    )

    assert result.success is True
    assert result.committed == D("5000")
    assert result.reserved == D("0")
    assert result.available == D("95000")
    audit = _audit_rows(session)[0]
    assert audit.action == "COMMIT"
    assert audit.old_value == "committed:0,reserved:5000"
    assert audit.new_value == "committed:5000,reserved:0"


@pytest.mark.asyncio
async def test_commit_over_budget_makes_no_mutation():
    budget = _make_budget(budgeted="1000", committed="900")
    session = _mock_session(_locked(budget))

    result = await commit_budget(
        session, str(budget.id), D("200"), was_reserved=False, actor="system"
    )

    assert result.success is False
    assert result.error_code == "INSUFFICIENT_BUDGET"
    assert budget.utilization.committed_amount == D("900")
    assert _audit_rows(session) == []


# ---------------------------------------------------------------------------
# release
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_release_over_release_clamps_to_zero():
    budget = _make_budget(reserved="100")
    session = _mock_session(_locked(budget))

    result = await release_budget(
        session, str(budget.id), D("250"), bucket="reserved", actor="system"
    )

    assert result.success is True
    assert result.reserved == D("0")
    assert _audit_rows(session)[0].action == "RELEASE"


@pytest.mark.asyncio
async def test_release_invalid_bucket_is_400():
    session = _mock_session()
    with pytest.raises(HTTPException) as exc:
        await release_budget(
            session, str(uuid.uuid4()), D("1"), bucket="spent", actor="system"
        )
    assert exc.value.detail["code"] == "INVALID_RELEASE_TYPE"


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_check_fresh_budget_can_auto_approve():
    budget = _make_budget()
    session = _mock_session(
        _result(rows=[budget]),
        _result(scalar=0),
        _result(one=None),
    )

    result = await check_budget(
        session, CUSTOMER_ID, "Engineering", "Software", "FY2026-Q1", D("5000")
    )

    assert result.found is True
    assert result.available is True
    assert result.can_auto_approve is True
    assert result.available_amount == D("100000")
    assert result.auto_approval_threshold == D("10000")
    assert result.budget_id == str(budget.id)
    assert result.reason == "Budget available"


@pytest.mark.asyncio
async def test_check_insufficient_reports_numbers():
    budget = _make_budget(budgeted="10000", reserved="9000")
    session = _mock_session(
        _result(rows=[budget]),
        _result(scalar=0),
        _result(one=None),
    )

    result = await check_budget(
        session, CUSTOMER_ID, "Engineering", "Software", "FY2026-Q1", D("5000")
    )

    assert result.available is False
    assert result.can_auto_approve is False
    assert result.available_amount == D("1000")
    assert result.requested == D("5000")
    assert "Insufficient budget" in result.reason


@pytest.mark.asyncio
async def test_check_not_found_lists_siblings():
    sibling = _make_budget(sub_category="Hardware")
    session = _mock_session(
        _result(rows=[]),
        _result(rows=[sibling]),
    )

    result = await check_budget(
        session, CUSTOMER_ID, "Engineering", "Travel", "FY2026-Q1", D("100")
    )

    assert result.found is False
    assert result.available is False
    assert [s["sub_category"] for s in result.siblings] == ["Hardware"]


@pytest.mark.asyncio
async def test_check_converts_gbp_request_into_usd_budget():
    budget = _make_budget()
    session = _mock_session(
        _result(rows=[budget]),
        _result(scalar=0),
        _result(one=None),
    )

    result = await check_budget(
        session, CUSTOMER_ID, "Engineering", "Software", "FY2026-Q1", D("1000"), currency="GBP"
    )

    assert result.requested == D("1270.00")
    assert result.currency == "USD"


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_status_reports_health_label():
    budget = _make_budget(budgeted="1000", committed="700", reserved="150")
    session = _mock_session(_locked(budget))

    status = await get_budget_status(session, str(budget.id))

    assert status["available"] == D("150")
    assert status["status"] == "high-risk"
    assert status["deleted"] is False
