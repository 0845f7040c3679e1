"""
Unit tests for budgetdesk/services/import_service.py

Budget writes are patched out; the tests cover row accounting, the
row-failure budget, timeouts and the failed-history path.
"""

import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from budgetdesk.connectors.base import StaticRowSource
from budgetdesk.models.import_history import ImportHistory
from budgetdesk.services import import_service
from budgetdesk.services.budget_service import ROW_UNCHANGED, ROW_UPDATED

CUSTOMER_ID = str(uuid.uuid4())
USER_ID = str(uuid.uuid4())


def _mock_session() -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.rollback = AsyncMock()
    session.add = MagicMock()
    return session


def _row(department="Engineering", amount="1000", sub_category="Software"):
    return {
        "department": department,
        "sub_category": sub_category,
        "fiscal_period": "FY2026-Q1",
        "budgeted_amount": amount,
        "currency": "USD",
    }


def _history(session) -> ImportHistory:
    [history] = [c.args[0] for c in session.add.call_args_list if isinstance(c.args[0], ImportHistory)]
    return history


async def _run(session, rows):
    return await import_service.run_import(
        session,
        CUSTOMER_ID,
        StaticRowSource(rows, source_type="csv"),
        imported_by_id=USER_ID,
        actor="fpa@acme.com",
        file_name="budgets.csv",
    )


@pytest.mark.asyncio
async def test_import_creates_and_updates():
    session = _mock_session()
    existing = MagicMock()
    lookup = AsyncMock(side_effect=[None, existing, existing])
    apply_row = AsyncMock(side_effect=[ROW_UPDATED, ROW_UNCHANGED])

    with patch.object(import_service, "find_by_natural_key", new=lookup), \
         patch("budgetdesk.services.budget_service.create_budget", new=AsyncMock()) as create, \
         patch("budgetdesk.services.budget_service.apply_row_to_budget", new=apply_row):
        result = await _run(session, [_row("A"), _row("B"), _row("C")])

    assert result.success is True
    assert result.total_rows == 3
    assert result.success_count == 3
    assert result.created_count == 1
    assert result.updated_count == 1
    assert create.await_args.kwargs["source"] == "csv"
    history = _history(session)
    assert history.status == "completed"
    assert history.file_name == "budgets.csv"
    session.rollback.assert_not_awaited()


@pytest.mark.asyncio
async def test_import_tolerates_up_to_ten_bad_rows():
    session = _mock_session()
    rows = [_row(amount="oops")] * 10 + [_row()]

    with patch.object(import_service, "find_by_natural_key", new=AsyncMock(return_value=None)), \
         patch("budgetdesk.services.budget_service.create_budget", new=AsyncMock()):
        result = await _run(session, rows)

    assert result.success is True
    assert result.failure_count == 10
    assert result.success_count == 1
    assert result.errors[0]["row"] == 1
    assert "not a number" in result.errors[0]["error"]


@pytest.mark.asyncio
async def test_import_aborts_after_eleven_bad_rows():
    session = _mock_session()
    rows = [_row()] + [_row(amount="-5")] * 11

    with patch.object(import_service, "find_by_natural_key", new=AsyncMock(return_value=None)), \
         patch("budgetdesk.services.budget_service.create_budget", new=AsyncMock()):
        result = await _run(session, rows)

    assert result.success is False
    assert result.failure_count == 11
    assert "Too many errors" in result.message
    session.rollback.assert_awaited_once()
    history = _history(session)
    assert history.status == "failed"
    assert history.success_count == 0
    assert history.errors[-1]["error"] == result.message


@pytest.mark.asyncio
async def test_import_counts_below_minimum_rows_as_failures():
    session = _mock_session()
    apply_row = AsyncMock(side_effect=ValueError("Cannot reduce budget below committed + reserved (800)"))

    with patch.object(import_service, "find_by_natural_key", new=AsyncMock(return_value=MagicMock())), \
         patch("budgetdesk.services.budget_service.apply_row_to_budget", new=apply_row):
        result = await _run(session, [_row(amount="10")])

    assert result.success is True
    assert result.failure_count == 1
    assert result.errors == [{"row": 1, "error": "Cannot reduce budget below committed + reserved (800)"}]


@pytest.mark.asyncio
async def test_import_timeout_invalidates_connection():
    session = _mock_session()

    async def slow_create(*args, **kwargs):
        await asyncio.sleep(1)

    with patch.object(import_service.settings, "IMPORT_TRANSACTION_TIMEOUT_SECONDS", 0.01), \
         patch.object(import_service, "find_by_natural_key", new=AsyncMock(return_value=None)), \
         patch("budgetdesk.services.budget_service.create_budget", new=slow_create):
        result = await _run(session, [_row()])

    assert result.success is False
    assert "timed out" in result.message
    session.invalidate.assert_awaited_once()
    session.rollback.assert_not_awaited()
    assert _history(session).status == "failed"


@pytest.mark.asyncio
async def test_import_sets_server_side_statement_timeout():
    session = _mock_session()

    with patch.object(import_service.settings, "IMPORT_TRANSACTION_TIMEOUT_SECONDS", 2.5), \
         patch.object(import_service, "find_by_natural_key", new=AsyncMock(return_value=None)), \
         patch("budgetdesk.services.budget_service.create_budget", new=AsyncMock()):
        result = await _run(session, [_row()])

    assert result.success is True
    statement, params = session.execute.await_args_list[0].args
    assert "statement_timeout" in str(statement)
    assert params == {"ms": "2500"}
