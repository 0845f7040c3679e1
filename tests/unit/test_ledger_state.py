"""
Unit tests for budgetdesk/services/ledger_state.py

Pure arithmetic, no session: reserve/commit/release planning, the ledger
invariant, utilization and health labels.
"""

from decimal import Decimal

import pytest

from budgetdesk.services.ledger_state import (
    BudgetSnapshot,
    LedgerState,
    health_label,
    plan_commit,
    plan_release,
    plan_reserve,
    to_money,
    utilization_percent,
)

D = Decimal


# ---------------------------------------------------------------------------
# reserve
# ---------------------------------------------------------------------------


def test_reserve_moves_amount_into_reserved():
    plan = plan_reserve(LedgerState(budgeted=D("100000")), D("5000"))
    assert plan.success is True
    assert plan.after.reserved == D("5000")
    assert plan.after.available == D("95000")


def test_reserve_exactly_available_succeeds():
    state = LedgerState(budgeted=D("1000"), committed=D("400"), reserved=D("100"))
    plan = plan_reserve(state, D("500.00"))
    assert plan.success is True
    assert plan.after.available == D("0")


def test_reserve_one_cent_over_available_fails_without_mutation():
    state = LedgerState(budgeted=D("1000"), committed=D("400"), reserved=D("100"))
    plan = plan_reserve(state, D("500.01"))
    assert plan.success is False
    assert plan.after == state
    assert "Insufficient budget" in plan.message


def test_reserve_is_not_idempotent():
    state = LedgerState(budgeted=D("100"))
    once = plan_reserve(state, D("30")).after
    twice = plan_reserve(once, D("30")).after
    assert twice.reserved == D("60")


# ---------------------------------------------------------------------------
# commit
# ---------------------------------------------------------------------------


def test_commit_from_reservation():
    state = LedgerState(budgeted=D("100000"), reserved=D("5000"))
    plan = plan_commit(state, D("5000"), was_reserved=True)
    assert plan.success is True
    assert plan.after.committed == D("5000")
    assert plan.after.reserved == D("0")
    assert plan.after.available == D("95000")


def test_commit_direct_leaves_reserved_untouched():
    state = LedgerState(budgeted=D("1000"), reserved=D("200"))
    plan = plan_commit(state, D("300"), was_reserved=False)
    assert plan.after.committed == D("300")
    assert plan.after.reserved == D("200")


def test_commit_from_reservation_floors_reserved_at_zero():
    state = LedgerState(budgeted=D("1000"), reserved=D("100"))
    plan = plan_commit(state, D("250"), was_reserved=True)
    assert plan.success is True
    assert plan.after.reserved == D("0")
    assert plan.after.committed == D("250")


def test_commit_over_budget_fails_without_mutation():
    state = LedgerState(budgeted=D("1000"), committed=D("900"))
    plan = plan_commit(state, D("100.01"), was_reserved=False)
    assert plan.success is False
    assert plan.after == state


def test_commit_reserved_equals_release_then_direct_commit():
    state = LedgerState(budgeted=D("5000"), committed=D("1200"), reserved=D("800.50"))
    amount = D("600.25")

    combined = plan_commit(state, amount, was_reserved=True).after
    released = plan_release(state, amount, "reserved").after
    stepwise = plan_commit(released, amount, was_reserved=False).after

    assert combined == stepwise


# ---------------------------------------------------------------------------
# release
# ---------------------------------------------------------------------------


def test_release_clamps_at_zero():
    state = LedgerState(budgeted=D("1000"), committed=D("50"))
    plan = plan_release(state, D("80"), "committed")
    assert plan.success is True
    assert plan.after.committed == D("0")


def test_release_unknown_bucket_raises():
    with pytest.raises(ValueError):
        plan_release(LedgerState(budgeted=D("10")), D("1"), "spent")


@pytest.mark.parametrize("bucket,redo", [
    ("reserved", lambda s, a: plan_reserve(s, a)),
    ("committed", lambda s, a: plan_commit(s, a, was_reserved=False)),
])
def test_release_then_redo_restores_prior_state(bucket, redo):
    state = LedgerState(budgeted=D("10000"), committed=D("2500"), reserved=D("1500"))
    amount = D("1000")
    released = plan_release(state, amount, bucket).after
    assert redo(released, amount).after == state


def test_sequence_keeps_ledger_consistent():
    state = LedgerState(budgeted=D("1000"))
    steps = [
        lambda s: plan_reserve(s, D("400")),
        lambda s: plan_reserve(s, D("700")),  # refused
        lambda s: plan_commit(s, D("400"), was_reserved=True),
        lambda s: plan_commit(s, D("600"), was_reserved=False),
        lambda s: plan_release(s, D("2000"), "reserved"),
        lambda s: plan_reserve(s, D("0.01")),  # refused
        lambda s: plan_release(s, D("100"), "committed"),
    ]
    for step in steps:
        state = step(state).after
        assert state.is_consistent
        assert state.available >= 0
    assert state.committed == D("900")
    assert state.available == D("100")


# ---------------------------------------------------------------------------
# utilization / health
# ---------------------------------------------------------------------------


def test_utilization_counts_reserved():
    assert utilization_percent(D("1000"), D("500"), D("400")) == D("90")


def test_utilization_of_zero_budget():
    assert utilization_percent(D("0"), D("0"), D("0")) == D("0")
    assert utilization_percent(D("0"), D("1"), D("0")) == D("100")


@pytest.mark.parametrize("pct,label", [
    (D("0"), "healthy"),
    (D("69.99"), "healthy"),
    (D("70"), "warning"),
    (D("80"), "high-risk"),
    (D("89.99"), "high-risk"),
    (D("90"), "critical"),
    (D("120"), "critical"),
])
def test_health_label_cutoffs(pct, label):
    assert health_label(pct) == label


def test_to_money_avoids_float_artefacts():
    assert to_money(0.1) == D("0.1")
    assert to_money(None) == D("0")
    assert to_money("12.50") == D("12.50")


def test_snapshot_discounts_pending_requests():
    snapshot = BudgetSnapshot(
        budget_ids=("b1",),
        primary_budget_id="b1",
        state=LedgerState(budgeted=D("10000"), reserved=D("2000")),
        pending_amount=D("1500"),
        currency="USD",
    )
    assert snapshot.effective_available == D("6500")


def test_ledger_states_add_up():
    total = LedgerState(budgeted=D("100"), committed=D("10")) + LedgerState(
        budgeted=D("50"), reserved=D("5")
    )
    assert total == LedgerState(budgeted=D("150"), committed=D("10"), reserved=D("5"))
