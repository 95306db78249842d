import sqlite3
import threading

import pytest

from budget_engine.core.errors import (
    BudgetExceeded,
    InvalidStatus,
    InvalidTransition,
    NotFound,
    StorageUnavailable,
    Unauthorized,
)


def approve(approval, expense_id, comment=None):
    return approval.transition(
        expense_id, "approved", actor_role="admin", comment=comment, actor_id="admin-1"
    )


def test_approval_reduces_remaining(approval, reporting, category, make_expense):
    expense = make_expense(category["id"], 12500)
    result = approve(approval, expense["id"])
    assert result.status == "approved"
    assert reporting.category_remaining(category["id"]) == 22500.0


def test_approval_beyond_allocation_refused(db, approval, make_category, make_expense):
    category = make_category(10000, "Equipment")
    first = make_expense(category["id"], 9000)
    second = make_expense(category["id"], 2000)
    approve(approval, first["id"])

    with pytest.raises(BudgetExceeded) as exc:
        approve(approval, second["id"])

    assert exc.value.remaining == 1000.0
    assert exc.value.details == {
        "category_name": "Equipment",
        "allocated_amount": 10000.0,
        "current_spent": 9000.0,
        "requested": 2000.0,
        "remaining": 1000.0,
    }
    assert db.get_expense(second["id"])["status"] == "pending"
    assert db.list_audit_trail(second["id"]) == []


def test_exact_headroom_fits_but_one_cent_over_does_not(
    approval, reporting, make_category, make_expense
):
    exact = make_category(100, "Exact")
    over = make_category(100, "Over")
    approve(approval, make_expense(exact["id"], 60)["id"])
    approve(approval, make_expense(exact["id"], 40)["id"])
    assert reporting.category_remaining(exact["id"]) == 0.0

    approve(approval, make_expense(over["id"], 60)["id"])
    with pytest.raises(BudgetExceeded):
        approve(approval, make_expense(over["id"], 40.01)["id"])


def test_reapplying_status_is_a_noop(db, approval, trigger, category, make_expense):
    expense = make_expense(category["id"], 100)
    approve(approval, expense["id"])
    again = approve(approval, expense["id"])

    assert again.status == "approved"
    assert len(db.list_audit_trail(expense["id"])) == 1
    assert trigger.flush() == 1
    assert len(db.list_notifications("founder-1")) == 1


@pytest.mark.parametrize("role", [None, "", "entrepreneur", "reviewer"])
def test_non_admin_cannot_transition(db, approval, trigger, category, make_expense, role):
    expense = make_expense(category["id"], 100)
    with pytest.raises(Unauthorized):
        approval.transition(expense["id"], "approved", actor_role=role)
    assert db.get_expense(expense["id"])["status"] == "pending"
    assert trigger.pending() == []


@pytest.mark.parametrize("status", ["paid", "", "approve"])
def test_unknown_status_rejected(approval, category, make_expense, status):
    expense = make_expense(category["id"], 100)
    with pytest.raises(InvalidStatus):
        approval.transition(expense["id"], status, actor_role="admin")


def test_status_input_is_case_insensitive(approval, category, make_expense):
    expense = make_expense(category["id"], 100)
    result = approval.transition(expense["id"], " In_Review ", actor_role="admin")
    assert result.status == "in_review"


def test_rejected_expense_must_be_reopened_before_approval(
    approval, category, make_expense
):
    expense = make_expense(category["id"], 100)
    approval.transition(expense["id"], "rejected", actor_role="admin")
    with pytest.raises(InvalidTransition):
        approve(approval, expense["id"])
    approval.transition(expense["id"], "pending", actor_role="admin")
    assert approve(approval, expense["id"]).status == "approved"


def test_unknown_expense(approval):
    with pytest.raises(NotFound):
        approve(approval, 4242)


def test_comments_recorded_in_audit_trail(db, approval, category, make_expense):
    expense = make_expense(category["id"], 100)
    approval.transition(
        expense["id"], "in_review", actor_role="admin", comment="need receipt", actor_id="a1"
    )
    result = approval.transition(
        expense["id"], "approved", actor_role="admin", comment="  receipt ok ", actor_id="a2"
    )

    trail = [(a.from_status, a.to_status, a.comment, a.actor_id) for a in result.audit_trail]
    assert trail == [
        ("pending", "in_review", "need receipt", "a1"),
        ("in_review", "approved", "receipt ok", "a2"),
    ]
    # the submitter's description is left alone
    assert db.get_expense(expense["id"])["description"] is None


def test_reopened_expense_is_rechecked_on_reapproval(
    approval, reporting, make_category, make_expense
):
    category = make_category(10000)
    a = make_expense(category["id"], 9000)
    b = make_expense(category["id"], 2000)
    approve(approval, a["id"])
    approval.transition(a["id"], "pending", actor_role="admin")
    approve(approval, b["id"])

    with pytest.raises(BudgetExceeded) as exc:
        approve(approval, a["id"])
    assert exc.value.remaining == 8000.0
    assert reporting.category_remaining(category["id"]) == 8000.0


def test_approved_total_never_exceeds_allocation(approval, reporting, make_category, make_expense):
    category = make_category(1000)
    amounts = [250, 400, 125.5, 300, 224.5, 0.01, 50]
    outcomes = []
    for amount in amounts:
        expense = make_expense(category["id"], amount)
        try:
            approve(approval, expense["id"])
            outcomes.append(True)
        except BudgetExceeded:
            outcomes.append(False)
        assert reporting.category_remaining(category["id"]) >= 0

    assert outcomes == [True, True, True, False, True, False, False]
    assert reporting.category_remaining(category["id"]) == 0.0


def test_concurrent_approvals_cannot_overspend(db, approval, make_category, make_expense):
    category = make_category(10000)
    first = make_expense(category["id"], 6000)
    second = make_expense(category["id"], 5000)
    barrier = threading.Barrier(2)
    results = {}

    def worker(expense_id):
        barrier.wait()
        try:
            approve(approval, expense_id)
            results[expense_id] = "approved"
        except BudgetExceeded:
            results[expense_id] = "exceeded"

    threads = [threading.Thread(target=worker, args=(e["id"],)) for e in (first, second)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert sorted(results.values()) == ["approved", "exceeded"]
    assert db.approved_total_cents(category["id"]) <= category["allocated_cents"]


def test_transient_storage_error_is_retried(monkeypatch, db, approval, category, make_expense):
    expense = make_expense(category["id"], 100)
    real_transaction = db.transaction
    calls = {"n": 0}

    def flaky_transaction():
        calls["n"] += 1
        if calls["n"] == 1:
            raise sqlite3.OperationalError("database is locked")
        return real_transaction()

    monkeypatch.setattr(db, "transaction", flaky_transaction)
    assert approve(approval, expense["id"]).status == "approved"
    assert calls["n"] == 2


def test_persistent_storage_error_surfaces(monkeypatch, db, approval, trigger, category, make_expense):
    expense = make_expense(category["id"], 100)
    calls = {"n": 0}

    def broken_transaction():
        calls["n"] += 1
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(db, "transaction", broken_transaction)
    with pytest.raises(StorageUnavailable):
        approve(approval, expense["id"])
    assert calls["n"] == 2
    assert trigger.pending() == []
