from datetime import date
import sqlite3

import pytest

from budget_engine.core.errors import (
    BudgetOverAllocated,
    InvalidInput,
    NotFound,
    StorageUnavailable,
)
from budget_engine.db.dal import Database
from budget_engine.db.migrate import CURRENT_SCHEMA_VERSION, apply_migrations
from budget_engine.services.retry import call_with_storage_retry


def test_create_budget_stores_cents_and_normalizes_currency(budget):
    assert budget["total_cents"] == 10_000_000
    assert budget["currency"] == "USD"
    assert budget["status"] == "active"
    assert budget["created_by"] == "admin-1"


@pytest.mark.parametrize(
    "payload",
    [
        {"total_amount": 10, "currency": "USD", "startup_call_id": "c"},  # no title
        {"title": "B", "total_amount": 0, "currency": "USD", "startup_call_id": "c"},
        {"title": "B", "total_amount": 10, "currency": "ZZZ", "startup_call_id": "c"},
        {"title": "B", "total_amount": 10, "startup_call_id": "c"},  # no currency
    ],
)
def test_create_budget_rejects_invalid_input(db, payload):
    with pytest.raises(InvalidInput):
        db.create_budget(payload)


def test_add_category_inherits_budget_currency(category, budget):
    assert category["budget_id"] == budget["id"]
    assert category["currency"] == "USD"
    assert category["allocated_cents"] == 3_500_000


def test_add_category_unknown_budget(db):
    with pytest.raises(NotFound):
        db.add_category(999, {"title": "Ops", "allocated_amount": 10})


def test_add_category_negative_allocation(db, budget):
    with pytest.raises(InvalidInput):
        db.add_category(budget["id"], {"title": "Ops", "allocated_amount": -1})


def test_category_allocations_capped_by_budget_total(db, budget, make_category):
    make_category(60000, "Marketing")
    make_category(40000, "Hiring")
    with pytest.raises(BudgetOverAllocated) as exc:
        make_category(0.01, "Travel")
    assert exc.value.details["unallocated"] == 0.0


def test_allocation_cap_can_be_advisory(db_path, budget):
    lenient = Database(db_path, enforce_budget_allocation=False)
    row = lenient.add_category(budget["id"], {"title": "Big", "allocated_amount": 150000})
    assert row["allocated_cents"] == 15_000_000


def test_shrinking_budget_below_allocations_refused(db, budget, make_category):
    make_category(60000)
    with pytest.raises(BudgetOverAllocated):
        db.update_budget(budget["id"], {"total_amount": 50000})
    updated = db.update_budget(budget["id"], {"total_amount": 60000, "title": "Renamed"})
    assert updated["total_cents"] == 6_000_000
    assert updated["title"] == "Renamed"


def test_create_expense_starts_pending(category, make_expense):
    expense = make_expense(category["id"], 125.5)
    assert expense["status"] == "pending"
    assert expense["amount_cents"] == 12550
    assert expense["budget_id"] == category["budget_id"]
    assert expense["created_by"] == "founder-1"


def test_create_expense_unknown_category(db):
    with pytest.raises(NotFound):
        db.create_expense(
            404, {"title": "X", "amount": 1, "currency": "USD", "date": date(2025, 1, 1)}
        )


@pytest.mark.parametrize(
    "payload",
    [
        {"title": "X", "amount": 0, "currency": "USD", "date": date(2025, 1, 1)},
        {"title": "X", "amount": -5, "currency": "USD", "date": date(2025, 1, 1)},
        {"title": "X", "amount": 5, "currency": "USD"},  # no date
        {"amount": 5, "currency": "USD", "date": date(2025, 1, 1)},  # no title
        {"title": "X", "amount": 5, "currency": "EUR", "date": date(2025, 1, 1)},
    ],
)
def test_create_expense_rejects_invalid_input(db, category, payload):
    with pytest.raises(InvalidInput):
        db.create_expense(category["id"], payload)


def test_archived_budget_is_read_only(db, budget, category):
    archived = db.archive_budget(budget["id"])
    assert archived["status"] == "archived"
    with pytest.raises(InvalidInput):
        db.add_category(budget["id"], {"title": "Late", "allocated_amount": 1})
    with pytest.raises(InvalidInput):
        db.create_expense(
            category["id"],
            {"title": "X", "amount": 1, "currency": "USD", "date": date(2025, 1, 1)},
        )
    assert db.list_budgets("call-1") == []
    assert [b["id"] for b in db.list_budgets("call-1", include_archived=True)] == [budget["id"]]


def test_list_expenses_by_budget_filters_and_orders(db, budget, category, make_expense):
    first = make_expense(category["id"], 10, on=date(2025, 1, 5))
    second = make_expense(category["id"], 20, on=date(2025, 2, 5))
    third = make_expense(category["id"], 30, on=date(2025, 3, 5))
    with db.transaction() as cur:
        db.update_expense_status(cur, second["id"], "rejected", "pending", "admin")

    rows = db.list_expenses_by_budget(budget["id"])
    assert [r["id"] for r in rows] == [third["id"], second["id"], first["id"]]

    rejected = db.list_expenses_by_budget(budget["id"], status="rejected")
    assert [r["id"] for r in rejected] == [second["id"]]

    window = db.list_expenses_by_budget(
        budget["id"], start_date=date(2025, 1, 1), end_date=date(2025, 2, 28)
    )
    assert {r["id"] for r in window} == {first["id"], second["id"]}
    assert db.count_expenses_by_budget(budget["id"], status="pending") == 2


def test_list_expenses_by_category(db, make_category, make_expense):
    a = make_category(100, "A")
    b = make_category(100, "B")
    e1 = make_expense(a["id"], 1)
    make_expense(b["id"], 2)
    e3 = make_expense(a["id"], 3)
    assert [r["id"] for r in db.list_expenses_by_category(a["id"])] == [e3["id"], e1["id"]]


def test_update_and_delete_expense(db, category, make_expense):
    expense = make_expense(category["id"], 50)
    updated = db.update_expense(expense["id"], {"amount": 75, "description": "revised"})
    assert updated["amount_cents"] == 7500
    assert updated["description"] == "revised"
    db.delete_expense(expense["id"])
    assert db.get_expense(expense["id"]) is None
    with pytest.raises(NotFound):
        db.delete_expense(expense["id"])


def test_migrations_are_idempotent(tmp_path):
    path = tmp_path / "fresh.sqlite3"
    assert apply_migrations(path) == CURRENT_SCHEMA_VERSION
    assert apply_migrations(path) == CURRENT_SCHEMA_VERSION
    conn = sqlite3.connect(path)
    try:
        cols = {r[1] for r in conn.execute("PRAGMA table_info(expenses)")}
        indexes = {r[1] for r in conn.execute("PRAGMA index_list(expenses)")}
    finally:
        conn.close()
    assert "receipt_url" in cols
    assert "idx_expenses_category_status" in indexes


@pytest.mark.parametrize("amount", [0.004, 0.001])
def test_amounts_rounding_to_zero_cents_rejected(db, budget, category, amount):
    with pytest.raises(InvalidInput):
        db.create_expense(
            category["id"],
            {"title": "X", "amount": amount, "currency": "USD", "date": date(2025, 1, 1)},
        )
    with pytest.raises(InvalidInput):
        db.create_budget(
            {"title": "B", "total_amount": amount, "currency": "USD", "startup_call_id": "c"}
        )
    with pytest.raises(InvalidInput):
        db.update_budget(budget["id"], {"total_amount": amount})


def test_expense_edit_rounding_to_zero_cents_rejected(db, category, make_expense):
    expense = make_expense(category["id"], 10)
    with pytest.raises(InvalidInput):
        db.update_expense(expense["id"], {"amount": 0.004})
    assert db.get_expense(expense["id"])["amount_cents"] == 1000


def test_half_cent_rounds_up_to_one_cent(category, make_expense):
    assert make_expense(category["id"], 0.005)["amount_cents"] == 1


def test_writes_retry_transient_storage_errors(monkeypatch, db, budget):
    real_transaction = db.transaction
    calls = {"n": 0}

    def flaky_transaction():
        calls["n"] += 1
        if calls["n"] == 1:
            raise sqlite3.OperationalError("database is locked")
        return real_transaction()

    monkeypatch.setattr(db, "transaction", flaky_transaction)
    row = db.add_category(budget["id"], {"title": "Ops", "allocated_amount": 10})
    assert row["title"] == "Ops"
    assert calls["n"] == 2


@pytest.mark.parametrize(
    "operation",
    [
        lambda db, ids: db.create_budget(
            {"title": "B", "total_amount": 10, "currency": "USD", "startup_call_id": "c"}
        ),
        lambda db, ids: db.create_expense(
            ids["category"],
            {"title": "X", "amount": 1, "currency": "USD", "date": date(2025, 1, 1)},
        ),
        lambda db, ids: db.update_category(ids["category"], {"title": "Renamed"}),
        lambda db, ids: db.archive_budget(ids["budget"]),
        lambda db, ids: db.delete_expense(ids["expense"]),
    ],
    ids=["create_budget", "create_expense", "update_category", "archive_budget", "delete_expense"],
)
def test_writes_surface_storage_unavailable(
    monkeypatch, db, budget, category, make_expense, operation
):
    ids = {
        "budget": budget["id"],
        "category": category["id"],
        "expense": make_expense(category["id"], 5)["id"],
    }
    calls = {"n": 0}

    def broken_transaction():
        calls["n"] += 1
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "transaction", broken_transaction)
    with pytest.raises(StorageUnavailable):
        operation(db, ids)
    assert calls["n"] == 2


@pytest.mark.parametrize(
    "error",
    [
        sqlite3.IntegrityError("CHECK constraint failed"),
        sqlite3.ProgrammingError("Incorrect number of bindings"),
        sqlite3.DataError("string or blob too big"),
        sqlite3.NotSupportedError("not supported"),
    ],
)
def test_statement_errors_are_not_retried(error):
    calls = {"n": 0}

    def fn():
        calls["n"] += 1
        raise error

    with pytest.raises(type(error)):
        call_with_storage_retry(fn, retries=3, backoff=0)
    assert calls["n"] == 1


def test_generic_database_error_is_retried():
    calls = {"n": 0}

    def fn():
        calls["n"] += 1
        raise sqlite3.DatabaseError("database disk image is malformed")

    with pytest.raises(StorageUnavailable):
        call_with_storage_retry(fn, retries=2, backoff=0)
    assert calls["n"] == 3
