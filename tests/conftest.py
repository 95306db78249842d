"""Shared fixtures: isolated SQLite ledgers, wired services and an API client."""

from __future__ import annotations

import os
import tempfile
from datetime import date

# Establish isolated data dir BEFORE importing the app module (it builds a
# default app at import time).
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="budget_engine_test_"))

import pytest
from fastapi.testclient import TestClient

from budget_engine.core.config import Settings
from budget_engine.db.dal import Database
from budget_engine.db.migrate import apply_migrations
from budget_engine.main import create_app
from budget_engine.services.approval import ApprovalService
from budget_engine.services.notifications import (
    DatabaseNotificationSink,
    NotificationTrigger,
)
from budget_engine.services.reporting import ReportingService

ADMIN = {"X-Actor-Id": "admin-1", "X-Actor-Role": "admin"}
FOUNDER = {"X-Actor-Id": "founder-1", "X-Actor-Role": "entrepreneur"}
EXPENSE_DATE = date(2025, 3, 14)


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "ledger.sqlite3"
    apply_migrations(path)
    return path


@pytest.fixture
def db(db_path) -> Database:
    return Database(db_path)


@pytest.fixture
def trigger(db) -> NotificationTrigger:
    return NotificationTrigger(db, DatabaseNotificationSink(db))


@pytest.fixture
def approval(db, trigger) -> ApprovalService:
    return ApprovalService(db, trigger)


@pytest.fixture
def reporting(db) -> ReportingService:
    return ReportingService(db)


@pytest.fixture
def budget(db) -> dict:
    """Budget(total=100000 USD) owned by startup call 'call-1'."""
    return db.create_budget(
        {
            "title": "Acceleration 2025",
            "total_amount": 100000,
            "currency": "usd",
            "startup_call_id": "call-1",
        },
        created_by="admin-1",
    )


@pytest.fixture
def make_category(db, budget):
    def _make(allocated: float, title: str = "Marketing") -> dict:
        return db.add_category(
            budget["id"], {"title": title, "allocated_amount": allocated}
        )

    return _make


@pytest.fixture
def category(make_category) -> dict:
    return make_category(35000)


@pytest.fixture
def make_expense(db):
    def _make(
        category_id: int,
        amount: float,
        title: str = "Ad campaign",
        on: date = EXPENSE_DATE,
        created_by: str = "founder-1",
    ) -> dict:
        return db.create_expense(
            category_id,
            {"title": title, "amount": amount, "currency": "USD", "date": on},
            created_by=created_by,
        )

    return _make


@pytest.fixture
def settings(tmp_path) -> Settings:
    s = Settings(data_dir=tmp_path, db_filename="api.sqlite3")
    s.init_post_load()
    return s


@pytest.fixture
def client(settings):
    app = create_app(settings_override=settings)
    with TestClient(app) as c:
        yield c
