"""Database schema DDL definitions and initialization utilities.

Tables:
  - budgets: funding envelopes owned by a startup call
  - budget_categories: named sub-allocations, each owned by exactly one budget
  - expenses: spend requests against a category, subject to admin approval
  - expense_audit: append-only status transition log per expense
  - notifications: delivered status-change notifications (outbound boundary)
  - metadata: key/value store (schema version)

Money columns hold integer cents.
"""

from __future__ import annotations
import sqlite3
from typing import Sequence
from pathlib import Path

BASIC_UTC_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"

BUDGETS_DDL = f"""
CREATE TABLE IF NOT EXISTS budgets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    total_cents INTEGER NOT NULL CHECK (total_cents > 0),
    currency TEXT NOT NULL,
    startup_call_id TEXT NOT NULL,
    created_by TEXT,
    start_date TEXT,
    end_date TEXT,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active','archived')),
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

CATEGORIES_DDL = f"""
CREATE TABLE IF NOT EXISTS budget_categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    budget_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    allocated_cents INTEGER NOT NULL DEFAULT 0 CHECK (allocated_cents >= 0),
    currency TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    FOREIGN KEY (budget_id) REFERENCES budgets(id) ON DELETE RESTRICT
);
"""

EXPENSES_DDL = f"""
CREATE TABLE IF NOT EXISTS expenses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    budget_id INTEGER NOT NULL,
    category_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
    currency TEXT NOT NULL,
    date TEXT NOT NULL, -- ISO date (YYYY-MM-DD)
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending','in_review','approved','rejected')),
    created_by TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    FOREIGN KEY (budget_id) REFERENCES budgets(id) ON DELETE RESTRICT,
    FOREIGN KEY (category_id) REFERENCES budget_categories(id) ON DELETE RESTRICT
);
"""

EXPENSE_AUDIT_DDL = f"""
CREATE TABLE IF NOT EXISTS expense_audit (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    expense_id INTEGER NOT NULL,
    actor_id TEXT,
    actor_role TEXT NOT NULL,
    from_status TEXT NOT NULL,
    to_status TEXT NOT NULL,
    comment TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    FOREIGN KEY (expense_id) REFERENCES expenses(id) ON DELETE CASCADE
);
"""

NOTIFICATIONS_DDL = f"""
CREATE TABLE IF NOT EXISTS notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    severity TEXT NOT NULL CHECK (severity IN ('success','error','info')),
    expense_id INTEGER,
    is_read INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

METADATA_DDL = f"""
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

BUDGETS_CALL_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_budgets_call ON budgets(startup_call_id, status);"
)
CATEGORIES_BUDGET_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_categories_budget ON budget_categories(budget_id);"
)
EXPENSES_BUDGET_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_expenses_budget_date ON expenses(budget_id, date);"
)
# Serves the approved-total aggregate for allocation checks
EXPENSES_CATEGORY_STATUS_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_expenses_category_status "
    "ON expenses(category_id, status);"
)
AUDIT_EXPENSE_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_audit_expense ON expense_audit(expense_id, id);"
)
NOTIFICATIONS_USER_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, id);"
)

DDL_ORDER: Sequence[str] = (
    BUDGETS_DDL,
    CATEGORIES_DDL,
    EXPENSES_DDL,
    EXPENSE_AUDIT_DDL,
    NOTIFICATIONS_DDL,
    METADATA_DDL,
)

INDEX_ORDER: Sequence[str] = (
    BUDGETS_CALL_INDEX_DDL,
    CATEGORIES_BUDGET_INDEX_DDL,
    EXPENSES_BUDGET_INDEX_DDL,
    AUDIT_EXPENSE_INDEX_DDL,
    NOTIFICATIONS_USER_INDEX_DDL,
)


def init_db(path: Path) -> None:
    """Create all tables idempotently.

    Parameters
    ----------
    path: Path to SQLite database file.
    """
    conn = sqlite3.connect(path)
    try:
        cur = conn.cursor()
        for ddl in DDL_ORDER:
            cur.execute(ddl)
        for ddl in INDEX_ORDER:
            cur.execute(ddl)
        conn.commit()
    finally:
        conn.close()
