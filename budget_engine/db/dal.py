"""Data Access Layer for the budget ledger.

Responsibilities
----------------
- Provide CRUD helpers for budgets, categories and expenses with referential
  integrity (an expense needs an existing category, a category an existing
  budget) and logical archiving of budgets.
- Expose `transaction()`, a write scope opened with ``BEGIN IMMEDIATE`` so a
  read of the approved total and the status write it gates happen under one
  SQLite write lock.
- Offer the aggregate queries (approved totals, per-status totals) that the
  allocation calculator and reporting facade build on.

Rows are returned as plain dicts; money columns are integer cents.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from pathlib import Path
import sqlite3
from typing import Any, Dict, Iterator, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from budget_engine.core.errors import BudgetOverAllocated, InvalidInput, NotFound
from budget_engine.models.budget import (
    BudgetIn,
    BudgetUpdateIn,
    CategoryIn,
    CategoryUpdateIn,
)
from budget_engine.models.constants import APPROVED, PENDING
from budget_engine.models.expense import ExpenseIn, ExpenseUpdateIn
from budget_engine.services.money import from_cents, to_cents
from budget_engine.services.retry import storage_retry

UTC_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"

M = TypeVar("M", bound=BaseModel)
Spec = Union[BaseModel, Mapping[str, Any]]


def _coerce(model_cls: Type[M], spec: Spec) -> M:
    """Validate a model instance or plain mapping into `model_cls`."""
    if isinstance(spec, model_cls):
        return spec
    if isinstance(spec, BaseModel):
        spec = spec.model_dump(exclude_unset=True)
    try:
        return model_cls.model_validate(spec)
    except ValidationError as exc:
        errors = [
            {"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()
        ]
        raise InvalidInput(
            f"invalid {model_cls.__name__} payload", details={"errors": errors}
        ) from exc


class Database:
    def __init__(
        self,
        db_path: Path,
        timeout: float = 5.0,
        enforce_budget_allocation: bool = True,
        storage_retries: int = 1,
    ):
        self.db_path = db_path
        self.timeout = timeout
        self.enforce_budget_allocation = enforce_budget_allocation
        self.storage_retries = storage_retries

    # ------------------------------------------------------------------
    # Connection helpers
    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Write scope holding the database RESERVED lock until commit.

        Concurrent writers block (up to `timeout`) on BEGIN IMMEDIATE, so
        check-then-act sequences run serially. Any exception rolls back.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            cur = conn.cursor()
            try:
                yield cur
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Cursor]:
        conn = self._connect()
        try:
            yield conn.cursor()
        finally:
            conn.close()

    @staticmethod
    def _fetch_one(cur: sqlite3.Cursor, sql: str, params: tuple) -> Optional[Dict[str, Any]]:
        cur.execute(sql, params)
        row = cur.fetchone()
        return dict(row) if row else None

    def _require_budget(self, cur: sqlite3.Cursor, budget_id: int) -> Dict[str, Any]:
        row = self._fetch_one(cur, "SELECT * FROM budgets WHERE id = ?", (budget_id,))
        if not row:
            raise NotFound(f"budget {budget_id} not found")
        return row

    def _require_category(self, cur: sqlite3.Cursor, category_id: int) -> Dict[str, Any]:
        row = self._fetch_one(
            cur, "SELECT * FROM budget_categories WHERE id = ?", (category_id,)
        )
        if not row:
            raise NotFound(f"category {category_id} not found")
        return row

    def _require_expense(self, cur: sqlite3.Cursor, expense_id: int) -> Dict[str, Any]:
        row = self._fetch_one(cur, "SELECT * FROM expenses WHERE id = ?", (expense_id,))
        if not row:
            raise NotFound(f"expense {expense_id} not found")
        return row

    @staticmethod
    def _require_active(budget: Dict[str, Any]) -> None:
        if budget["status"] == "archived":
            raise InvalidInput(f"budget {budget['id']} is archived")

    def _check_allocation_cap(
        self,
        cur: sqlite3.Cursor,
        budget: Dict[str, Any],
        new_allocation_cents: int,
        exclude_category_id: Optional[int] = None,
        total_cents: Optional[int] = None,
    ) -> None:
        if not self.enforce_budget_allocation:
            return
        allocated = self._allocated_cents(cur, budget["id"], exclude_category_id)
        limit = budget["total_cents"] if total_cents is None else total_cents
        if allocated + new_allocation_cents > limit:
            raise BudgetOverAllocated(
                "category allocations would exceed the budget total",
                details={
                    "budget_id": budget["id"],
                    "total_amount": from_cents(limit),
                    "allocated_amount": from_cents(allocated),
                    "requested": from_cents(new_allocation_cents),
                    "unallocated": from_cents(limit - allocated),
                },
            )

    @staticmethod
    def _allocated_cents(
        cur: sqlite3.Cursor, budget_id: int, exclude_category_id: Optional[int] = None
    ) -> int:
        sql = "SELECT COALESCE(SUM(allocated_cents), 0) FROM budget_categories WHERE budget_id = ?"
        params: List[Any] = [budget_id]
        if exclude_category_id is not None:
            sql += " AND id != ?"
            params.append(exclude_category_id)
        cur.execute(sql, params)
        return int(cur.fetchone()[0])

    # ------------------------------------------------------------------
    # Budgets
    @storage_retry
    def create_budget(self, spec: Spec, created_by: Optional[str] = None) -> Dict[str, Any]:
        budget = _coerce(BudgetIn, spec)
        with self.transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO budgets (
                    title, description, total_cents, currency, startup_call_id,
                    created_by, start_date, end_date, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (
                    budget.title,
                    budget.description,
                    to_cents(budget.total_amount),
                    budget.currency,
                    budget.startup_call_id,
                    created_by,
                    budget.start_date.isoformat() if budget.start_date else None,
                    budget.end_date.isoformat() if budget.end_date else None,
                ),
            )
            return self._require_budget(cur, int(cur.lastrowid))

    def get_budget(self, budget_id: int) -> Optional[Dict[str, Any]]:
        with self._reader() as cur:
            return self._fetch_one(cur, "SELECT * FROM budgets WHERE id = ?", (budget_id,))

    def list_budgets(
        self, startup_call_id: Optional[str] = None, include_archived: bool = False
    ) -> List[Dict[str, Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if startup_call_id is not None:
            clauses.append("startup_call_id = ?")
            params.append(startup_call_id)
        if not include_archived:
            clauses.append("status != 'archived'")
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        with self._reader() as cur:
            cur.execute(
                f"SELECT * FROM budgets{where} ORDER BY created_at DESC, id DESC", params
            )
            return [dict(r) for r in cur.fetchall()]

    @storage_retry
    def update_budget(self, budget_id: int, spec: Spec) -> Dict[str, Any]:
        changes = _coerce(BudgetUpdateIn, spec)
        fields = changes.model_fields_set
        with self.transaction() as cur:
            budget = self._require_budget(cur, budget_id)
            self._require_active(budget)
            updates: List[str] = []
            params: List[Any] = []
            if "title" in fields and changes.title is not None:
                updates.append("title = ?")
                params.append(changes.title)
            if "description" in fields:
                updates.append("description = ?")
                params.append(changes.description)
            if "total_amount" in fields and changes.total_amount is not None:
                total_cents = to_cents(changes.total_amount)
                self._check_allocation_cap(cur, budget, 0, total_cents=total_cents)
                updates.append("total_cents = ?")
                params.append(total_cents)
            start = changes.start_date if "start_date" in fields else budget["start_date"]
            end = changes.end_date if "end_date" in fields else budget["end_date"]
            start_iso = start.isoformat() if isinstance(start, date) else start
            end_iso = end.isoformat() if isinstance(end, date) else end
            if start_iso and end_iso and start_iso > end_iso:
                raise InvalidInput("start_date cannot be after end_date")
            if "start_date" in fields:
                updates.append("start_date = ?")
                params.append(start_iso)
            if "end_date" in fields:
                updates.append("end_date = ?")
                params.append(end_iso)
            if updates:
                updates.append(f"updated_at = ({UTC_NOW_SQL})")
                cur.execute(
                    f"UPDATE budgets SET {', '.join(updates)} WHERE id = ?",
                    (*params, budget_id),
                )
            return self._require_budget(cur, budget_id)

    @storage_retry
    def archive_budget(self, budget_id: int) -> Dict[str, Any]:
        with self.transaction() as cur:
            self._require_budget(cur, budget_id)
            cur.execute(
                f"UPDATE budgets SET status = 'archived', updated_at = ({UTC_NOW_SQL}) WHERE id = ?",
                (budget_id,),
            )
            return self._require_budget(cur, budget_id)

    # ------------------------------------------------------------------
    # Categories
    @storage_retry
    def add_category(self, budget_id: int, spec: Spec) -> Dict[str, Any]:
        category = _coerce(CategoryIn, spec)
        allocated = to_cents(category.allocated_amount)
        with self.transaction() as cur:
            budget = self._require_budget(cur, budget_id)
            self._require_active(budget)
            self._check_allocation_cap(cur, budget, allocated)
            cur.execute(
                f"""
                INSERT INTO budget_categories (
                    budget_id, title, description, allocated_cents, currency,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (
                    budget_id,
                    category.title,
                    category.description,
                    allocated,
                    budget["currency"],
                ),
            )
            return self._require_category(cur, int(cur.lastrowid))

    def get_category(
        self, category_id: int, cur: Optional[sqlite3.Cursor] = None
    ) -> Optional[Dict[str, Any]]:
        sql = "SELECT * FROM budget_categories WHERE id = ?"
        if cur is not None:
            return self._fetch_one(cur, sql, (category_id,))
        with self._reader() as rcur:
            return self._fetch_one(rcur, sql, (category_id,))

    def list_categories(self, budget_id: int) -> List[Dict[str, Any]]:
        with self._reader() as cur:
            cur.execute(
                "SELECT * FROM budget_categories WHERE budget_id = ? ORDER BY id ASC",
                (budget_id,),
            )
            return [dict(r) for r in cur.fetchall()]

    @storage_retry
    def update_category(self, category_id: int, spec: Spec) -> Dict[str, Any]:
        changes = _coerce(CategoryUpdateIn, spec)
        fields = changes.model_fields_set
        with self.transaction() as cur:
            category = self._require_category(cur, category_id)
            budget = self._require_budget(cur, category["budget_id"])
            self._require_active(budget)
            updates: List[str] = []
            params: List[Any] = []
            if "title" in fields and changes.title is not None:
                updates.append("title = ?")
                params.append(changes.title)
            if "description" in fields:
                updates.append("description = ?")
                params.append(changes.description)
            if "allocated_amount" in fields and changes.allocated_amount is not None:
                allocated = to_cents(changes.allocated_amount)
                approved = self.approved_total_cents(category_id, cur=cur)
                if allocated < approved:
                    raise InvalidInput(
                        "allocation cannot drop below the category's approved total",
                        details={
                            "approved_total": from_cents(approved),
                            "requested": from_cents(allocated),
                        },
                    )
                self._check_allocation_cap(
                    cur, budget, allocated, exclude_category_id=category_id
                )
                updates.append("allocated_cents = ?")
                params.append(allocated)
            if updates:
                updates.append(f"updated_at = ({UTC_NOW_SQL})")
                cur.execute(
                    f"UPDATE budget_categories SET {', '.join(updates)} WHERE id = ?",
                    (*params, category_id),
                )
            return self._require_category(cur, category_id)

    # ------------------------------------------------------------------
    # Expense CRUD
    @storage_retry
    def create_expense(
        self, category_id: int, spec: Spec, created_by: Optional[str] = None
    ) -> Dict[str, Any]:
        expense = _coerce(ExpenseIn, spec)
        with self.transaction() as cur:
            category = self._require_category(cur, category_id)
            budget = self._require_budget(cur, category["budget_id"])
            self._require_active(budget)
            if expense.currency != category["currency"]:
                raise InvalidInput(
                    f"expense currency {expense.currency} does not match budget currency {category['currency']}"
                )
            cur.execute(
                f"""
                INSERT INTO expenses (
                    budget_id, category_id, title, description, amount_cents, currency,
                    date, status, created_by, receipt_url, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (
                    budget["id"],
                    category_id,
                    expense.title,
                    expense.description,
                    to_cents(expense.amount),
                    expense.currency,
                    expense.date.isoformat(),
                    PENDING,
                    created_by,
                    expense.receipt_url,
                ),
            )
            return self._require_expense(cur, int(cur.lastrowid))

    def get_expense(
        self, expense_id: int, cur: Optional[sqlite3.Cursor] = None
    ) -> Optional[Dict[str, Any]]:
        if cur is not None:
            return self._fetch_one(cur, "SELECT * FROM expenses WHERE id = ?", (expense_id,))
        with self._reader() as rcur:
            return self._fetch_one(rcur, "SELECT * FROM expenses WHERE id = ?", (expense_id,))

    def list_expenses_by_category(self, category_id: int) -> List[Dict[str, Any]]:
        with self._reader() as cur:
            cur.execute(
                "SELECT * FROM expenses WHERE category_id = ? ORDER BY created_at DESC, id DESC",
                (category_id,),
            )
            return [dict(r) for r in cur.fetchall()]

    @staticmethod
    def _expense_filters(
        budget_id: int,
        status: Optional[str],
        start_date: Optional[date],
        end_date: Optional[date],
        category_id: Optional[int] = None,
    ) -> tuple[str, List[Any]]:
        clauses = ["budget_id = ?"]
        params: List[Any] = [budget_id]
        if status:
            clauses.append("status = ?")
            params.append(status)
        if category_id is not None:
            clauses.append("category_id = ?")
            params.append(category_id)
        if start_date:
            clauses.append("date >= ?")
            params.append(start_date.isoformat())
        if end_date:
            clauses.append("date <= ?")
            params.append(end_date.isoformat())
        return " WHERE " + " AND ".join(clauses), params

    def list_expenses_by_budget(
        self,
        budget_id: int,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        category_id: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        where, params = self._expense_filters(
            budget_id, status, start_date, end_date, category_id
        )
        sql = f"SELECT * FROM expenses{where} ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        with self._reader() as cur:
            cur.execute(sql, params)
            return [dict(r) for r in cur.fetchall()]

    def count_expenses_by_budget(
        self,
        budget_id: int,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category_id: Optional[int] = None,
    ) -> int:
        where, params = self._expense_filters(
            budget_id, status, start_date, end_date, category_id
        )
        with self._reader() as cur:
            cur.execute(f"SELECT COUNT(*) FROM expenses{where}", params)
            row = cur.fetchone()
            return int(row[0] if row and row[0] is not None else 0)

    @storage_retry
    def update_expense(self, expense_id: int, spec: Spec) -> Dict[str, Any]:
        changes = _coerce(ExpenseUpdateIn, spec)
        with self.transaction() as cur:
            row = self._require_expense(cur, expense_id)
            if row["status"] == APPROVED and (
                changes.amount is not None or changes.date is not None
            ):
                raise InvalidInput("amount and date of an approved expense cannot change")
            updates: List[str] = []
            params: List[Any] = []
            if changes.title is not None:
                updates.append("title = ?")
                params.append(changes.title)
            if changes.description is not None:
                updates.append("description = ?")
                params.append(changes.description)
            if changes.amount is not None:
                updates.append("amount_cents = ?")
                params.append(to_cents(changes.amount))
            if changes.date is not None:
                updates.append("date = ?")
                params.append(changes.date.isoformat())
            if changes.receipt_url is not None:
                updates.append("receipt_url = ?")
                params.append(changes.receipt_url)
            updates.append(f"updated_at = ({UTC_NOW_SQL})")
            cur.execute(
                f"UPDATE expenses SET {', '.join(updates)} WHERE id = ?",
                (*params, expense_id),
            )
            return self._require_expense(cur, expense_id)

    @storage_retry
    def delete_expense(self, expense_id: int) -> None:
        with self.transaction() as cur:
            row = self._require_expense(cur, expense_id)
            if row["status"] == APPROVED:
                raise InvalidInput("approved expenses cannot be deleted; reopen it first")
            cur.execute("DELETE FROM expenses WHERE id = ?", (expense_id,))

    # ------------------------------------------------------------------
    # Status & audit trail
    def update_expense_status(
        self,
        cur: sqlite3.Cursor,
        expense_id: int,
        status: str,
        from_status: str,
        actor_role: str,
        actor_id: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> None:
        """Write a status change plus its audit entry on the caller's transaction."""
        cur.execute(
            f"UPDATE expenses SET status = ?, updated_at = ({UTC_NOW_SQL}) WHERE id = ?",
            (status, expense_id),
        )
        if cur.rowcount == 0:
            raise NotFound(f"expense {expense_id} not found")
        cur.execute(
            f"""
            INSERT INTO expense_audit (
                expense_id, actor_id, actor_role, from_status, to_status, comment, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ({UTC_NOW_SQL}))
            """,
            (expense_id, actor_id, actor_role, from_status, status, comment),
        )

    def list_audit_trail(
        self, expense_id: int, cur: Optional[sqlite3.Cursor] = None
    ) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM expense_audit WHERE expense_id = ? ORDER BY id ASC"
        if cur is not None:
            cur.execute(sql, (expense_id,))
            return [dict(r) for r in cur.fetchall()]
        with self._reader() as rcur:
            rcur.execute(sql, (expense_id,))
            return [dict(r) for r in rcur.fetchall()]

    # ------------------------------------------------------------------
    # Aggregations
    def approved_total_cents(
        self,
        category_id: int,
        exclude_expense_id: Optional[int] = None,
        cur: Optional[sqlite3.Cursor] = None,
    ) -> int:
        sql = (
            "SELECT COALESCE(SUM(amount_cents), 0) FROM expenses "
            "WHERE category_id = ? AND status = ?"
        )
        params: List[Any] = [category_id, APPROVED]
        if exclude_expense_id is not None:
            sql += " AND id != ?"
            params.append(exclude_expense_id)
        if cur is not None:
            cur.execute(sql, params)
            return int(cur.fetchone()[0])
        with self._reader() as rcur:
            rcur.execute(sql, params)
            return int(rcur.fetchone()[0])

    def status_totals_by_category(
        self,
        budget_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[int, Dict[str, Dict[str, int]]]:
        """Return {category_id: {status: {"cents": n, "count": k}}} for a budget."""
        where, params = self._expense_filters(budget_id, None, start_date, end_date)
        with self._reader() as cur:
            cur.execute(
                f"""
                SELECT category_id, status,
                       COALESCE(SUM(amount_cents), 0) AS cents,
                       COUNT(*) AS count
                FROM expenses
                {where}
                GROUP BY category_id, status
                """,
                params,
            )
            totals: Dict[int, Dict[str, Dict[str, int]]] = {}
            for r in cur.fetchall():
                totals.setdefault(int(r["category_id"]), {})[r["status"]] = {
                    "cents": int(r["cents"]),
                    "count": int(r["count"]),
                }
            return totals

    # ------------------------------------------------------------------
    # Notifications (delivered events)
    @storage_retry
    def insert_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        severity: str,
        expense_id: Optional[int] = None,
    ) -> int:
        with self.transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO notifications (user_id, title, message, severity, expense_id, created_at)
                VALUES (?, ?, ?, ?, ?, ({UTC_NOW_SQL}))
                """,
                (user_id, title, message, severity, expense_id),
            )
            return int(cur.lastrowid)

    def list_notifications(
        self, user_id: Optional[str] = None, unread_only: bool = False
    ) -> List[Dict[str, Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if unread_only:
            clauses.append("is_read = 0")
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        with self._reader() as cur:
            cur.execute(f"SELECT * FROM notifications{where} ORDER BY id DESC", params)
            return [dict(r) for r in cur.fetchall()]


__all__ = ["Database"]
