"""Read-only reporting facade over the ledger.

Provides category remaining balances, budget spent totals, paginated expense
listings and budget summaries/reports for dashboards. Every function opens its
own read connection and never writes, so calls are safe to run concurrently
with approvals; a figure reflects the last committed transition.

Category status rows reuse the threshold vocabulary of the settings
(`budget_warn_pct`, `budget_danger_pct`): `warn` / `danger` flip once the
approved share of the allocation crosses them.
"""

from __future__ import annotations
from datetime import date
from typing import Any, Dict, List, Optional

from budget_engine.core.errors import InvalidInput, InvalidStatus, NotFound
from budget_engine.db.dal import Database
from budget_engine.models.constants import (
    APPROVED,
    EXPENSE_STATUSES,
    IN_REVIEW,
    PENDING,
    REJECTED,
)
from budget_engine.models.expense import ExpenseOut, ExpensePage
from .allocation import AllocationCalculator
from .money import from_cents, round2

_EMPTY = {"cents": 0, "count": 0}


def _percent(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round((part / whole) * 100, 2)


def category_status(
    category: Dict[str, Any],
    totals: Dict[str, Dict[str, int]],
    warn_pct: int,
    danger_pct: int,
) -> Dict[str, Any]:
    allocated = int(category["allocated_cents"])
    spent = totals.get(APPROVED, _EMPTY)["cents"]
    pending = totals.get(PENDING, _EMPTY)["cents"] + totals.get(IN_REVIEW, _EMPTY)["cents"]
    percent_used = _percent(spent, allocated)
    return {
        "category_id": category["id"],
        "title": category["title"],
        "allocated_amount": from_cents(allocated),
        "spent_amount": from_cents(spent),
        "pending_amount": from_cents(pending),
        "remaining": from_cents(allocated - spent),
        "percent_used": percent_used,
        "warn": percent_used >= warn_pct if allocated > 0 else False,
        "danger": percent_used >= danger_pct if allocated > 0 else False,
        "expense_count": sum(t["count"] for t in totals.values()),
    }


class ReportingService:
    def __init__(
        self,
        db: Database,
        warn_pct: int = 80,
        danger_pct: int = 90,
        default_page_size: int = 50,
        max_page_size: int = 200,
    ):
        self.db = db
        self.calculator = AllocationCalculator(db)
        self.warn_pct = warn_pct
        self.danger_pct = danger_pct
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    def _budget(self, budget_id: int) -> Dict[str, Any]:
        budget = self.db.get_budget(budget_id)
        if not budget:
            raise NotFound(f"budget {budget_id} not found")
        return budget

    def category_remaining(self, category_id: int) -> float:
        category = self.db.get_category(category_id)
        if not category:
            raise NotFound(f"category {category_id} not found")
        approved = self.calculator.approved_total(category_id)
        return from_cents(int(category["allocated_cents"]) - approved)

    def budget_spent(self, budget_id: int) -> float:
        self._budget(budget_id)
        return from_cents(
            sum(
                self.calculator.approved_total(c["id"])
                for c in self.db.list_categories(budget_id)
            )
        )

    def list_expenses(
        self,
        budget_id: int,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        category_id: Optional[int] = None,
    ) -> ExpensePage:
        self._budget(budget_id)
        if status is not None:
            status = status.lower()
            if status not in EXPENSE_STATUSES:
                raise InvalidStatus(f"invalid status filter '{status}'")
        if start_date and end_date and start_date > end_date:
            raise InvalidInput("start_date cannot be after end_date")
        if offset < 0:
            raise InvalidInput("offset cannot be negative")
        size = self.default_page_size if limit is None else limit
        if size < 1:
            raise InvalidInput("limit must be positive")
        size = min(size, self.max_page_size)
        rows = self.db.list_expenses_by_budget(
            budget_id,
            status=status,
            start_date=start_date,
            end_date=end_date,
            limit=size,
            offset=offset,
            category_id=category_id,
        )
        total = self.db.count_expenses_by_budget(
            budget_id,
            status=status,
            start_date=start_date,
            end_date=end_date,
            category_id=category_id,
        )
        return ExpensePage(
            items=[ExpenseOut.from_row(r) for r in rows],
            total=total,
            limit=size,
            offset=offset,
        )

    def _summarize(
        self,
        budget: Dict[str, Any],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        categories = self.db.list_categories(budget["id"])
        totals = self.db.status_totals_by_category(budget["id"], start_date, end_date)
        statuses = [
            category_status(c, totals.get(c["id"], {}), self.warn_pct, self.danger_pct)
            for c in categories
        ]
        total = int(budget["total_cents"])
        allocated = sum(int(c["allocated_cents"]) for c in categories)
        spent = 0
        pending = 0
        counts = {s: 0 for s in sorted(EXPENSE_STATUSES)}
        for per_status in totals.values():
            for status, agg in per_status.items():
                counts[status] += agg["count"]
                if status == APPROVED:
                    spent += agg["cents"]
                elif status != REJECTED:
                    pending += agg["cents"]
        return {
            "budget_id": budget["id"],
            "title": budget["title"],
            "currency": budget["currency"],
            "status": budget["status"],
            "total_amount": from_cents(total),
            "allocated_amount": from_cents(allocated),
            "unallocated_amount": from_cents(total - allocated),
            "over_allocated": allocated > total,
            "spent_amount": from_cents(spent),
            "pending_amount": from_cents(pending),
            "remaining_amount": from_cents(total - spent),
            "percent_used": _percent(spent, total),
            "expense_counts": counts,
            "categories": statuses,
        }

    def budget_summary(self, budget_id: int) -> Dict[str, Any]:
        return self._summarize(self._budget(budget_id))

    def budget_report(
        self,
        startup_call_id: str,
        budget_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Per-call report: one summary per budget plus call-wide totals.

        Expense aggregates honour the optional date range; allocations do not.
        """
        if start_date and end_date and start_date > end_date:
            raise InvalidInput("start_date cannot be after end_date")
        budgets = self.db.list_budgets(startup_call_id, include_archived=True)
        if budget_id is not None:
            budgets = [b for b in budgets if b["id"] == budget_id]
            if not budgets:
                raise NotFound(
                    f"budget {budget_id} not found for startup call {startup_call_id}"
                )
        summaries: List[Dict[str, Any]] = []
        for budget in budgets:
            summary = self._summarize(budget, start_date, end_date)
            rows = self.db.list_expenses_by_budget(
                budget["id"], start_date=start_date, end_date=end_date
            )
            summary["expenses"] = [ExpenseOut.from_row(r) for r in rows]
            summaries.append(summary)
        total = sum(s["total_amount"] for s in summaries)
        spent = sum(s["spent_amount"] for s in summaries)
        return {
            "startup_call_id": startup_call_id,
            "start_date": start_date,
            "end_date": end_date,
            "budget_count": len(summaries),
            "total_budget": round2(total),
            "total_spent": round2(spent),
            "total_remaining": round2(total - spent),
            "budgets": summaries,
        }


__all__ = ["ReportingService", "category_status"]
