"""Allocation calculator.

Computes the approved total of a category: the sum of amounts of its
expenses in status ``approved``, optionally excluding one expense (the one
being re-evaluated). Pass the cursor of an open `Database.transaction()` when
the result gates a write, so the read happens under the same lock.
"""

from __future__ import annotations
import sqlite3
from dataclasses import dataclass
from typing import Optional

from budget_engine.db.dal import Database
from .money import from_cents


@dataclass
class AllocationCheck:
    category_id: int
    category_name: str
    allocated_cents: int
    approved_cents: int  # excludes the expense under evaluation
    requested_cents: int

    @property
    def remaining_cents(self) -> int:
        return self.allocated_cents - self.approved_cents

    @property
    def fits(self) -> bool:
        return self.approved_cents + self.requested_cents <= self.allocated_cents

    def as_details(self) -> dict:
        return {
            "category_name": self.category_name,
            "allocated_amount": from_cents(self.allocated_cents),
            "current_spent": from_cents(self.approved_cents),
            "requested": from_cents(self.requested_cents),
            "remaining": from_cents(self.remaining_cents),
        }


class AllocationCalculator:
    def __init__(self, db: Database):
        self.db = db

    def approved_total(
        self,
        category_id: int,
        exclude_expense_id: Optional[int] = None,
        cur: Optional[sqlite3.Cursor] = None,
    ) -> int:
        """Approved total in cents; 0 for a category without approvals."""
        return self.db.approved_total_cents(
            category_id, exclude_expense_id=exclude_expense_id, cur=cur
        )

    def check(
        self,
        category: dict,
        expense: dict,
        cur: Optional[sqlite3.Cursor] = None,
    ) -> AllocationCheck:
        approved = self.approved_total(
            category["id"], exclude_expense_id=expense["id"], cur=cur
        )
        return AllocationCheck(
            category_id=category["id"],
            category_name=category["title"],
            allocated_cents=int(category["allocated_cents"]),
            approved_cents=approved,
            requested_cents=int(expense["amount_cents"]),
        )


__all__ = ["AllocationCalculator", "AllocationCheck"]
