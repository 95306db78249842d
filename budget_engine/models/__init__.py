"""Pydantic domain models for the budget allocation engine."""

from .constants import (
    CURRENCIES,
    EXPENSE_STATUSES,
    ALLOWED_TRANSITIONS,
)  # re-export
from .budget import BudgetIn, BudgetOut, CategoryIn, CategoryOut
from .expense import ExpenseIn, ExpenseOut, ExpensePage, StatusTransitionIn
from .notification import NotificationOut

__all__ = [
    "CURRENCIES",
    "EXPENSE_STATUSES",
    "ALLOWED_TRANSITIONS",
    "BudgetIn",
    "BudgetOut",
    "CategoryIn",
    "CategoryOut",
    "ExpenseIn",
    "ExpenseOut",
    "ExpensePage",
    "StatusTransitionIn",
    "NotificationOut",
]
