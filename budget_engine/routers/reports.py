from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from budget_engine.core.deps import get_reporting_service
from budget_engine.models.expense import ExpenseOut
from budget_engine.services.reporting import ReportingService

router = APIRouter(tags=["reports"])


class CategoryRemaining(BaseModel):
    category_id: int
    remaining: float


class BudgetSpent(BaseModel):
    budget_id: int
    spent: float


class CategoryStatus(BaseModel):
    category_id: int
    title: str
    allocated_amount: float
    spent_amount: float
    pending_amount: float
    remaining: float
    percent_used: float
    warn: bool
    danger: bool
    expense_count: int


class BudgetSummary(BaseModel):
    budget_id: int
    title: str
    currency: str
    status: str
    total_amount: float
    allocated_amount: float
    unallocated_amount: float
    over_allocated: bool
    spent_amount: float
    pending_amount: float
    remaining_amount: float
    percent_used: float
    expense_counts: Dict[str, int]
    categories: List[CategoryStatus]


class BudgetReportSection(BudgetSummary):
    expenses: List[ExpenseOut]


class BudgetReport(BaseModel):
    startup_call_id: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget_count: int
    total_budget: float
    total_spent: float
    total_remaining: float
    budgets: List[BudgetReportSection]


@router.get(
    "/categories/{category_id}/remaining",
    response_model=CategoryRemaining,
    summary="Allocation minus approved total for a category",
)
async def category_remaining(
    category_id: int, reporting: ReportingService = Depends(get_reporting_service)
):
    return CategoryRemaining(
        category_id=category_id, remaining=reporting.category_remaining(category_id)
    )


@router.get(
    "/budgets/{budget_id}/spent",
    response_model=BudgetSpent,
    summary="Sum of approved totals across a budget's categories",
)
async def budget_spent(
    budget_id: int, reporting: ReportingService = Depends(get_reporting_service)
):
    return BudgetSpent(budget_id=budget_id, spent=reporting.budget_spent(budget_id))


@router.get(
    "/budgets/{budget_id}/summary",
    response_model=BudgetSummary,
    summary="Budget totals with per-category status",
)
async def budget_summary(
    budget_id: int, reporting: ReportingService = Depends(get_reporting_service)
):
    return reporting.budget_summary(budget_id)


@router.get(
    "/reports/startup-calls/{startup_call_id}",
    response_model=BudgetReport,
    summary="Budget report for a startup call (optionally one budget / date range)",
)
async def startup_call_report(
    startup_call_id: str,
    budget_id: Optional[int] = Query(None, description="Restrict to one budget"),
    start_date: Optional[date] = Query(None, description="Expenses from (inclusive)"),
    end_date: Optional[date] = Query(None, description="Expenses until (inclusive)"),
    reporting: ReportingService = Depends(get_reporting_service),
):
    return reporting.budget_report(
        startup_call_id, budget_id=budget_id, start_date=start_date, end_date=end_date
    )
