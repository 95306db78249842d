from datetime import date
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response

from budget_engine.core.deps import (
    Actor,
    get_actor,
    get_approval_service,
    get_db,
    get_reporting_service,
    get_trigger,
)
from budget_engine.core.errors import NotFound
from budget_engine.db.dal import Database
from budget_engine.models.expense import (
    AuditEntry,
    ExpenseIn,
    ExpenseOut,
    ExpensePage,
    ExpenseUpdateIn,
    StatusTransitionIn,
)
from budget_engine.services.approval import ApprovalService
from budget_engine.services.notifications import NotificationTrigger
from budget_engine.services.reporting import ReportingService

router = APIRouter(tags=["expenses"])
logger = logging.getLogger("budget_engine.expenses")


def _expense_out(db: Database, row: dict) -> ExpenseOut:
    return ExpenseOut.from_row(row, db.list_audit_trail(row["id"]))


@router.post(
    "/categories/{category_id}/expenses",
    response_model=ExpenseOut,
    status_code=201,
    summary="Submit an expense against a category",
)
async def create_expense(
    category_id: int,
    payload: ExpenseIn,
    actor: Actor = Depends(get_actor),
    db: Database = Depends(get_db),
):
    row = db.create_expense(category_id, payload, created_by=actor.id)
    return _expense_out(db, row)


@router.get(
    "/categories/{category_id}/expenses",
    response_model=List[ExpenseOut],
    summary="List a category's expenses (newest first)",
)
async def list_category_expenses(category_id: int, db: Database = Depends(get_db)):
    if not db.get_category(category_id):
        raise NotFound(f"category {category_id} not found")
    return [ExpenseOut.from_row(r) for r in db.list_expenses_by_category(category_id)]


@router.get(
    "/budgets/{budget_id}/expenses",
    response_model=ExpensePage,
    summary="Paginated expense listing with status/date filters",
)
async def list_budget_expenses(
    budget_id: int,
    status: Optional[str] = Query(None, description="Filter by expense status"),
    start_date: Optional[date] = Query(None, description="Filter: start date inclusive"),
    end_date: Optional[date] = Query(None, description="Filter: end date inclusive"),
    category_id: Optional[int] = Query(None, description="Restrict to one category"),
    limit: Optional[int] = Query(None, ge=1, description="Page size"),
    offset: int = Query(0, ge=0),
    reporting: ReportingService = Depends(get_reporting_service),
):
    return reporting.list_expenses(
        budget_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
        category_id=category_id,
    )


@router.get("/expenses/{expense_id}", response_model=ExpenseOut, summary="Get an expense")
async def get_expense(expense_id: int, db: Database = Depends(get_db)):
    row = db.get_expense(expense_id)
    if not row:
        raise NotFound(f"expense {expense_id} not found")
    return _expense_out(db, row)


@router.patch(
    "/expenses/{expense_id}", response_model=ExpenseOut, summary="Edit an expense (partial)"
)
async def update_expense(
    expense_id: int,
    payload: ExpenseUpdateIn,
    actor: Actor = Depends(get_actor),
    db: Database = Depends(get_db),
):
    row = db.update_expense(expense_id, payload)
    logger.info(
        "expense edited",
        extra={"expense_id": expense_id, "actor_id": actor.id},
    )
    return _expense_out(db, row)


@router.delete("/expenses/{expense_id}", status_code=204, summary="Delete an expense")
async def delete_expense(
    expense_id: int,
    actor: Actor = Depends(get_actor),
    db: Database = Depends(get_db),
):
    db.delete_expense(expense_id)
    logger.info("expense deleted", extra={"expense_id": expense_id, "actor_id": actor.id})
    return Response(status_code=204)


# Sync handler: runs in the threadpool so waiting on the write lock never
# stalls the event loop.
@router.post(
    "/expenses/{expense_id}/status",
    response_model=ExpenseOut,
    summary="Transition an expense's approval status",
)
def transition_expense(
    expense_id: int,
    payload: StatusTransitionIn,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    approval: ApprovalService = Depends(get_approval_service),
    trigger: NotificationTrigger = Depends(get_trigger),
):
    expense = approval.transition(
        expense_id,
        payload.status,
        actor_role=actor.role,
        comment=payload.comment,
        actor_id=actor.id,
    )
    background_tasks.add_task(trigger.flush)
    return expense


@router.get(
    "/expenses/{expense_id}/audit",
    response_model=List[AuditEntry],
    summary="Status transition history of an expense",
)
async def expense_audit(expense_id: int, db: Database = Depends(get_db)):
    if not db.get_expense(expense_id):
        raise NotFound(f"expense {expense_id} not found")
    return [AuditEntry.from_row(a) for a in db.list_audit_trail(expense_id)]
