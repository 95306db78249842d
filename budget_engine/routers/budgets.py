from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from budget_engine.core.deps import Actor, get_db, require_admin
from budget_engine.core.errors import NotFound
from budget_engine.db.dal import Database
from budget_engine.models.budget import (
    BudgetIn,
    BudgetOut,
    BudgetUpdateIn,
    CategoryIn,
    CategoryOut,
    CategoryUpdateIn,
)

router = APIRouter(tags=["budgets"])


def _budget_out(db: Database, row: dict) -> BudgetOut:
    return BudgetOut.from_row(row, db.list_categories(row["id"]))


@router.post(
    "/budgets/", response_model=BudgetOut, status_code=201, summary="Create a budget"
)
async def create_budget(
    payload: BudgetIn,
    actor: Actor = Depends(require_admin),
    db: Database = Depends(get_db),
):
    row = db.create_budget(payload, created_by=actor.id)
    return _budget_out(db, row)


@router.get("/budgets/", response_model=List[BudgetOut], summary="List budgets")
async def list_budgets(
    startup_call_id: Optional[str] = Query(None, description="Owning startup call"),
    include_archived: bool = Query(False, description="Include archived budgets"),
    db: Database = Depends(get_db),
):
    rows = db.list_budgets(startup_call_id, include_archived=include_archived)
    return [_budget_out(db, r) for r in rows]


@router.get("/budgets/{budget_id}", response_model=BudgetOut, summary="Get a budget")
async def get_budget(budget_id: int, db: Database = Depends(get_db)):
    row = db.get_budget(budget_id)
    if not row:
        raise NotFound(f"budget {budget_id} not found")
    return _budget_out(db, row)


@router.patch(
    "/budgets/{budget_id}", response_model=BudgetOut, summary="Edit a budget (partial)"
)
async def update_budget(
    budget_id: int,
    payload: BudgetUpdateIn,
    _: Actor = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return _budget_out(db, db.update_budget(budget_id, payload))


@router.post(
    "/budgets/{budget_id}/archive",
    response_model=BudgetOut,
    summary="Archive a budget (logical delete)",
)
async def archive_budget(
    budget_id: int,
    _: Actor = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return _budget_out(db, db.archive_budget(budget_id))


@router.post(
    "/budgets/{budget_id}/categories",
    response_model=CategoryOut,
    status_code=201,
    summary="Add a category to a budget",
)
async def add_category(
    budget_id: int,
    payload: CategoryIn,
    _: Actor = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return CategoryOut.from_row(db.add_category(budget_id, payload))


@router.get(
    "/budgets/{budget_id}/categories",
    response_model=List[CategoryOut],
    summary="List a budget's categories",
)
async def list_categories(budget_id: int, db: Database = Depends(get_db)):
    if not db.get_budget(budget_id):
        raise NotFound(f"budget {budget_id} not found")
    return [CategoryOut.from_row(r) for r in db.list_categories(budget_id)]


@router.get(
    "/categories/{category_id}", response_model=CategoryOut, summary="Get a category"
)
async def get_category(category_id: int, db: Database = Depends(get_db)):
    row = db.get_category(category_id)
    if not row:
        raise NotFound(f"category {category_id} not found")
    return CategoryOut.from_row(row)


@router.patch(
    "/categories/{category_id}",
    response_model=CategoryOut,
    summary="Edit a category (partial)",
)
async def update_category(
    category_id: int,
    payload: CategoryUpdateIn,
    _: Actor = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return CategoryOut.from_row(db.update_category(category_id, payload))
