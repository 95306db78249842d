"""Expense approval state machine.

`ApprovalService.transition` is the single entry point for status changes:

1. only the admin role may transition (`Unauthorized` otherwise);
2. the target must be one of pending / in_review / approved / rejected
   (`InvalidStatus`), and reachable from the current status
   (`InvalidTransition`);
3. reapplying the current status is a no-op: no write, no audit entry,
   no notification;
4. approving re-reads the category's approved total inside the same
   ``BEGIN IMMEDIATE`` transaction as the status write, and refuses with
   `BudgetExceeded` when ``approved_total + amount > allocated``;
5. the status write and its audit entry commit together, after which a
   `NotificationEvent` is queued on the trigger.

Transient storage errors are retried once (see `services.retry`) and then
surface as `StorageUnavailable`.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from budget_engine.core.errors import (
    BudgetExceeded,
    InvalidStatus,
    InvalidTransition,
    NotFound,
    Unauthorized,
)
from budget_engine.db.dal import Database
from budget_engine.models.constants import ALLOWED_TRANSITIONS, APPROVED, EXPENSE_STATUSES
from budget_engine.models.expense import ExpenseOut
from .allocation import AllocationCalculator
from .notifications import NotificationEvent, NotificationTrigger
from .retry import call_with_storage_retry

logger = logging.getLogger("budget_engine.approval")


class ApprovalService:
    def __init__(
        self,
        db: Database,
        trigger: NotificationTrigger,
        admin_role: str = "admin",
        storage_retries: int = 1,
    ):
        self.db = db
        self.trigger = trigger
        self.admin_role = admin_role
        self.storage_retries = storage_retries
        self.calculator = AllocationCalculator(db)

    def transition(
        self,
        expense_id: int,
        target_status: str,
        actor_role: Optional[str],
        comment: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> ExpenseOut:
        if actor_role != self.admin_role:
            raise Unauthorized("only administrators can change expense status")
        target = (target_status or "").strip().lower()
        if target not in EXPENSE_STATUSES:
            raise InvalidStatus(
                f"invalid status '{target_status}'; expected one of {sorted(EXPENSE_STATUSES)}"
            )
        comment = comment.strip() if comment else None

        expense, changed = call_with_storage_retry(
            lambda: self._apply(expense_id, target, actor_role, actor_id, comment),
            retries=self.storage_retries,
        )
        if changed:
            logger.info(
                "expense status changed",
                extra={"expense_id": expense_id, "status": target, "actor_id": actor_id},
            )
            self.trigger.enqueue(NotificationEvent(expense_id, target, comment))
        return expense

    def _apply(
        self,
        expense_id: int,
        target: str,
        actor_role: str,
        actor_id: Optional[str],
        comment: Optional[str],
    ) -> Tuple[ExpenseOut, bool]:
        with self.db.transaction() as cur:
            expense = self.db.get_expense(expense_id, cur=cur)
            if expense is None:
                raise NotFound(f"expense {expense_id} not found")
            current = expense["status"]
            if current == target:
                return ExpenseOut.from_row(expense, self.db.list_audit_trail(expense_id, cur)), False
            if target not in ALLOWED_TRANSITIONS.get(current, ()):
                raise InvalidTransition(
                    f"cannot move expense from {current} to {target}"
                )

            if target == APPROVED:
                category = self.db.get_category(expense["category_id"], cur=cur)
                if category is None:
                    raise NotFound(f"category {expense['category_id']} not found")
                check = self.calculator.check(category, expense, cur=cur)
                if not check.fits:
                    logger.warning(
                        "approval refused: category allocation exceeded",
                        extra={"expense_id": expense_id, "category_id": category["id"]},
                    )
                    raise BudgetExceeded(**check.as_details())

            self.db.update_expense_status(
                cur,
                expense_id,
                target,
                from_status=current,
                actor_role=actor_role,
                actor_id=actor_id,
                comment=comment,
            )
            updated = self.db.get_expense(expense_id, cur=cur)
            audit = self.db.list_audit_trail(expense_id, cur)
            return ExpenseOut.from_row(updated, audit), True


__all__ = ["ApprovalService"]
