from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from budget_engine.core.deps import get_db
from budget_engine.db.dal import Database
from budget_engine.models.notification import NotificationOut

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get(
    "/",
    response_model=List[NotificationOut],
    summary="Delivered status-change notifications (newest first)",
)
async def list_notifications(
    user_id: Optional[str] = Query(None, description="Recipient user id"),
    unread_only: bool = Query(False),
    db: Database = Depends(get_db),
):
    return [
        NotificationOut.from_row(r)
        for r in db.list_notifications(user_id=user_id, unread_only=unread_only)
    ]
