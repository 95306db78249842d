from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class NotificationOut(BaseModel):
    id: int
    user_id: str
    title: str
    message: str
    severity: str
    expense_id: Optional[int] = None
    is_read: bool = False
    created_at: datetime

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "NotificationOut":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            message=row["message"],
            severity=row["severity"],
            expense_id=row.get("expense_id"),
            is_read=bool(row.get("is_read", 0)),
            created_at=datetime.fromisoformat(row["created_at"].replace("Z", "")),
        )
