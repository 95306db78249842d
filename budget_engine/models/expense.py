from __future__ import annotations
import datetime as dt
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from budget_engine.services.money import from_cents
from .budget import _at_least_one_cent, _parse_date, _parse_ts
from .constants import CURRENCIES


class ExpenseIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    amount: float = Field(..., gt=0)
    currency: str
    date: dt.date
    receipt_url: Optional[str] = Field(None, max_length=2048)

    amount_in_cents = field_validator("amount")(_at_least_one_cent)

    @field_validator("currency")
    @classmethod
    def valid_currency(cls, v: str) -> str:
        v = v.upper()
        if v not in CURRENCIES:
            raise ValueError("unsupported currency")
        return v

    @field_validator("date")
    @classmethod
    def date_not_future(cls, v: dt.date) -> dt.date:
        if v > dt.date.today():
            raise ValueError("date cannot be in the future")
        return v


class ExpenseUpdateIn(BaseModel):
    """Partial update model. Currency and category are immutable.

    All fields optional; at least one must be provided. Amount and date edits
    are refused by the data layer once the expense is approved so the
    category's approved total only ever moves through status transitions.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    amount: Optional[float] = Field(None, gt=0)
    date: Optional[dt.date] = None
    receipt_url: Optional[str] = Field(None, max_length=2048)

    amount_in_cents = field_validator("amount")(_at_least_one_cent)

    @field_validator("date")
    @classmethod
    def date_not_future(cls, v):  # type: ignore[override]
        if v is not None and v > dt.date.today():
            raise ValueError("date cannot be in the future")
        return v

    @model_validator(mode="after")
    def at_least_one(self) -> "ExpenseUpdateIn":
        if not any(
            getattr(self, f) is not None
            for f in ["title", "description", "amount", "date", "receipt_url"]
        ):
            raise ValueError("at least one field must be provided for update")
        return self


class StatusTransitionIn(BaseModel):
    # Left as free text so unknown values surface as invalid_status, not 422
    status: str
    comment: Optional[str] = Field(None, max_length=2000)


class AuditEntry(BaseModel):
    actor_id: Optional[str] = None
    actor_role: str
    from_status: str
    to_status: str
    comment: Optional[str] = None
    created_at: dt.datetime

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AuditEntry":
        return cls(
            actor_id=row.get("actor_id"),
            actor_role=row["actor_role"],
            from_status=row["from_status"],
            to_status=row["to_status"],
            comment=row.get("comment"),
            created_at=_parse_ts(row["created_at"]),
        )


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    budget_id: int
    category_id: int
    title: str
    description: Optional[str] = None
    amount: float
    currency: str
    date: dt.date
    status: str
    created_by: Optional[str] = None
    receipt_url: Optional[str] = None
    created_at: dt.datetime
    updated_at: dt.datetime
    audit_trail: List[AuditEntry] = Field(default_factory=list)

    @classmethod
    def from_row(
        cls, row: Dict[str, Any], audit: Optional[List[Dict[str, Any]]] = None
    ) -> "ExpenseOut":
        return cls(
            id=row["id"],
            budget_id=row["budget_id"],
            category_id=row["category_id"],
            title=row["title"],
            description=row.get("description"),
            amount=from_cents(row["amount_cents"]),
            currency=row["currency"],
            date=_parse_date(row["date"]),
            status=row["status"],
            created_by=row.get("created_by"),
            receipt_url=row.get("receipt_url"),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            audit_trail=[AuditEntry.from_row(a) for a in audit or []],
        )


class ExpensePage(BaseModel):
    items: List[ExpenseOut]
    total: int
    limit: int
    offset: int
