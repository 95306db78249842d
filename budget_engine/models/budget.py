from __future__ import annotations
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from budget_engine.services.money import from_cents, to_cents
from .constants import CURRENCIES


def _parse_ts(raw: Any) -> Any:
    if isinstance(raw, str):
        return datetime.fromisoformat(raw.replace("Z", ""))
    return raw


def _parse_date(raw: Any) -> Optional[date]:
    if isinstance(raw, str) and raw:
        return date.fromisoformat(raw)
    return raw or None


# Amounts are stored as cents; anything rounding to zero is not positive
def _at_least_one_cent(v: Optional[float]) -> Optional[float]:
    if v is not None and to_cents(v) <= 0:
        raise ValueError("amount must be at least 0.01")
    return v


class BudgetIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    total_amount: float = Field(..., gt=0)
    currency: str
    startup_call_id: str = Field(..., min_length=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    total_in_cents = field_validator("total_amount")(_at_least_one_cent)

    @field_validator("currency")
    @classmethod
    def valid_currency(cls, v: str) -> str:
        v = v.upper()
        if v not in CURRENCIES:
            raise ValueError("unsupported currency")
        return v

    @model_validator(mode="after")
    def date_order(self) -> "BudgetIn":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date cannot be after end_date")
        return self


class BudgetUpdateIn(BaseModel):
    """Partial update model. Currency immutable once categories exist."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    total_amount: Optional[float] = Field(None, gt=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    total_in_cents = field_validator("total_amount")(_at_least_one_cent)

    @model_validator(mode="after")
    def at_least_one(self) -> "BudgetUpdateIn":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided for update")
        return self


class CategoryIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    allocated_amount: float = Field(..., ge=0)


class CategoryUpdateIn(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    allocated_amount: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def at_least_one(self) -> "CategoryUpdateIn":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided for update")
        return self


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    budget_id: int
    title: str
    description: Optional[str] = None
    allocated_amount: float
    currency: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CategoryOut":
        return cls(
            id=row["id"],
            budget_id=row["budget_id"],
            title=row["title"],
            description=row.get("description"),
            allocated_amount=from_cents(row["allocated_cents"]),
            currency=row["currency"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    total_amount: float
    currency: str
    startup_call_id: str
    created_by: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: str
    created_at: datetime
    updated_at: datetime
    categories: List[CategoryOut] = Field(default_factory=list)

    @classmethod
    def from_row(
        cls, row: Dict[str, Any], categories: Optional[List[Dict[str, Any]]] = None
    ) -> "BudgetOut":
        return cls(
            id=row["id"],
            title=row["title"],
            description=row.get("description"),
            total_amount=from_cents(row["total_cents"]),
            currency=row["currency"],
            startup_call_id=row["startup_call_id"],
            created_by=row.get("created_by"),
            start_date=_parse_date(row.get("start_date")),
            end_date=_parse_date(row.get("end_date")),
            status=row["status"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            categories=[CategoryOut.from_row(c) for c in categories or []],
        )
