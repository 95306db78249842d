"""Money / rounding helpers.

Amounts are persisted as integer cents so allocation checks compare exactly;
the API layer speaks two-decimal amounts. Centralized so the DAL, reporting
and error payloads use identical rounding semantics.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Number = Union[int, float, Decimal, str]

_CENT = Decimal("0.01")


def round2(value: Number) -> float:
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def to_cents(value: Number) -> int:
    return int(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP) * 100)


def from_cents(cents: int | None) -> float:
    if cents is None:
        return 0.0
    return float(Decimal(int(cents)) / 100)
