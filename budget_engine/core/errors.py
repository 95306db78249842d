"""Domain error taxonomy and FastAPI exception handlers.

Every ledger failure derives from `LedgerError`, which carries a stable
machine-readable `code` and the HTTP status the API layer maps it to. Route
code never translates these by hand; the handlers registered in `main.py`
render them as `{"error": code, "detail": ...}` bodies.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette import status

logger = logging.getLogger("budget_engine.errors")


class LedgerError(Exception):
    code = "ledger_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidInput(LedgerError):
    code = "invalid_input"


class BudgetOverAllocated(InvalidInput):
    """Category allocations would exceed the owning budget's total."""


class NotFound(LedgerError):
    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class Unauthorized(LedgerError):
    code = "unauthorized"
    http_status = status.HTTP_403_FORBIDDEN


class InvalidStatus(LedgerError):
    code = "invalid_status"


class InvalidTransition(InvalidStatus):
    """Target status is valid but not reachable from the current one."""


class BudgetExceeded(LedgerError):
    code = "budget_exceeded"
    http_status = status.HTTP_409_CONFLICT

    def __init__(
        self,
        category_name: str,
        allocated_amount: float,
        current_spent: float,
        requested: float,
        remaining: float,
    ):
        super().__init__(
            "Approving this expense would exceed the category budget",
            details={
                "category_name": category_name,
                "allocated_amount": allocated_amount,
                "current_spent": current_spent,
                "requested": requested,
                "remaining": remaining,
            },
        )
        self.category_name = category_name
        self.allocated_amount = allocated_amount
        self.current_spent = current_spent
        self.requested = requested
        self.remaining = remaining


class StorageUnavailable(LedgerError):
    code = "storage_unavailable"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE


def ledger_error_handler(request: Request, exc: LedgerError):  # type: ignore
    if exc.http_status >= 500:
        logger.error("storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def not_found_handler(request: Request, exc):  # type: ignore
    if exc.status_code != status.HTTP_404_NOT_FOUND:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "http_error", "detail": exc.detail},
        )
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={
            "error": "not_found",
            "detail": f"No route for {request.method} {request.url.path}",
        },
    )


def validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


def server_error_handler(request: Request, exc: Exception):  # type: ignore
    logger.exception("unhandled exception")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "detail": "An unexpected error occurred.",
        },
    )
