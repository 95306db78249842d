"""Notification trigger for committed expense status changes.

The approval state machine enqueues one `NotificationEvent` per committed
transition; `flush()` later turns each event into the outbound payload
``{user_id, title, message, severity}`` and hands it to a `NotificationSink`.

Delivery is fire-and-forget relative to the ledger transaction: it only ever
runs after commit, and a sink failure is logged and dropped, never raised.

Severity mapping:
  approved -> success
  rejected -> error
  anything else -> info

Recipients come from a `RecipientResolver`. The default,
`submitter_as_recipient`, addresses whoever submitted the expense
(``created_by``). Platforms where the notification belongs to the founder
of the startup call's approved application, rather than to the submitter,
should pass a resolver that looks that founder up.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

from budget_engine.db.dal import Database
from budget_engine.models.constants import DEFAULT_SEVERITY, SEVERITY_BY_STATUS

logger = logging.getLogger("budget_engine.notifications")


@dataclass(frozen=True)
class NotificationEvent:
    expense_id: int
    new_status: str
    comment: Optional[str] = None


class NotificationSink(ABC):
    @abstractmethod
    def send(self, payload: Dict[str, Any]) -> None:
        """Deliver one notification payload to the external collaborator."""
        raise NotImplementedError


class DatabaseNotificationSink(NotificationSink):
    """Persists payloads to the notifications table read by the inbox UI."""

    def __init__(self, db: Database):
        self.db = db

    def send(self, payload: Dict[str, Any]) -> None:
        self.db.insert_notification(
            user_id=payload["user_id"],
            title=payload["title"],
            message=payload["message"],
            severity=payload["severity"],
            expense_id=payload.get("expense_id"),
        )


class LoggingNotificationSink(NotificationSink):
    def send(self, payload: Dict[str, Any]) -> None:
        logger.info(
            "notification for %s: %s", payload["user_id"], payload["title"],
            extra={"expense_id": payload.get("expense_id")},
        )


# expense row -> founder user id (None when it cannot be resolved)
RecipientResolver = Callable[[Dict[str, Any]], Optional[str]]


def submitter_as_recipient(expense: Dict[str, Any]) -> Optional[str]:
    return expense.get("created_by")


def severity_for(status: str) -> str:
    return SEVERITY_BY_STATUS.get(status, DEFAULT_SEVERITY)


def build_payload(
    expense: Dict[str, Any], event: NotificationEvent, user_id: str
) -> Dict[str, Any]:
    label = event.new_status.replace("_", " ")
    message = f'Your expense "{expense["title"]}" has been {label}'
    if event.comment:
        message += f" with comment: {event.comment}"
    return {
        "user_id": user_id,
        "title": f"Expense {label.title()}",
        "message": message + ".",
        "severity": severity_for(event.new_status),
        "expense_id": event.expense_id,
    }


class NotificationTrigger:
    def __init__(
        self,
        db: Database,
        sink: NotificationSink,
        resolver: RecipientResolver = submitter_as_recipient,
    ):
        self.db = db
        self.sink = sink
        self.resolver = resolver
        self._queue: Deque[NotificationEvent] = deque()
        self._lock = threading.Lock()

    def enqueue(self, event: NotificationEvent) -> None:
        with self._lock:
            self._queue.append(event)

    def pending(self) -> List[NotificationEvent]:
        with self._lock:
            return list(self._queue)

    def flush(self) -> int:
        """Deliver all queued events; returns how many reached the sink."""
        with self._lock:
            events = list(self._queue)
            self._queue.clear()
        delivered = 0
        for event in events:
            try:
                if self.deliver(event):
                    delivered += 1
            except Exception:
                logger.exception(
                    "notification delivery failed",
                    extra={"expense_id": event.expense_id, "status": event.new_status},
                )
        return delivered

    def deliver(self, event: NotificationEvent) -> bool:
        expense = self.db.get_expense(event.expense_id)
        if expense is None:
            logger.warning(
                "expense vanished before notification", extra={"expense_id": event.expense_id}
            )
            return False
        user_id = self.resolver(expense)
        if not user_id:
            logger.warning(
                "no recipient for expense notification", extra={"expense_id": event.expense_id}
            )
            return False
        self.sink.send(build_payload(expense, event, user_id))
        return True


def make_sink(kind: str, db: Database) -> NotificationSink:
    if kind == "log":
        return LoggingNotificationSink()
    return DatabaseNotificationSink(db)


__all__ = [
    "NotificationEvent",
    "NotificationSink",
    "DatabaseNotificationSink",
    "LoggingNotificationSink",
    "NotificationTrigger",
    "build_payload",
    "severity_for",
    "make_sink",
]
