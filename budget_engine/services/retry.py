"""Storage retry helper.

Wraps a ledger operation so transient SQLite failures (lock timeouts, I/O
errors) are retried a bounded number of times before surfacing as
`StorageUnavailable`. Domain errors pass straight through; they are client
errors and retrying cannot change their outcome. The same goes for SQLite
errors that signal a bad statement or constraint rather than a busy or
broken database.
"""

from __future__ import annotations

import functools
import logging
import sqlite3
import time
from typing import Callable, Optional, TypeVar

from budget_engine.core.errors import StorageUnavailable

T = TypeVar("T")

logger = logging.getLogger("budget_engine.storage")

RETRYABLE_ERRORS = (sqlite3.OperationalError, sqlite3.DatabaseError)
# DatabaseError subclasses raised for programming or data mistakes
NON_TRANSIENT_ERRORS = (
    sqlite3.IntegrityError,
    sqlite3.ProgrammingError,
    sqlite3.DataError,
    sqlite3.NotSupportedError,
)


def call_with_storage_retry(
    fn: Callable[[], T], *, retries: int = 1, backoff: float = 0.05
) -> T:
    last_err: Optional[Exception] = None
    for attempt in range(retries + 1):
        try:
            return fn()
        except RETRYABLE_ERRORS as e:
            if isinstance(e, NON_TRANSIENT_ERRORS):
                raise
            last_err = e
            logger.warning(
                "storage error on attempt %d/%d: %s", attempt + 1, retries + 1, e
            )
            if attempt == retries:
                break
            time.sleep(backoff * (2**attempt))
    raise StorageUnavailable(f"ledger storage unavailable: {last_err}") from last_err


def storage_retry(method):
    """Run a `Database` method under `call_with_storage_retry`.

    The retry budget comes from the instance's ``storage_retries``. Only
    decorate methods that open their own transaction, so a retry replays a
    fully rolled back unit of work.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        return call_with_storage_retry(
            lambda: method(self, *args, **kwargs), retries=self.storage_retries
        )

    return wrapper


__all__ = ["call_with_storage_retry", "storage_retry", "RETRYABLE_ERRORS"]
