"""Domain constants and enumerations for validation.

Expense statuses and the transition table live here so the state machine,
the schema CHECK constraints and the API models agree on one vocabulary.
"""

from typing import Dict, FrozenSet, Set

PENDING = "pending"
IN_REVIEW = "in_review"
APPROVED = "approved"
REJECTED = "rejected"

EXPENSE_STATUSES: Set[str] = {PENDING, IN_REVIEW, APPROVED, REJECTED}

# Edges an admin may take; reapplying the current status is handled as a no-op
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({IN_REVIEW, APPROVED, REJECTED}),
    IN_REVIEW: frozenset({APPROVED, REJECTED, PENDING}),
    APPROVED: frozenset({REJECTED, PENDING}),
    REJECTED: frozenset({PENDING, IN_REVIEW}),
}

SEVERITY_BY_STATUS: Dict[str, str] = {
    APPROVED: "success",
    REJECTED: "error",
}
DEFAULT_SEVERITY = "info"

# ISO 4217 codes accepted for budgets; no conversion happens between them
CURRENCIES: Set[str] = {"USD", "EUR", "GBP", "MAD", "INR", "CAD", "CHF", "XOF"}
