"""Data models for reconciliation and merge."""

from .transaction import (
    LedgerTransaction,
    MergeFields,
    StatementTransaction,
    TransactionSource,
    normalize_reference,
)
from .session import (
    AccountReconciliationStatus,
    Adjustment,
    MatchConfidence,
    MatchDetails,
    OPEN_STATUSES,
    ReconciliationMatch,
    ReconciliationSession,
    ReconciliationSummary,
    SessionStatus,
)

__all__ = [
    "LedgerTransaction",
    "MergeFields",
    "StatementTransaction",
    "TransactionSource",
    "normalize_reference",
    "AccountReconciliationStatus",
    "Adjustment",
    "MatchConfidence",
    "MatchDetails",
    "OPEN_STATUSES",
    "ReconciliationMatch",
    "ReconciliationSession",
    "ReconciliationSummary",
    "SessionStatus",
]
