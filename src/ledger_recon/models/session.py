"""Data models for reconciliation sessions, matches and adjustments."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from ..utils.exceptions import (
    InvalidInputError,
    InvalidSessionStateError,
    NotFoundError,
)
from ..utils.money import ZERO, to_decimal
from .transaction import StatementTransaction


class SessionStatus(Enum):
    """Lifecycle state of a reconciliation session."""

    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_open(self) -> bool:
        return self in OPEN_STATUSES


OPEN_STATUSES = frozenset({SessionStatus.STARTED, SessionStatus.IN_PROGRESS})


class AccountReconciliationStatus(Enum):
    """Reconciliation state shown on the account itself."""

    NONE = "none"
    IN_PROGRESS = "in_progress"
    RECONCILED = "reconciled"


class MatchConfidence(Enum):
    """Confidence band of a match."""

    EXACT = "exact"  # 100
    HIGH = "high"  # 80-99
    MEDIUM = "medium"  # 60-79
    LOW = "low"  # below 60
    MANUAL = "manual"

    @classmethod
    def from_score(cls, score: float) -> "MatchConfidence":
        if score >= 100:
            return cls.EXACT
        if score >= 80:
            return cls.HIGH
        if score >= 60:
            return cls.MEDIUM
        return cls.LOW


@dataclass
class MatchDetails:
    """How a statement line and a ledger transaction compared."""

    amount_match: bool
    date_difference: int
    description_similarity: float = 0.0
    reference_match: bool = False


@dataclass
class ReconciliationMatch:
    """Session-scoped pairing of one statement line with one ledger transaction."""

    reconciliation_transaction_id: str
    transaction_id: str
    is_manual: bool = False
    notes: Optional[str] = None
    confidence: Optional[MatchConfidence] = None
    score: float = 0.0
    details: Optional[MatchDetails] = None
    matched_at: datetime = field(default_factory=datetime.now)


@dataclass
class Adjustment:
    """
    A balance difference the caller accepts instead of matching.

    ``statement_line_id`` optionally ties the adjustment to the statement line
    it accounts for; unlinked adjustments cover lines by equal amount.
    """

    type: str
    amount: Decimal
    reason: str
    statement_line_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Adjustment":
        """
        Build an adjustment from a request payload.

        Raises:
            InvalidInputError: If type or reason are missing or amount is zero
        """
        if not isinstance(data, dict):
            raise InvalidInputError("Adjustment must be an object")

        adjustment_type = str(data.get("type") or "").strip()
        reason = str(data.get("reason") or "").strip()
        amount = to_decimal(data.get("amount"), "adjustment amount")
        line_id = data.get("statement_line_id", data.get("statementLineId"))

        if not adjustment_type:
            raise InvalidInputError("Adjustment type is required")
        if not reason:
            raise InvalidInputError("Adjustment reason is required")
        if amount == ZERO:
            raise InvalidInputError("Adjustment amount must be non-zero")

        return cls(
            type=adjustment_type,
            amount=amount,
            reason=reason,
            statement_line_id=str(line_id) if line_id else None,
        )


@dataclass
class ReconciliationSession:
    """
    A reconciliation of one account against one statement.

    The session owns its statement lines, matches and adjustments. Legality
    checks live here so they hold regardless of the store behind them.
    """

    account_id: str
    start_date: date
    end_date: date
    statement_balance: Decimal
    id: str = field(default_factory=lambda: str(uuid4()))
    status: SessionStatus = SessionStatus.STARTED
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    statement_transactions: list[StatementTransaction] = field(default_factory=list)
    matches: list[ReconciliationMatch] = field(default_factory=list)
    pending_adjustments: list[Adjustment] = field(default_factory=list)
    adjustments: list[Adjustment] = field(default_factory=list)

    # Filled on completion
    opening_balance: Optional[Decimal] = None
    matched_sum: Optional[Decimal] = None
    adjustment_sum: Optional[Decimal] = None
    computed_balance: Optional[Decimal] = None
    variance: Optional[Decimal] = None
    unresolved_ids: list[str] = field(default_factory=list)

    # Bumped by the store on every save
    version: int = 0

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    def ensure_open(self, operation: str) -> None:
        """
        Raise unless the session accepts mutations.

        Raises:
            InvalidSessionStateError: If the session is completed or aborted
        """
        if not self.is_open:
            raise InvalidSessionStateError(
                f"Cannot {operation}: session {self.id} is {self.status.value}"
            )

    def mark_in_progress(self) -> None:
        if self.status == SessionStatus.STARTED:
            self.status = SessionStatus.IN_PROGRESS

    def get_statement_line(self, line_id: str) -> StatementTransaction:
        for line in self.statement_transactions:
            if line.id == line_id:
                return line
        raise NotFoundError(f"Statement transaction {line_id} not found in session {self.id}")

    def match_for_line(self, line_id: str) -> Optional[ReconciliationMatch]:
        return next(
            (m for m in self.matches if m.reconciliation_transaction_id == line_id), None
        )

    def match_for_transaction(self, transaction_id: str) -> Optional[ReconciliationMatch]:
        return next((m for m in self.matches if m.transaction_id == transaction_id), None)

    @property
    def matched_line_ids(self) -> set[str]:
        return {m.reconciliation_transaction_id for m in self.matches}

    @property
    def matched_transaction_ids(self) -> set[str]:
        return {m.transaction_id for m in self.matches}

    def open_lines(self) -> list[StatementTransaction]:
        """Statement lines that are neither matched nor excluded."""
        matched = self.matched_line_ids
        return [
            line
            for line in self.statement_transactions
            if line.id not in matched and not line.excluded
        ]

    @property
    def statement_transaction_count(self) -> int:
        return len(self.statement_transactions)

    @property
    def matched_count(self) -> int:
        return len(self.matches)

    @property
    def excluded_count(self) -> int:
        return sum(1 for line in self.statement_transactions if line.excluded)

    @property
    def unmatched_count(self) -> int:
        """Lines still waiting for a match; excluded lines are not counted."""
        return len(self.open_lines())


@dataclass
class ReconciliationSummary:
    """Balance and match statistics for a session, provisional while open."""

    session_id: str
    account_id: str
    status: SessionStatus
    start_date: date
    end_date: date
    statement_balance: Decimal
    opening_balance: Decimal
    matched_sum: Decimal
    adjustment_sum: Decimal
    computed_balance: Decimal
    variance: Decimal

    statement_transaction_count: int
    matched_count: int
    excluded_count: int
    unmatched_count: int

    matches_by_confidence: dict[str, int] = field(default_factory=dict)
    unresolved_ids: list[str] = field(default_factory=list)
    completed_at: Optional[datetime] = None

    @property
    def is_balanced(self) -> bool:
        return self.variance == ZERO

    @property
    def match_rate(self) -> float:
        """Percentage of statement lines matched."""
        if self.statement_transaction_count == 0:
            return 0.0
        return (self.matched_count / self.statement_transaction_count) * 100


def parse_adjustments(raw: Optional[list[Any]]) -> list[Adjustment]:
    """Accept Adjustment objects or payload dicts."""
    adjustments: list[Adjustment] = []
    for item in raw or []:
        if isinstance(item, Adjustment):
            if item.amount == ZERO:
                raise InvalidInputError("Adjustment amount must be non-zero")
            adjustments.append(item)
        else:
            adjustments.append(Adjustment.from_dict(item))
    return adjustments


def parse_statement_balance(value: Any) -> Decimal:
    return to_decimal(value, "statement balance")
