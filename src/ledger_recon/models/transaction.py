"""Data models for ledger and statement transactions."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4
import re

from ..utils.exceptions import InvalidInputError
from ..utils.money import to_date, to_decimal

REFERENCE_NORMALIZE_PATTERN = r"[^a-zA-Z0-9]"


def normalize_reference(
    reference: Optional[str], pattern: str = REFERENCE_NORMALIZE_PATTERN
) -> Optional[str]:
    """Strip special characters and uppercase a reference number."""
    if not reference:
        return None
    normalized = re.sub(pattern, "", str(reference)).upper()
    return normalized or None


class TransactionSource(Enum):
    """Where a ledger transaction was recorded from."""

    MANUAL = "manual"
    CSV_IMPORT = "csv_import"
    EMAIL = "email"
    STATEMENT = "statement"


@dataclass
class MergeFields:
    """The merge-state columns of a ledger transaction."""

    is_merged: bool = False
    merged_into_id: Optional[str] = None
    merged_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.is_merged and not self.merged_into_id:
            raise InvalidInputError("A merged transaction must reference its target")

    @classmethod
    def cleared(cls) -> "MergeFields":
        return cls()


@dataclass
class LedgerTransaction:
    """
    A transaction recorded in the household ledger.

    The ledger store owns creation and base fields; the merge engine owns the
    merge-state fields (``is_merged``, ``merged_into_id``, ``merged_at``) and
    ``duplicate_exclusions``.
    """

    id: str
    account_id: str
    date: date
    amount: Decimal
    description: str = ""
    reference_number: Optional[str] = None
    normalized_reference: Optional[str] = None
    source: TransactionSource = TransactionSource.MANUAL
    created_at: datetime = field(default_factory=datetime.now)

    # False when flagged as a suspected unverified import
    is_verified: bool = True

    # Merge state
    is_merged: bool = False
    merged_into_id: Optional[str] = None
    merged_at: Optional[datetime] = None
    duplicate_exclusions: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        if self.reference_number and not self.normalized_reference:
            self.normalized_reference = normalize_reference(self.reference_number)

    @property
    def merge_fields(self) -> MergeFields:
        return MergeFields(
            is_merged=self.is_merged,
            merged_into_id=self.merged_into_id,
            merged_at=self.merged_at,
        )

    def apply_merge_fields(self, fields: MergeFields) -> None:
        self.is_merged = fields.is_merged
        self.merged_into_id = fields.merged_into_id
        self.merged_at = fields.merged_at

    def excludes(self, other_id: str) -> bool:
        """Check if ``other_id`` was marked as not a duplicate of this one."""
        return other_id in self.duplicate_exclusions


@dataclass
class StatementTransaction:
    """
    A line item taken from an uploaded bank statement.

    Statement lines live only inside a reconciliation session. ``id`` is
    assigned on upload and is what matches refer to as the reconciliation
    transaction id.
    """

    amount: Decimal
    date: date
    description: str = ""
    reference_number: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    normalized_reference: Optional[str] = None

    # Explicitly resolved without a ledger counterpart
    excluded: bool = False
    exclusion_reason: Optional[str] = None

    def __post_init__(self) -> None:
        if self.reference_number and not self.normalized_reference:
            self.normalized_reference = normalize_reference(self.reference_number)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatementTransaction":
        """
        Build a statement line from a request payload.

        Accepts ``referenceNumber`` as well as ``reference_number``.

        Raises:
            InvalidInputError: If amount or date are missing or malformed
        """
        if not isinstance(data, dict):
            raise InvalidInputError("Statement transaction must be an object")

        reference = data.get("reference_number", data.get("referenceNumber"))
        description = data.get("description") or ""

        return cls(
            amount=to_decimal(data.get("amount")),
            date=to_date(data.get("date")),
            description=str(description).strip(),
            reference_number=str(reference).strip() if reference else None,
        )

    def same_line_as(self, other: "StatementTransaction") -> bool:
        """Check if two lines describe the same statement entry."""
        return (
            self.amount == other.amount
            and self.date == other.date
            and self.description == other.description
            and self.normalized_reference == other.normalized_reference
        )
