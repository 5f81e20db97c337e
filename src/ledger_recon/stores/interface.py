"""
Abstract store interfaces consumed by the reconciliation and merge core.

Each store exposes ``atomic()``: a scope in which reads, checks and writes
happen as one unit (a database transaction, or a lock for in-memory stores).
Every state transition in the core runs inside one such scope.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from ..models.session import AccountReconciliationStatus, ReconciliationSession
from ..models.transaction import LedgerTransaction, MergeFields


class LedgerStore(ABC):
    """Canonical ledger transactions, owned by the transaction CRUD layer."""

    @abstractmethod
    def atomic(self) -> AbstractContextManager:
        """Return a context manager that serializes ledger read-check-write units."""

    @abstractmethod
    def find_by_account_and_date_range(
        self,
        account_id: str,
        start: date,
        end: date,
        include_merged: bool = False,
    ) -> list[LedgerTransaction]:
        """
        Transactions for an account dated within ``[start, end]``.

        Merged transactions are left out unless ``include_merged`` is set.
        Results are in creation order.
        """

    @abstractmethod
    def get_by_id(self, transaction_id: str) -> LedgerTransaction:
        """
        Fetch one transaction.

        Raises:
            NotFoundError: If no such transaction exists
        """

    @abstractmethod
    def find_merged_into(self, target_id: str) -> list[LedgerTransaction]:
        """Transactions currently merged into ``target_id``."""

    @abstractmethod
    def update_merge_fields(
        self,
        transaction_id: str,
        fields: MergeFields,
        expected_is_merged: Optional[bool] = None,
    ) -> LedgerTransaction:
        """
        Write the merge-state columns.

        When ``expected_is_merged`` is given the write only happens if the
        stored ``is_merged`` still has that value.

        Raises:
            NotFoundError: If no such transaction exists
            AlreadyMergedError: If the stored merge state is not the expected one
        """

    @abstractmethod
    def add_duplicate_exclusion(self, transaction_id: str, excluded_id: str) -> None:
        """Record ``excluded_id`` as not a duplicate of ``transaction_id``."""


class AccountStore(ABC):
    """Account data the core needs: balances and reconciliation status."""

    @abstractmethod
    def get_opening_balance(self, account_id: str, as_of: date) -> Decimal:
        """
        Balance of the account at the start of ``as_of``.

        Raises:
            NotFoundError: If the account does not exist
        """

    @abstractmethod
    def set_reconciliation_status(
        self,
        account_id: str,
        status: AccountReconciliationStatus,
        reconciled_at: Optional[datetime] = None,
        reconciled_balance: Optional[Decimal] = None,
    ) -> None:
        """Update the reconciliation status shown on the account."""


class SessionRepository(ABC):
    """
    Persistence for reconciliation sessions and everything scoped to them.

    Implementations must enforce, on every write:
      - at most one open session per account (``ConflictingSessionError``)
      - unique ``(session_id, reconciliation_transaction_id)`` and
        ``(session_id, transaction_id)`` among matches (``AlreadyMatchedError``)
      - the saved ``version`` equals the stored one (``InvalidSessionStateError``)
    """

    @abstractmethod
    def atomic(self) -> AbstractContextManager:
        """Return a context manager that serializes session read-check-write units."""

    @abstractmethod
    def create(self, session: ReconciliationSession) -> ReconciliationSession:
        """Persist a new session."""

    @abstractmethod
    def get(self, session_id: str) -> ReconciliationSession:
        """
        Fetch a session snapshot.

        Raises:
            NotFoundError: If no such session exists
        """

    @abstractmethod
    def save(self, session: ReconciliationSession) -> ReconciliationSession:
        """Write a modified snapshot back, bumping its version."""

    @abstractmethod
    def find_open_for_account(self, account_id: str) -> Optional[ReconciliationSession]:
        """The open session of an account, if any."""

    @abstractmethod
    def list_for_account(self, account_id: str) -> list[ReconciliationSession]:
        """All sessions of an account, newest first."""
