"""In-memory store implementations, used by the CLI and the test suite."""

from contextlib import AbstractContextManager
from copy import deepcopy
from datetime import date, datetime
from decimal import Decimal
from threading import RLock
from typing import Iterable, Optional

from ..models.session import AccountReconciliationStatus, ReconciliationSession
from ..models.transaction import LedgerTransaction, MergeFields
from ..utils.exceptions import (
    AlreadyMatchedError,
    AlreadyMergedError,
    ConflictingSessionError,
    InvalidSessionStateError,
    NotFoundError,
)
from ..utils.money import ZERO, sum_amounts
from .interface import AccountStore, LedgerStore, SessionRepository


class InMemoryLedgerStore(LedgerStore):
    """Ledger transactions kept in insertion (creation) order."""

    def __init__(self, transactions: Optional[Iterable[LedgerTransaction]] = None):
        self._lock = RLock()
        self._transactions: dict[str, LedgerTransaction] = {}
        for txn in transactions or []:
            self.add(txn)

    def atomic(self) -> AbstractContextManager:
        return self._lock

    def add(self, transaction: LedgerTransaction) -> LedgerTransaction:
        """Insert a transaction; stands in for the transaction CRUD owner."""
        with self._lock:
            self._transactions[transaction.id] = deepcopy(transaction)
            return deepcopy(transaction)

    def list_for_account(
        self, account_id: str, include_merged: bool = False
    ) -> list[LedgerTransaction]:
        """Default listing: merged records are hidden unless asked for."""
        with self._lock:
            return [
                deepcopy(t)
                for t in self._transactions.values()
                if t.account_id == account_id and (include_merged or not t.is_merged)
            ]

    def find_by_account_and_date_range(
        self,
        account_id: str,
        start: date,
        end: date,
        include_merged: bool = False,
    ) -> list[LedgerTransaction]:
        with self._lock:
            return [
                deepcopy(t)
                for t in self._transactions.values()
                if t.account_id == account_id
                and start <= t.date <= end
                and (include_merged or not t.is_merged)
            ]

    def get_by_id(self, transaction_id: str) -> LedgerTransaction:
        with self._lock:
            return deepcopy(self._get(transaction_id))

    def find_merged_into(self, target_id: str) -> list[LedgerTransaction]:
        with self._lock:
            return [
                deepcopy(t)
                for t in self._transactions.values()
                if t.is_merged and t.merged_into_id == target_id
            ]

    def update_merge_fields(
        self,
        transaction_id: str,
        fields: MergeFields,
        expected_is_merged: Optional[bool] = None,
    ) -> LedgerTransaction:
        with self._lock:
            stored = self._get(transaction_id)
            if expected_is_merged is not None and stored.is_merged != expected_is_merged:
                raise AlreadyMergedError(
                    f"Transaction {transaction_id} merge state changed concurrently"
                )
            stored.apply_merge_fields(fields)
            return deepcopy(stored)

    def add_duplicate_exclusion(self, transaction_id: str, excluded_id: str) -> None:
        with self._lock:
            self._get(transaction_id).duplicate_exclusions.add(excluded_id)

    def _get(self, transaction_id: str) -> LedgerTransaction:
        try:
            return self._transactions[transaction_id]
        except KeyError:
            raise NotFoundError(f"Transaction {transaction_id} not found") from None


class InMemoryAccountStore(AccountStore):
    """
    Accounts with an initial balance.

    The opening balance at a date is the initial balance plus every
    non-merged ledger transaction dated before it.
    """

    def __init__(
        self,
        ledger: InMemoryLedgerStore,
        initial_balances: Optional[dict[str, Decimal]] = None,
    ):
        self._lock = RLock()
        self._ledger = ledger
        self._initial_balances: dict[str, Decimal] = dict(initial_balances or {})
        self._status: dict[str, AccountReconciliationStatus] = {}
        self._last_reconciled: dict[str, tuple[datetime, Decimal]] = {}

    def add_account(self, account_id: str, initial_balance: Decimal = ZERO) -> None:
        with self._lock:
            self._initial_balances[account_id] = initial_balance

    def get_opening_balance(self, account_id: str, as_of: date) -> Decimal:
        with self._lock:
            if account_id not in self._initial_balances:
                raise NotFoundError(f"Account {account_id} not found")
            initial = self._initial_balances[account_id]

        prior = [
            t.amount
            for t in self._ledger.list_for_account(account_id)
            if t.date < as_of
        ]
        return initial + sum_amounts(prior)

    def set_reconciliation_status(
        self,
        account_id: str,
        status: AccountReconciliationStatus,
        reconciled_at: Optional[datetime] = None,
        reconciled_balance: Optional[Decimal] = None,
    ) -> None:
        with self._lock:
            if account_id not in self._initial_balances:
                raise NotFoundError(f"Account {account_id} not found")
            self._status[account_id] = status
            if reconciled_at is not None and reconciled_balance is not None:
                self._last_reconciled[account_id] = (reconciled_at, reconciled_balance)

    def get_reconciliation_status(self, account_id: str) -> AccountReconciliationStatus:
        with self._lock:
            return self._status.get(account_id, AccountReconciliationStatus.NONE)

    def get_last_reconciled(self, account_id: str) -> Optional[tuple[datetime, Decimal]]:
        with self._lock:
            return self._last_reconciled.get(account_id)


class InMemorySessionRepository(SessionRepository):
    """Sessions stored as private copies; constraints checked on every write."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._sessions: dict[str, ReconciliationSession] = {}

    def atomic(self) -> AbstractContextManager:
        return self._lock

    def create(self, session: ReconciliationSession) -> ReconciliationSession:
        with self._lock:
            if session.id in self._sessions:
                raise ConflictingSessionError(f"Session {session.id} already exists")
            self._check_constraints(session)
            stored = deepcopy(session)
            stored.version = 1
            self._sessions[stored.id] = stored
            return deepcopy(stored)

    def get(self, session_id: str) -> ReconciliationSession:
        with self._lock:
            try:
                return deepcopy(self._sessions[session_id])
            except KeyError:
                raise NotFoundError(f"Reconciliation session {session_id} not found") from None

    def save(self, session: ReconciliationSession) -> ReconciliationSession:
        with self._lock:
            current = self._sessions.get(session.id)
            if current is None:
                raise NotFoundError(f"Reconciliation session {session.id} not found")
            if current.version != session.version:
                raise InvalidSessionStateError(
                    f"Session {session.id} was modified concurrently "
                    f"(expected version {session.version}, found {current.version})"
                )
            self._check_constraints(session)
            stored = deepcopy(session)
            stored.version = current.version + 1
            self._sessions[stored.id] = stored
            return deepcopy(stored)

    def find_open_for_account(self, account_id: str) -> Optional[ReconciliationSession]:
        with self._lock:
            for session in self._sessions.values():
                if session.account_id == account_id and session.is_open:
                    return deepcopy(session)
            return None

    def list_for_account(self, account_id: str) -> list[ReconciliationSession]:
        with self._lock:
            sessions = [s for s in self._sessions.values() if s.account_id == account_id]
            sessions.sort(key=lambda s: s.created_at, reverse=True)
            return [deepcopy(s) for s in sessions]

    def _check_constraints(self, session: ReconciliationSession) -> None:
        if session.is_open:
            for other in self._sessions.values():
                if (
                    other.id != session.id
                    and other.account_id == session.account_id
                    and other.is_open
                ):
                    raise ConflictingSessionError(
                        f"Account {session.account_id} already has open session {other.id}"
                    )

        line_ids = [m.reconciliation_transaction_id for m in session.matches]
        txn_ids = [m.transaction_id for m in session.matches]
        if len(line_ids) != len(set(line_ids)):
            raise AlreadyMatchedError(
                f"A statement transaction is matched more than once in session {session.id}"
            )
        if len(txn_ids) != len(set(txn_ids)):
            raise AlreadyMatchedError(
                f"A ledger transaction is matched more than once in session {session.id}"
            )
