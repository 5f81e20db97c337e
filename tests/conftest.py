"""Shared fixtures for the reconciliation and merge tests."""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

import pytest

from ledger_recon.config import ReconConfig
from ledger_recon.events import EventBus, EventRecorder
from ledger_recon.merge.engine import MergeEngine
from ledger_recon.models.transaction import LedgerTransaction, TransactionSource
from ledger_recon.reconciliation.service import ReconciliationService
from ledger_recon.stores.memory import (
    InMemoryAccountStore,
    InMemoryLedgerStore,
    InMemorySessionRepository,
)

ACCOUNT = "checking"
OTHER_ACCOUNT = "savings"


class FakeClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime = datetime(2024, 2, 1, 9, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def make_txn(
    txn_id: str,
    amount: str,
    txn_date: date,
    description: str = "",
    reference: Optional[str] = None,
    account_id: str = ACCOUNT,
    created_at: Optional[datetime] = None,
    is_verified: bool = True,
    source: TransactionSource = TransactionSource.MANUAL,
) -> LedgerTransaction:
    return LedgerTransaction(
        id=txn_id,
        account_id=account_id,
        date=txn_date,
        amount=Decimal(amount),
        description=description,
        reference_number=reference,
        source=source,
        created_at=created_at or datetime(2024, 1, 1, 12, 0, 0),
        is_verified=is_verified,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def accounts(ledger) -> InMemoryAccountStore:
    store = InMemoryAccountStore(ledger)
    store.add_account(ACCOUNT, Decimal("1000.00"))
    store.add_account(OTHER_ACCOUNT, Decimal("0"))
    return store


@pytest.fixture
def sessions() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def events(recorder) -> EventBus:
    bus = EventBus()
    bus.subscribe(recorder)
    return bus


@pytest.fixture
def config() -> ReconConfig:
    return ReconConfig()


@pytest.fixture
def service(sessions, ledger, accounts, config, events, clock) -> ReconciliationService:
    return ReconciliationService(
        sessions, ledger, accounts, config=config, events=events, clock=clock
    )


@pytest.fixture
def merge_engine(ledger, config, events, clock) -> MergeEngine:
    return MergeEngine(ledger, config.duplicates, events=events, clock=clock)


@pytest.fixture
def january_ledger(ledger) -> InMemoryLedgerStore:
    """Two January transactions that the January statement covers exactly."""
    ledger.add(make_txn("t-pay", "300.00", date(2024, 1, 10), "Salary ACME Corp"))
    ledger.add(make_txn("t-shop", "-50.00", date(2024, 1, 15), "Grocery Store"))
    return ledger


def statement_lines(*extra: dict) -> list[dict]:
    """The January statement lines matching ``january_ledger``, plus extras."""
    return [
        {"date": "2024-01-10", "amount": "300.00", "description": "SALARY ACME CORP"},
        {"date": "2024-01-15", "amount": "-50.00", "description": "GROCERY STORE"},
        *extra,
    ]
