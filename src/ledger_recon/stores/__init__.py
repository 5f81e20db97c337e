"""Store interfaces and in-memory implementations."""

from .interface import AccountStore, LedgerStore, SessionRepository
from .memory import InMemoryAccountStore, InMemoryLedgerStore, InMemorySessionRepository

__all__ = [
    "AccountStore",
    "LedgerStore",
    "SessionRepository",
    "InMemoryAccountStore",
    "InMemoryLedgerStore",
    "InMemorySessionRepository",
]
