"""
Domain events published on every committed state transition.

Audit logging subscribes here rather than living inside the matching and
merge algorithms. Events are published after the write has committed, so a
failing subscriber is logged and never rolls anything back.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional
import logging

from .utils.logging_config import get_logger

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Kinds of state transition."""

    SESSION_STARTED = "session_started"
    STATEMENT_UPLOADED = "statement_uploaded"
    TRANSACTION_MATCHED = "transaction_matched"
    TRANSACTION_UNMATCHED = "transaction_unmatched"
    STATEMENT_LINE_EXCLUDED = "statement_line_excluded"
    STATEMENT_LINE_INCLUDED = "statement_line_included"
    BALANCE_ADJUSTED = "balance_adjusted"
    SESSION_COMPLETED = "session_completed"
    SESSION_ABORTED = "session_aborted"
    TRANSACTIONS_MERGED = "transactions_merged"
    TRANSACTION_UNMERGED = "transaction_unmerged"
    MARKED_NOT_DUPLICATE = "marked_not_duplicate"


@dataclass
class DomainEvent:
    """A committed state transition."""

    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=datetime.now)

    def to_log_dict(self) -> dict[str, Any]:
        return {
            "event": self.type.value,
            "occurred_at": self.occurred_at.isoformat(),
            **{k: str(v) for k, v in self.payload.items()},
        }


Subscriber = Callable[[DomainEvent], None]


class EventBus:
    """Synchronous fan-out of domain events to subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def publish(self, event: DomainEvent) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception(f"Event subscriber failed for {event.type.value}")


class AuditLogObserver:
    """Writes every domain event to the ``ledger_recon.audit`` logger."""

    def __init__(self, audit_logger: Optional[logging.Logger] = None):
        self._logger = audit_logger or get_logger("audit")

    def __call__(self, event: DomainEvent) -> None:
        details = " ".join(f"{k}={v}" for k, v in event.to_log_dict().items())
        self._logger.info(f"audit_event {details}")


class EventRecorder:
    """Keeps published events in memory; handy for tests and the CLI audit sheet."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def __call__(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[DomainEvent]:
        return [e for e in self.events if e.type == event_type]
