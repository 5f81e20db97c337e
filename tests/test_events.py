"""Tests for the event bus and the audit log observer."""

import logging
from datetime import datetime

from ledger_recon.events import (
    AuditLogObserver,
    DomainEvent,
    EventBus,
    EventRecorder,
    EventType,
)
from ledger_recon.utils.logging_config import (
    AUDIT_LOGGER_NAME,
    ROOT_LOGGER_NAME,
    setup_logging,
)


class TestEventBus:
    def test_publish_reaches_subscribers(self):
        bus = EventBus()
        recorder = EventRecorder()
        bus.subscribe(recorder)

        bus.publish(DomainEvent(type=EventType.SESSION_STARTED, payload={"session_id": "s1"}))

        assert len(recorder.of_type(EventType.SESSION_STARTED)) == 1

    def test_unsubscribe(self):
        bus = EventBus()
        recorder = EventRecorder()
        bus.subscribe(recorder)
        bus.unsubscribe(recorder)

        bus.publish(DomainEvent(type=EventType.SESSION_STARTED))

        assert recorder.events == []

    def test_failing_subscriber_does_not_block_others(self, caplog):
        bus = EventBus()
        recorder = EventRecorder()

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(recorder)

        with caplog.at_level(logging.ERROR, logger="ledger_recon.events"):
            bus.publish(DomainEvent(type=EventType.SESSION_ABORTED))

        assert len(recorder.events) == 1
        assert "Event subscriber failed" in caplog.text


class TestAuditLogObserver:
    def test_logs_event_fields(self, caplog):
        observer = AuditLogObserver()
        event = DomainEvent(
            type=EventType.TRANSACTIONS_MERGED,
            payload={"source_id": "A", "target_id": "B"},
            occurred_at=datetime(2024, 3, 1, 12, 0, 0),
        )

        with caplog.at_level(logging.INFO, logger="ledger_recon.audit"):
            observer(event)

        assert "audit_event event=transactions_merged" in caplog.text
        assert "source_id=A" in caplog.text
        assert "target_id=B" in caplog.text

    def test_audit_file_receives_events(self, tmp_path):
        audit_path = tmp_path / "logs" / "audit.log"
        setup_logging("warning", audit_file=audit_path)
        try:
            AuditLogObserver()(
                DomainEvent(type=EventType.TRANSACTION_UNMERGED, payload={"source_id": "A"})
            )
        finally:
            for logger_name in (ROOT_LOGGER_NAME, AUDIT_LOGGER_NAME):
                logger = logging.getLogger(logger_name)
                for handler in logger.handlers:
                    handler.close()
                logger.handlers = []
            logging.getLogger(AUDIT_LOGGER_NAME).setLevel(logging.NOTSET)

        written = audit_path.read_text()
        assert "audit_event event=transaction_unmerged" in written
        assert "source_id=A" in written

    def test_service_events_reach_audit_log(self, service, events, caplog):
        events.subscribe(AuditLogObserver())

        with caplog.at_level(logging.INFO, logger="ledger_recon.audit"):
            service.start("checking", "2024-01-01", "2024-01-31", "1000")

        assert "event=session_started" in caplog.text
