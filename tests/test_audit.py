"""Tests for the audit logger."""

import asyncio

from uuid import uuid4

from groupledger.audit import AuditLogger, create_correlation_id
from groupledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from groupledger.services.storage import InMemoryAuditStorage, StorageError


def make_event(event_type):
    return AuditEvent(event_type=event_type, description="test event")


class BrokenAuditStorage(InMemoryAuditStorage):
    async def append_event(self, event):
        raise StorageError("sheet unavailable")


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_events_are_persisted(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        correlation_id = create_correlation_id()
        group_id = uuid4()

        asyncio.run(logger.log_group_created(
            group_id=group_id,
            owner_id="alice",
            name="Flat 4B",
            correlation_id=correlation_id,
        ))
        asyncio.run(logger.log_member_joined(
            group_id=group_id,
            user_id="bob",
            role="Viewer",
            correlation_id=correlation_id,
        ))

        events = asyncio.run(storage.get_events_by_correlation_id(correlation_id))
        assert [e.event_type for e in events] == [
            AuditEventType.GROUP_CREATED,
            AuditEventType.MEMBER_JOINED,
        ]
        assert events[1].actor_id == "bob"

    def test_local_only_logging_succeeds(self):
        logger = AuditLogger()
        event_logged = asyncio.run(logger.log(
            make_event(AuditEventType.SYSTEM_ERROR)
        ))
        assert event_logged is True

    def test_storage_failure_does_not_raise(self):
        """Test a broken audit store never fails the caller's action."""
        logger = AuditLogger(BrokenAuditStorage())
        event_logged = asyncio.run(logger.log(
            make_event(AuditEventType.MEMBER_LEFT)
        ))
        assert event_logged is False

    def test_storage_error_event(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        asyncio.run(logger.log_storage_error(
            operation="save_group",
            error_message="quota exceeded",
        ))
        event = storage.events[0]
        assert event.event_type == AuditEventType.STORAGE_ERROR
        assert event.severity == AuditSeverity.ERROR
        assert event.error_message == "quota exceeded"

    def test_correlation_ids_are_unique(self):
        assert create_correlation_id() != create_correlation_id()

