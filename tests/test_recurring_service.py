"""Tests for recurring obligation CRUD and execution."""

import asyncio

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from groupledger.access import InsufficientRoleError, NotAMemberError
from groupledger.audit import AuditLogger
from groupledger.models.audit import AuditEventType
from groupledger.models.group import Group, Role
from groupledger.models.recurring import Frequency, RecurringObligation
from groupledger.models.transaction import Participant
from groupledger.scheduling import (
    ExecutionConflictError,
    NotDueError,
    RecurringService,
)
from groupledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryGroupStorage,
    InMemoryRecurringStorage,
    InMemoryTransactionStorage,
    NotFoundError,
    StorageError,
)
from groupledger.validation import UnbalancedSharesError


NOW = datetime(2024, 1, 10)


class RacingRecurringStorage(InMemoryRecurringStorage):
    """Another executor claims the window just before this one does."""

    async def claim_execution(self, obligation_id, expected_last_processed, processed_at):
        await super().claim_execution(obligation_id, expected_last_processed, processed_at)
        return await super().claim_execution(
            obligation_id, expected_last_processed, processed_at
        )


class FailingTransactionStorage(InMemoryTransactionStorage):
    async def save_transaction(self, transaction):
        raise StorageError("sheet unavailable")


class StuckClaimStorage(InMemoryRecurringStorage):
    """Claims succeed but releasing one fails."""

    async def claim_execution(self, obligation_id, expected_last_processed, processed_at):
        if expected_last_processed is not None:
            raise StorageError("claim release failed")
        return await super().claim_execution(
            obligation_id, expected_last_processed, processed_at
        )


class TestRecurringService:
    """Tests for RecurringService against in-memory storage."""

    def setup_method(self):
        self.build()

    def build(self, recurring_storage=None, transaction_storage=None):
        self.groups = InMemoryGroupStorage()
        self.recurring = recurring_storage or InMemoryRecurringStorage()
        self.transactions = transaction_storage or InMemoryTransactionStorage()
        self.audit_storage = InMemoryAuditStorage()
        self.service = RecurringService(
            self.recurring,
            self.transactions,
            self.groups,
            AuditLogger(self.audit_storage),
        )

        self.group = Group(name="Flat 4B", owner_id="alice", invite_key="ABCD1234")
        self.group.add_member("bob", Role.EDITOR)
        self.group.add_member("carol", Role.VIEWER)
        asyncio.run(self.groups.save_group(self.group))

    def make_obligation(self, **overrides) -> RecurringObligation:
        data = {
            "group_id": self.group.id,
            "title": "Internet",
            "amount": Decimal("100"),
            "category": "utilities",
            "frequency": Frequency.WEEKLY,
            "start_date": datetime(2024, 1, 1),
            "payer_id": "alice",
            "participants": [
                Participant(user_id="alice", share=Decimal("33.34")),
                Participant(user_id="bob", share=Decimal("33.33")),
                Participant(user_id="carol", share=Decimal("33.33")),
            ],
        }
        data.update(overrides)
        return RecurringObligation(**data)

    def create(self, user_id="alice", **overrides) -> RecurringObligation:
        return asyncio.run(self.service.create(user_id, self.make_obligation(**overrides)))

    def event_types(self):
        return [e.event_type for e in self.audit_storage.events]

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def test_create(self):
        obligation = self.create(user_id="bob")
        stored = asyncio.run(self.recurring.get_obligation_by_id(obligation.id))
        assert stored.title == "Internet"
        assert self.event_types() == [AuditEventType.RECURRING_CREATED]

    def test_create_without_participants(self):
        obligation = self.create(participants=[])
        assert asyncio.run(self.recurring.get_obligation_by_id(obligation.id)) is not None

    def test_create_with_unbalanced_shares(self):
        obligation = self.make_obligation(participants=[
            Participant(user_id="alice", share=Decimal("50")),
            Participant(user_id="bob", share=Decimal("49")),
        ])
        with pytest.raises(UnbalancedSharesError):
            asyncio.run(self.service.create("alice", obligation))

        assert asyncio.run(self.recurring.get_obligation_by_id(obligation.id)) is None
        event = self.audit_storage.events[-1]
        assert event.event_type == AuditEventType.SHARES_REJECTED
        assert event.details["amount"] == "100"
        assert event.details["total_shares"] == "99"

    def test_viewer_cannot_create(self):
        with pytest.raises(InsufficientRoleError):
            self.create(user_id="carol")

    def test_stranger_cannot_create(self):
        with pytest.raises(NotAMemberError):
            self.create(user_id="mallory")

    def test_update(self):
        obligation = self.create()
        updated = asyncio.run(self.service.update(
            obligation.id, "bob", title="Fibre", frequency="monthly"
        ))
        assert updated.title == "Fibre"
        assert updated.frequency == Frequency.MONTHLY
        stored = asyncio.run(self.recurring.get_obligation_by_id(obligation.id))
        assert stored.title == "Fibre"
        assert self.event_types()[-1] == AuditEventType.RECURRING_UPDATED

    def test_update_amount_rechecks_existing_shares(self):
        obligation = self.create()
        with pytest.raises(UnbalancedSharesError):
            asyncio.run(self.service.update(obligation.id, "alice", amount=Decimal("120")))
        stored = asyncio.run(self.recurring.get_obligation_by_id(obligation.id))
        assert stored.amount == Decimal("100")

    def test_update_amount_and_shares_together(self):
        obligation = self.create()
        updated = asyncio.run(self.service.update(
            obligation.id,
            "alice",
            amount=Decimal("120"),
            participants=[
                {"user_id": "alice", "share": "60"},
                {"user_id": "bob", "share": "60"},
            ],
        ))
        assert updated.amount == Decimal("120")
        assert len(updated.participants) == 2

    def test_update_rejects_protected_fields(self):
        obligation = self.create()
        with pytest.raises(ValueError, match="cannot be updated"):
            asyncio.run(self.service.update(
                obligation.id, "alice", last_processed=datetime(2024, 1, 9)
            ))

    def test_update_validates_dates(self):
        obligation = self.create()
        with pytest.raises(ValueError):
            asyncio.run(self.service.update(
                obligation.id, "alice", end_date=datetime(2023, 1, 1)
            ))

    def test_update_unknown_obligation(self):
        with pytest.raises(NotFoundError):
            asyncio.run(self.service.update(uuid4(), "alice", title="Nope"))

    def test_delete(self):
        obligation = self.create()
        asyncio.run(self.service.delete(obligation.id, "alice"))
        assert asyncio.run(self.recurring.get_obligation_by_id(obligation.id)) is None
        assert self.event_types()[-1] == AuditEventType.RECURRING_DELETED

    def test_viewer_cannot_delete(self):
        obligation = self.create()
        with pytest.raises(InsufficientRoleError):
            asyncio.run(self.service.delete(obligation.id, "carol"))

    def test_get_for_any_member(self):
        obligation = self.create()
        fetched = asyncio.run(self.service.get(obligation.id, "carol"))
        assert fetched.id == obligation.id

    def test_get_for_stranger(self):
        obligation = self.create()
        with pytest.raises(NotAMemberError):
            asyncio.run(self.service.get(obligation.id, "mallory"))

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    def test_list_for_user_across_groups(self):
        first = self.create()
        other_group = Group(name="Studio", owner_id="carol", invite_key="WXYZ9876")
        asyncio.run(self.groups.save_group(other_group))
        second = asyncio.run(self.service.create(
            "carol", self.make_obligation(group_id=other_group.id, title="Power")
        ))

        carol_sees = asyncio.run(self.service.list_for_user("carol"))
        assert {o.id for o in carol_sees} == {first.id, second.id}

        bob_sees = asyncio.run(self.service.list_for_user("bob"))
        assert [o.id for o in bob_sees] == [first.id]

    def test_list_for_user_filters(self):
        active = self.create()
        inactive = self.create(title="Old plan", is_active=False)
        monthly = self.create(title="Rent", frequency=Frequency.MONTHLY)

        only_active = asyncio.run(self.service.list_for_user("alice", is_active=True))
        assert inactive.id not in {o.id for o in only_active}

        weekly = asyncio.run(self.service.list_for_user("alice", frequency="weekly"))
        assert {o.id for o in weekly} == {active.id, inactive.id}

        in_group = asyncio.run(self.service.list_for_user("alice", group_id=self.group.id))
        assert monthly.id in {o.id for o in in_group}

    def test_list_for_group_requires_membership(self):
        with pytest.raises(NotAMemberError):
            asyncio.run(self.service.list_for_user("mallory", group_id=self.group.id))

    def test_list_for_user_without_groups(self):
        assert asyncio.run(self.service.list_for_user("mallory")) == []

    def test_list_due(self):
        due = self.create()
        not_yet = self.create(title="Later", start_date=datetime(2024, 1, 9))
        ended = self.create(
            title="Ended",
            start_date=datetime(2023, 1, 1),
            end_date=datetime(2023, 6, 1),
        )
        paused = self.create(title="Paused", is_active=False)

        due_ids = {o.id for o in asyncio.run(self.service.list_due("carol", NOW))}
        assert due.id in due_ids
        assert not_yet.id not in due_ids
        assert ended.id not in due_ids
        assert paused.id not in due_ids

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def test_execute_creates_transaction_and_advances(self):
        obligation = self.create()
        transaction = asyncio.run(self.service.execute(obligation.id, "bob", NOW))

        assert transaction.recurring_id == obligation.id
        assert transaction.amount == Decimal("100")
        assert transaction.date == NOW
        assert transaction.created_by == "bob"

        stored = asyncio.run(self.recurring.get_obligation_by_id(obligation.id))
        assert stored.last_processed == NOW

        saved = asyncio.run(self.transactions.list_transactions(self.group.id))
        assert [t.id for t in saved] == [transaction.id]

        event = self.audit_storage.events[-1]
        assert event.event_type == AuditEventType.RECURRING_EXECUTED
        assert event.details["forced"] is False

    def test_execute_twice_in_same_window(self):
        """Test a second execution of the same window creates nothing."""
        obligation = self.create()
        asyncio.run(self.service.execute(obligation.id, "alice", NOW))
        with pytest.raises(NotDueError) as exc_info:
            asyncio.run(self.service.execute(obligation.id, "alice", NOW))

        assert exc_info.value.next_occurrence == datetime(2024, 1, 17)
        saved = asyncio.run(self.transactions.list_transactions(self.group.id))
        assert len(saved) == 1
        assert self.event_types()[-1] == AuditEventType.RECURRING_EXECUTION_SKIPPED

    def test_concurrent_executions_create_one_transaction(self):
        obligation = self.create()

        async def run_both():
            return await asyncio.gather(
                self.service.execute(obligation.id, "alice", NOW),
                self.service.execute(obligation.id, "bob", NOW),
                return_exceptions=True,
            )

        results = asyncio.run(run_both())
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], (NotDueError, ExecutionConflictError))

        saved = asyncio.run(self.transactions.list_transactions(self.group.id))
        assert len(saved) == 1

    def test_lost_claim_raises_conflict(self):
        self.build(recurring_storage=RacingRecurringStorage())
        obligation = self.create()

        with pytest.raises(ExecutionConflictError):
            asyncio.run(self.service.execute(obligation.id, "alice", NOW))

        assert asyncio.run(self.transactions.list_transactions(self.group.id)) == []

    def test_execute_not_due(self):
        obligation = self.create(start_date=datetime(2024, 1, 9))
        with pytest.raises(NotDueError) as exc_info:
            asyncio.run(self.service.execute(obligation.id, "alice", NOW))
        assert exc_info.value.next_occurrence == datetime(2024, 1, 16)
        assert exc_info.value.http_status == 409

    def test_forced_execution_runs_early(self):
        obligation = self.create(start_date=datetime(2024, 1, 9))
        transaction = asyncio.run(
            self.service.execute(obligation.id, "alice", NOW, force=True)
        )
        assert transaction.recurring_id == obligation.id
        stored = asyncio.run(self.recurring.get_obligation_by_id(obligation.id))
        assert stored.last_processed == NOW
        assert self.audit_storage.events[-1].details["forced"] is True

    def test_forced_execution_of_inactive_obligation(self):
        obligation = self.create(is_active=False)
        with pytest.raises(NotDueError) as exc_info:
            asyncio.run(self.service.execute(obligation.id, "alice", NOW, force=True))
        assert exc_info.value.next_occurrence is None

    def test_forced_execution_of_ended_obligation(self):
        obligation = self.create(
            start_date=datetime(2023, 1, 1),
            end_date=datetime(2023, 6, 1),
        )
        with pytest.raises(NotDueError):
            asyncio.run(self.service.execute(obligation.id, "alice", NOW, force=True))

    def test_viewer_cannot_execute(self):
        obligation = self.create()
        with pytest.raises(InsufficientRoleError):
            asyncio.run(self.service.execute(obligation.id, "carol", NOW))
        stored = asyncio.run(self.recurring.get_obligation_by_id(obligation.id))
        assert stored.last_processed is None

    def test_failed_transaction_save_releases_claim(self):
        self.build(transaction_storage=FailingTransactionStorage())
        obligation = self.create()

        with pytest.raises(StorageError):
            asyncio.run(self.service.execute(obligation.id, "alice", NOW))

        stored = asyncio.run(self.recurring.get_obligation_by_id(obligation.id))
        assert stored.last_processed is None
        assert self.event_types()[-1] == AuditEventType.STORAGE_ERROR

    def test_failed_claim_release_keeps_original_error(self):
        self.build(
            recurring_storage=StuckClaimStorage(),
            transaction_storage=FailingTransactionStorage(),
        )
        obligation = self.create()

        with pytest.raises(StorageError, match="sheet unavailable"):
            asyncio.run(self.service.execute(obligation.id, "alice", NOW))

        assert self.event_types()[-1] == AuditEventType.STORAGE_ERROR
        assert self.audit_storage.events[-1].error_message == "sheet unavailable"

    def test_execute_with_aware_now(self):
        obligation = self.create()
        aware_now = NOW.replace(tzinfo=timezone.utc)
        transaction = asyncio.run(self.service.execute(obligation.id, "alice", aware_now))

        assert transaction.date == NOW
        stored = asyncio.run(self.recurring.get_obligation_by_id(obligation.id))
        assert stored.last_processed == NOW
        with pytest.raises(NotDueError):
            asyncio.run(self.service.execute(obligation.id, "alice", aware_now))

    def test_list_due_with_aware_now(self):
        due = self.create()
        aware_now = NOW.replace(tzinfo=timezone.utc)
        due_ids = {o.id for o in asyncio.run(self.service.list_due("carol", aware_now))}
        assert due.id in due_ids

    def test_execute_unknown_obligation(self):
        with pytest.raises(NotFoundError):
            asyncio.run(self.service.execute(uuid4(), "alice", NOW))
