"""Tests for one-off transactions."""

import asyncio

import pytest
from datetime import datetime
from decimal import Decimal

from groupledger.access import InsufficientRoleError, NotAMemberError
from groupledger.audit import AuditLogger
from groupledger.models.audit import AuditEventType
from groupledger.models.group import Group, Role
from groupledger.models.transaction import Participant, Transaction
from groupledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryGroupStorage,
    InMemoryTransactionStorage,
)
from groupledger.transactions import TransactionService
from groupledger.validation import UnbalancedSharesError


class TestTransactionService:
    """Tests for TransactionService against in-memory storage."""

    def setup_method(self):
        self.groups = InMemoryGroupStorage()
        self.storage = InMemoryTransactionStorage()
        self.audit_storage = InMemoryAuditStorage()
        self.service = TransactionService(
            self.storage, self.groups, AuditLogger(self.audit_storage)
        )
        self.group = Group(name="Flat 4B", owner_id="alice", invite_key="ABCD1234")
        self.group.add_member("bob", Role.EDITOR)
        self.group.add_member("carol", Role.VIEWER)
        asyncio.run(self.groups.save_group(self.group))

    def make_transaction(self, **overrides) -> Transaction:
        data = {
            "group_id": self.group.id,
            "description": "Dinner",
            "amount": Decimal("100"),
            "category": "food",
            "payer_id": "bob",
            "participants": [
                Participant(user_id="alice", share=Decimal("33.34")),
                Participant(user_id="bob", share=Decimal("33.33")),
                Participant(user_id="carol", share=Decimal("33.33")),
            ],
        }
        data.update(overrides)
        return Transaction(**data)

    def test_editor_creates_split_transaction(self):
        transaction = asyncio.run(
            self.service.create_transaction("bob", self.make_transaction())
        )
        assert transaction.created_by == "bob"
        stored = asyncio.run(self.storage.get_transaction_by_id(transaction.id))
        assert stored.total_shares == Decimal("100")
        assert self.audit_storage.events[-1].event_type == AuditEventType.TRANSACTION_CREATED

    def test_unbalanced_split_rejected(self):
        transaction = self.make_transaction(participants=[
            Participant(user_id="alice", share=Decimal("50")),
            Participant(user_id="bob", share=Decimal("49")),
        ])
        with pytest.raises(UnbalancedSharesError):
            asyncio.run(self.service.create_transaction("alice", transaction))

        assert asyncio.run(self.storage.get_transaction_by_id(transaction.id)) is None
        event = self.audit_storage.events[-1]
        assert event.event_type == AuditEventType.SHARES_REJECTED
        assert event.entity_type == "transaction"

    def test_unsplit_transaction_skips_share_check(self):
        transaction = asyncio.run(self.service.create_transaction(
            "alice", self.make_transaction(participants=[])
        ))
        assert asyncio.run(self.storage.get_transaction_by_id(transaction.id)) is not None

    def test_viewer_cannot_create(self):
        with pytest.raises(InsufficientRoleError):
            asyncio.run(self.service.create_transaction("carol", self.make_transaction()))

    def test_list_transactions_newest_first(self):
        older = self.make_transaction(date=datetime(2024, 1, 1))
        newer = self.make_transaction(date=datetime(2024, 2, 1))
        asyncio.run(self.service.create_transaction("alice", older))
        asyncio.run(self.service.create_transaction("alice", newer))

        listed = asyncio.run(self.service.list_transactions(self.group.id, "carol"))
        assert [t.id for t in listed] == [newer.id, older.id]

    def test_stranger_cannot_list(self):
        with pytest.raises(NotAMemberError):
            asyncio.run(self.service.list_transactions(self.group.id, "mallory"))
