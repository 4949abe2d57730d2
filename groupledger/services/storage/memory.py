"""
In-Memory Storage Implementation

Dict-backed implementations of the storage interfaces, used by the tests and
as the fallback when Google Sheets is not configured.

Objects are deep-copied on the way in and on the way out, so callers only
change stored state through the interface methods, the same as with a
remote backend.

None of the methods await between reading and writing, so under a single
event loop each call is atomic. That is what makes claim_execution a real
compare-and-set here.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from groupledger.models.audit import AuditEvent
from groupledger.models.group import Group
from groupledger.models.recurring import Frequency, RecurringObligation
from groupledger.models.transaction import Transaction
from groupledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    GroupStorageInterface,
    NotFoundError,
    RecurringStorageInterface,
    TransactionStorageInterface,
)


class InMemoryGroupStorage(GroupStorageInterface):
    """Groups keyed by id, with a secondary index on invite key."""

    def __init__(self):
        self._groups: dict[UUID, Group] = {}
        self._invite_keys: dict[str, UUID] = {}

    def _check_invite_key(self, group: Group) -> None:
        owner = self._invite_keys.get(group.invite_key)
        if owner is not None and owner != group.id:
            raise DuplicateError(f"Invite key already in use: {group.invite_key}")

    async def save_group(self, group: Group) -> bool:
        if group.id in self._groups:
            raise DuplicateError(f"Group already exists: {group.id}")
        self._check_invite_key(group)

        self._groups[group.id] = group.model_copy(deep=True)
        self._invite_keys[group.invite_key] = group.id
        return True

    async def get_group_by_id(self, group_id: UUID) -> Optional[Group]:
        group = self._groups.get(group_id)
        return group.model_copy(deep=True) if group else None

    async def get_group_by_invite_key(self, invite_key: str) -> Optional[Group]:
        group_id = self._invite_keys.get(invite_key.strip().upper())
        if group_id is None:
            return None
        return await self.get_group_by_id(group_id)

    async def update_group(self, group: Group) -> bool:
        existing = self._groups.get(group.id)
        if existing is None:
            raise NotFoundError(f"Group not found: {group.id}")
        self._check_invite_key(group)

        if existing.invite_key != group.invite_key:
            self._invite_keys.pop(existing.invite_key, None)
        self._groups[group.id] = group.model_copy(deep=True)
        self._invite_keys[group.invite_key] = group.id
        return True

    async def delete_group(self, group_id: UUID) -> bool:
        group = self._groups.pop(group_id, None)
        if group is None:
            return False
        self._invite_keys.pop(group.invite_key, None)
        return True

    async def list_groups_for_user(self, user_id: str) -> list[Group]:
        groups = [
            g.model_copy(deep=True)
            for g in self._groups.values()
            if g.is_member(user_id)
        ]
        groups.sort(key=lambda g: g.created_at, reverse=True)
        return groups

    async def invite_key_exists(self, invite_key: str) -> bool:
        return invite_key.strip().upper() in self._invite_keys


class InMemoryRecurringStorage(RecurringStorageInterface):
    """Recurring obligations keyed by id."""

    def __init__(self):
        self._obligations: dict[UUID, RecurringObligation] = {}

    async def save_obligation(self, obligation: RecurringObligation) -> bool:
        if obligation.id in self._obligations:
            raise DuplicateError(f"Recurring obligation already exists: {obligation.id}")
        self._obligations[obligation.id] = obligation.model_copy(deep=True)
        return True

    async def get_obligation_by_id(
        self,
        obligation_id: UUID,
    ) -> Optional[RecurringObligation]:
        obligation = self._obligations.get(obligation_id)
        return obligation.model_copy(deep=True) if obligation else None

    async def update_obligation(self, obligation: RecurringObligation) -> bool:
        if obligation.id not in self._obligations:
            raise NotFoundError(f"Recurring obligation not found: {obligation.id}")
        self._obligations[obligation.id] = obligation.model_copy(deep=True)
        return True

    async def delete_obligation(self, obligation_id: UUID) -> bool:
        return self._obligations.pop(obligation_id, None) is not None

    async def list_obligations(
        self,
        group_ids: list[UUID],
        is_active: Optional[bool] = None,
        frequency: Optional[Frequency] = None,
    ) -> list[RecurringObligation]:
        wanted = set(group_ids)
        results = []
        for obligation in self._obligations.values():
            if obligation.group_id not in wanted:
                continue
            if is_active is not None and obligation.is_active != is_active:
                continue
            if frequency is not None and obligation.frequency != frequency:
                continue
            results.append(obligation.model_copy(deep=True))

        results.sort(key=lambda o: o.created_at, reverse=True)
        return results

    async def claim_execution(
        self,
        obligation_id: UUID,
        expected_last_processed: Optional[datetime],
        processed_at: Optional[datetime],
    ) -> bool:
        obligation = self._obligations.get(obligation_id)
        if obligation is None:
            raise NotFoundError(f"Recurring obligation not found: {obligation_id}")
        if obligation.last_processed != expected_last_processed:
            return False

        obligation.last_processed = processed_at
        obligation.updated_at = datetime.utcnow()
        return True


class InMemoryTransactionStorage(TransactionStorageInterface):
    """Transactions keyed by id."""

    def __init__(self):
        self._transactions: dict[UUID, Transaction] = {}

    async def save_transaction(self, transaction: Transaction) -> bool:
        if transaction.id in self._transactions:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return True

    async def get_transaction_by_id(
        self,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        transaction = self._transactions.get(transaction_id)
        return transaction.model_copy(deep=True) if transaction else None

    async def list_transactions(
        self,
        group_id: UUID,
        recurring_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        results = [
            t.model_copy(deep=True)
            for t in self._transactions.values()
            if t.group_id == group_id
            and (recurring_id is None or t.recurring_id == recurring_id)
        ]
        results.sort(key=lambda t: t.date, reverse=True)
        return results


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
