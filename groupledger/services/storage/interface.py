"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep Google Sheets and in-memory backends interchangeable
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the group, recurring and transaction services need.

Two guarantees are pushed down to the backends because only they can
provide them atomically:
- Invite keys are unique across groups (DuplicateError on save/update)
- Recurring executions are claimed with compare-and-set on last_processed
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from groupledger.models.audit import AuditEvent
from groupledger.models.group import Group
from groupledger.models.recurring import Frequency, RecurringObligation
from groupledger.models.transaction import Transaction


class GroupStorageInterface(ABC):
    """
    Abstract interface for group storage operations.

    Members are stored with their group; there is no separate
    membership table.
    """

    @abstractmethod
    async def save_group(self, group: Group) -> bool:
        """
        Insert a new group.

        Raises:
            DuplicateError: group id exists, or invite key is already used
            StorageError: if save fails
        """
        pass

    @abstractmethod
    async def get_group_by_id(self, group_id: UUID) -> Optional[Group]:
        """Retrieve a group by ID, or None if it doesn't exist."""
        pass

    @abstractmethod
    async def get_group_by_invite_key(self, invite_key: str) -> Optional[Group]:
        """Retrieve the group an invite key belongs to, or None."""
        pass

    @abstractmethod
    async def update_group(self, group: Group) -> bool:
        """
        Replace a stored group (settings, members, invite key).

        Raises:
            NotFoundError: if group doesn't exist
            DuplicateError: invite key is used by another group
        """
        pass

    @abstractmethod
    async def delete_group(self, group_id: UUID) -> bool:
        """Delete a group. Returns False if it didn't exist."""
        pass

    @abstractmethod
    async def list_groups_for_user(self, user_id: str) -> list[Group]:
        """
        List groups the user is a member of.

        Returns:
            Groups, newest first
        """
        pass

    @abstractmethod
    async def invite_key_exists(self, invite_key: str) -> bool:
        """Check whether any group already uses this invite key."""
        pass


class RecurringStorageInterface(ABC):
    """Abstract interface for recurring obligation storage."""

    @abstractmethod
    async def save_obligation(self, obligation: RecurringObligation) -> bool:
        """
        Insert a new recurring obligation.

        Raises:
            DuplicateError: obligation id exists
        """
        pass

    @abstractmethod
    async def get_obligation_by_id(
        self,
        obligation_id: UUID,
    ) -> Optional[RecurringObligation]:
        pass

    @abstractmethod
    async def update_obligation(self, obligation: RecurringObligation) -> bool:
        """
        Replace a stored obligation.

        Raises:
            NotFoundError: if obligation doesn't exist
        """
        pass

    @abstractmethod
    async def delete_obligation(self, obligation_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_obligations(
        self,
        group_ids: list[UUID],
        is_active: Optional[bool] = None,
        frequency: Optional[Frequency] = None,
    ) -> list[RecurringObligation]:
        """
        List obligations belonging to any of the given groups.

        Returns:
            Matching obligations, newest first
        """
        pass

    @abstractmethod
    async def claim_execution(
        self,
        obligation_id: UUID,
        expected_last_processed: Optional[datetime],
        processed_at: Optional[datetime],
    ) -> bool:
        """
        Advance last_processed only if it still equals the expected value.

        This is the at-most-once guard for executions: of two callers that
        read the same last_processed, exactly one claim succeeds. Passing
        the claimed value back as expected releases a claim.

        Returns:
            True if this caller won the claim

        Raises:
            NotFoundError: if obligation doesn't exist
        """
        pass


class TransactionStorageInterface(ABC):
    """Abstract interface for transaction storage."""

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> bool:
        pass

    @abstractmethod
    async def get_transaction_by_id(
        self,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        group_id: UUID,
        recurring_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        List a group's transactions, newest first.

        Args:
            group_id: Group to list
            recurring_id: Only transactions generated by this obligation
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""

    http_status = 500


class NotFoundError(StorageError):
    """Entity not found in storage."""

    http_status = 404


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""

    http_status = 409


class ConnectionError(StorageError):
    """Could not connect to storage backend."""

    http_status = 503
