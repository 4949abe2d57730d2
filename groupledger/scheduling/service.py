"""
Recurring Obligation Service

CRUD and execution for recurring obligations, gated on group roles.

Execution flow:
1. Resolve the obligation and check the caller may write to its group
2. Check it is due (unless forced)
3. Claim the execution: compare-and-set last_processed in storage
4. Save the generated transaction
5. Audit

DESIGN DECISION: The claim (step 3) happens before the transaction is
written. Two concurrent executions of the same due window read the same
last_processed; only one claim succeeds, and the loser creates nothing.
If saving the transaction fails, the claim is released so the window can
be executed again.
"""

from datetime import datetime
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from groupledger.access import ALL_ROLES, WRITE_ROLES, GroupAccessGuard
from groupledger.audit import AuditLogger, create_correlation_id
from groupledger.models.audit import AuditEventType
from groupledger.models.recurring import Frequency, RecurringObligation
from groupledger.models.timestamps import to_naive_utc
from groupledger.models.transaction import Transaction
from groupledger.scheduling.schedule import (
    build_transaction,
    is_due,
    is_ended,
    next_occurrence,
)
from groupledger.services.storage import (
    GroupStorageInterface,
    NotFoundError,
    RecurringStorageInterface,
    StorageError,
    TransactionStorageInterface,
)
from groupledger.validation import UnbalancedSharesError, ensure_shares_balance


logger = structlog.get_logger("groupledger.scheduling")


UPDATABLE_FIELDS = frozenset({
    "title",
    "amount",
    "type",
    "category",
    "frequency",
    "start_date",
    "end_date",
    "payer_id",
    "participants",
    "notes",
    "is_active",
    "client_id",
})


class ScheduleError(Exception):
    """Base exception for recurring execution failures."""

    http_status = 400


class NotDueError(ScheduleError):
    """The obligation has no occurrence at or before now."""

    http_status = 409

    def __init__(self, obligation_id: UUID, next_at: Optional[datetime]):
        self.obligation_id = obligation_id
        self.next_occurrence = next_at
        if next_at is None:
            message = "Recurring obligation is inactive or has ended"
        else:
            message = f"Recurring obligation is not due until {next_at.isoformat()}"
        super().__init__(message)


class ExecutionConflictError(ScheduleError):
    """Another caller already executed this due window."""

    http_status = 409

    def __init__(self, obligation_id: UUID):
        self.obligation_id = obligation_id
        super().__init__("Recurring obligation was already executed for this period")


class RecurringService:
    """
    Group-scoped recurring obligations.

    Writers (Owner, Editor) create, change, delete and execute; any member
    can read.
    """

    def __init__(
        self,
        recurring_storage: RecurringStorageInterface,
        transaction_storage: TransactionStorageInterface,
        group_storage: GroupStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = recurring_storage
        self._transactions = transaction_storage
        self._groups = group_storage
        self._audit_logger = audit_logger
        self._guard = GroupAccessGuard(group_storage, audit_logger)

    async def _get_existing(self, obligation_id: UUID) -> RecurringObligation:
        obligation = await self._storage.get_obligation_by_id(obligation_id)
        if obligation is None:
            raise NotFoundError(f"Recurring obligation not found: {obligation_id}")
        return obligation

    async def _check_shares(
        self,
        obligation: RecurringObligation,
        actor_id: str,
        correlation_id: UUID,
    ) -> None:
        # No participants means the obligation is not split.
        if not obligation.participants:
            return
        try:
            ensure_shares_balance(obligation.amount, obligation.participants)
        except UnbalancedSharesError as e:
            if self._audit_logger:
                await self._audit_logger.log_shares_rejected(
                    entity_type="recurring",
                    entity_id=obligation.id,
                    actor_id=actor_id,
                    amount=str(e.amount),
                    total_shares=str(e.total),
                    correlation_id=correlation_id,
                )
            raise

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def create(
        self,
        user_id: str,
        obligation: RecurringObligation,
        correlation_id: Optional[UUID] = None,
    ) -> RecurringObligation:
        """
        Save a new obligation in its group.

        Raises:
            NotAMemberError / InsufficientRoleError: caller can't write
            UnbalancedSharesError: participant shares don't add up
        """
        correlation_id = correlation_id or create_correlation_id()

        await self._guard.check_role(
            obligation.group_id, user_id, WRITE_ROLES, correlation_id
        )
        await self._check_shares(obligation, user_id, correlation_id)

        await self._storage.save_obligation(obligation)

        if self._audit_logger:
            await self._audit_logger.log_recurring_changed(
                event_type=AuditEventType.RECURRING_CREATED,
                obligation_id=obligation.id,
                group_id=obligation.group_id,
                actor_id=user_id,
                title=obligation.title,
                correlation_id=correlation_id,
            )

        return obligation

    async def update(
        self,
        obligation_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
        **changes: Any,
    ) -> RecurringObligation:
        """
        Apply field changes to an obligation.

        The result is fully re-validated, so a change to either the amount
        or the participants is checked against the other.

        Raises:
            NotFoundError: obligation doesn't exist
            ValueError: a field is not updatable, or a value is invalid
            UnbalancedSharesError: participant shares don't add up
        """
        correlation_id = correlation_id or create_correlation_id()

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        existing = await self._get_existing(obligation_id)
        await self._guard.check_role(
            existing.group_id, user_id, WRITE_ROLES, correlation_id
        )

        data = existing.model_dump()
        data.update(changes)
        data["updated_at"] = datetime.utcnow()
        updated = RecurringObligation.model_validate(data)

        await self._check_shares(updated, user_id, correlation_id)
        await self._storage.update_obligation(updated)

        if self._audit_logger:
            await self._audit_logger.log_recurring_changed(
                event_type=AuditEventType.RECURRING_UPDATED,
                obligation_id=updated.id,
                group_id=updated.group_id,
                actor_id=user_id,
                title=updated.title,
                correlation_id=correlation_id,
            )

        return updated

    async def delete(
        self,
        obligation_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Delete an obligation. Transactions it generated are kept."""
        correlation_id = correlation_id or create_correlation_id()

        existing = await self._get_existing(obligation_id)
        await self._guard.check_role(
            existing.group_id, user_id, WRITE_ROLES, correlation_id
        )

        await self._storage.delete_obligation(obligation_id)

        if self._audit_logger:
            await self._audit_logger.log_recurring_changed(
                event_type=AuditEventType.RECURRING_DELETED,
                obligation_id=existing.id,
                group_id=existing.group_id,
                actor_id=user_id,
                title=existing.title,
                correlation_id=correlation_id,
            )

    async def get(self, obligation_id: UUID, user_id: str) -> RecurringObligation:
        obligation = await self._get_existing(obligation_id)
        await self._guard.check_role(obligation.group_id, user_id, ALL_ROLES)
        return obligation

    async def list_for_user(
        self,
        user_id: str,
        group_id: Optional[Union[UUID, str]] = None,
        is_active: Optional[bool] = None,
        frequency: Optional[Frequency] = None,
    ) -> list[RecurringObligation]:
        """
        List obligations visible to the user.

        With group_id, only that group (membership required). Without it,
        every group the user belongs to.
        """
        if group_id is not None:
            context = await self._guard.check_role(group_id, user_id, ALL_ROLES)
            group_ids = [context.group.id]
        else:
            groups = await self._groups.list_groups_for_user(user_id)
            group_ids = [g.id for g in groups]

        if not group_ids:
            return []

        return await self._storage.list_obligations(
            group_ids,
            is_active=is_active,
            frequency=Frequency(frequency) if frequency else None,
        )

    async def list_due(
        self,
        user_id: str,
        now: datetime,
        group_id: Optional[Union[UUID, str]] = None,
    ) -> list[RecurringObligation]:
        """Active obligations whose next occurrence is at or before now."""
        now = to_naive_utc(now)
        obligations = await self.list_for_user(user_id, group_id, is_active=True)
        return [o for o in obligations if is_due(o, now)]

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute(
        self,
        obligation_id: UUID,
        user_id: str,
        now: datetime,
        force: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Generate the transaction for the current due window.

        Args:
            obligation_id: Obligation to run
            user_id: Acting user (must be Owner or Editor)
            now: Execution time; becomes last_processed
            force: Run even if no occurrence is due yet (manual run).
                Inactive or ended obligations are never run.

        Raises:
            NotDueError: not due and not forced, or inactive/ended
            ExecutionConflictError: a concurrent execution claimed it first
        """
        correlation_id = correlation_id or create_correlation_id()
        now = to_naive_utc(now)

        obligation = await self._get_existing(obligation_id)
        await self._guard.check_role(
            obligation.group_id, user_id, WRITE_ROLES, correlation_id
        )

        if not obligation.is_active or is_ended(obligation, now):
            await self._skip(obligation, user_id, "inactive or ended", correlation_id)
            raise NotDueError(obligation.id, None)

        if not force and not is_due(obligation, now):
            next_at = next_occurrence(obligation, now)
            await self._skip(obligation, user_id, "not due", correlation_id)
            raise NotDueError(obligation.id, next_at)

        expected = obligation.last_processed
        claimed = await self._storage.claim_execution(obligation.id, expected, now)
        if not claimed:
            await self._skip(obligation, user_id, "already claimed", correlation_id)
            raise ExecutionConflictError(obligation.id)

        transaction = build_transaction(obligation, now, created_by=user_id)
        try:
            await self._transactions.save_transaction(transaction)
        except StorageError as e:
            try:
                await self._storage.claim_execution(obligation.id, now, expected)
            except StorageError as release_error:
                # The window stays claimed until last_processed is repaired.
                logger.error(
                    "claim_release_failed",
                    obligation_id=str(obligation.id),
                    error=str(release_error),
                    correlation_id=str(correlation_id),
                )
            if self._audit_logger:
                await self._audit_logger.log_storage_error(
                    operation="save_recurring_transaction",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_recurring_executed(
                obligation_id=obligation.id,
                transaction_id=transaction.id,
                actor_id=user_id,
                processed_at=now,
                forced=force,
                correlation_id=correlation_id,
            )

        return transaction

    async def _skip(
        self,
        obligation: RecurringObligation,
        user_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_recurring_execution_skipped(
                obligation_id=obligation.id,
                actor_id=user_id,
                reason=reason,
                correlation_id=correlation_id,
            )
