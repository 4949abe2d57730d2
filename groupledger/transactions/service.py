"""
Transaction Service

Records one-off income and expenses in a group. Split transactions must
have balanced participant shares before they are stored.
"""

from typing import Optional, Union
from uuid import UUID

from groupledger.access import ALL_ROLES, WRITE_ROLES, GroupAccessGuard
from groupledger.audit import AuditLogger, create_correlation_id
from groupledger.models.transaction import Transaction
from groupledger.services.storage import (
    GroupStorageInterface,
    TransactionStorageInterface,
)
from groupledger.validation import UnbalancedSharesError, ensure_shares_balance


class TransactionService:
    """Group-scoped transactions. Owners and Editors write, any member reads."""

    def __init__(
        self,
        transaction_storage: TransactionStorageInterface,
        group_storage: GroupStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = transaction_storage
        self._audit_logger = audit_logger
        self._guard = GroupAccessGuard(group_storage, audit_logger)

    async def create_transaction(
        self,
        user_id: str,
        transaction: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Store a transaction in its group.

        Raises:
            NotAMemberError / InsufficientRoleError: caller can't write
            UnbalancedSharesError: participant shares don't add up
        """
        correlation_id = correlation_id or create_correlation_id()

        await self._guard.check_role(
            transaction.group_id, user_id, WRITE_ROLES, correlation_id
        )

        if transaction.participants:
            try:
                ensure_shares_balance(transaction.amount, transaction.participants)
            except UnbalancedSharesError as e:
                if self._audit_logger:
                    await self._audit_logger.log_shares_rejected(
                        entity_type="transaction",
                        entity_id=transaction.id,
                        actor_id=user_id,
                        amount=str(e.amount),
                        total_shares=str(e.total),
                        correlation_id=correlation_id,
                    )
                raise

        if transaction.created_by is None:
            transaction.created_by = user_id

        await self._storage.save_transaction(transaction)

        if self._audit_logger:
            await self._audit_logger.log_transaction_created(
                transaction_id=transaction.id,
                group_id=transaction.group_id,
                actor_id=user_id,
                amount=str(transaction.amount),
                correlation_id=correlation_id,
            )

        return transaction

    async def list_transactions(
        self,
        group_id: Union[UUID, str],
        user_id: str,
        recurring_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """Transactions in a group, newest first. Any member may list."""
        context = await self._guard.check_role(group_id, user_id, ALL_ROLES)
        return await self._storage.list_transactions(
            context.group.id, recurring_id=recurring_id
        )
