"""
Audit Logger

DESIGN DECISION: Every membership change, access denial and recurring
execution is logged. This provides:
1. Traceability of who changed what in a group
2. Debugging capability when access is denied unexpectedly
3. Evidence for double-processing investigations

The audit logger:
- Is async so it fits the async storage interface
- Gracefully handles failures (doesn't crash the request if logging fails)
- Supports correlation IDs to trace related events
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from groupledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from groupledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("groupledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_group_created(
        self,
        group_id: UUID,
        owner_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.group_created(
            group_id=group_id,
            owner_id=owner_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_group_updated(
        self,
        group_id: UUID,
        actor_id: str,
        changes: dict,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.group_updated(
            group_id=group_id,
            actor_id=actor_id,
            changes=changes,
            correlation_id=correlation_id,
        ))

    async def log_group_deleted(
        self,
        group_id: UUID,
        actor_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.group_deleted(
            group_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_invite_key_regenerated(
        self,
        group_id: UUID,
        actor_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invite_key_regenerated(
            group_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_member_joined(
        self,
        group_id: UUID,
        user_id: str,
        role: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.member_joined(
            group_id=group_id,
            user_id=user_id,
            role=role,
            correlation_id=correlation_id,
        ))

    async def log_member_role_changed(
        self,
        group_id: UUID,
        actor_id: str,
        target_user_id: str,
        old_role: str,
        new_role: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.member_role_changed(
            group_id=group_id,
            actor_id=actor_id,
            target_user_id=target_user_id,
            old_role=old_role,
            new_role=new_role,
            correlation_id=correlation_id,
        ))

    async def log_member_removed(
        self,
        group_id: UUID,
        actor_id: str,
        target_user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.member_removed(
            group_id=group_id,
            actor_id=actor_id,
            target_user_id=target_user_id,
            correlation_id=correlation_id,
        ))

    async def log_member_left(
        self,
        group_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.member_left(
            group_id=group_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_access_denied(
        self,
        group_id: UUID,
        user_id: str,
        reason: str,
        allowed_roles: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.access_denied(
            group_id=group_id,
            user_id=user_id,
            reason=reason,
            allowed_roles=allowed_roles,
            correlation_id=correlation_id,
        ))

    async def log_shares_rejected(
        self,
        entity_type: str,
        entity_id: Optional[UUID],
        actor_id: str,
        amount: str,
        total_shares: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.shares_rejected(
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            amount=amount,
            total_shares=total_shares,
            correlation_id=correlation_id,
        ))

    async def log_recurring_changed(
        self,
        event_type: AuditEventType,
        obligation_id: UUID,
        group_id: UUID,
        actor_id: str,
        title: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_changed(
            event_type=event_type,
            obligation_id=obligation_id,
            group_id=group_id,
            actor_id=actor_id,
            title=title,
            correlation_id=correlation_id,
        ))

    async def log_recurring_executed(
        self,
        obligation_id: UUID,
        transaction_id: UUID,
        actor_id: str,
        processed_at: datetime,
        forced: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_executed(
            obligation_id=obligation_id,
            transaction_id=transaction_id,
            actor_id=actor_id,
            processed_at=processed_at,
            forced=forced,
            correlation_id=correlation_id,
        ))

    async def log_recurring_execution_skipped(
        self,
        obligation_id: UUID,
        actor_id: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_execution_skipped(
            obligation_id=obligation_id,
            actor_id=actor_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_transaction_created(
        self,
        transaction_id: UUID,
        group_id: UUID,
        actor_id: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            group_id=group_id,
            actor_id=actor_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., one API request).
    Pass it through all subsequent operations.
    """
    return uuid4()
