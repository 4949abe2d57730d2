"""
Audit Models for Group Ledger

Every membership change, access denial and recurring execution is logged for
audit purposes. This provides:
1. Traceability of who changed a group and when
2. Evidence when a recurring obligation ran twice
3. Debugging information when access is unexpectedly denied

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Group lifecycle
    GROUP_CREATED = "group_created"
    GROUP_UPDATED = "group_updated"
    GROUP_DELETED = "group_deleted"
    INVITE_KEY_REGENERATED = "invite_key_regenerated"

    # Membership
    MEMBER_JOINED = "member_joined"
    MEMBER_ROLE_CHANGED = "member_role_changed"
    MEMBER_REMOVED = "member_removed"
    MEMBER_LEFT = "member_left"

    # Authorization
    ACCESS_DENIED = "access_denied"

    # Shares
    SHARES_REJECTED = "shares_rejected"

    # Recurring obligations
    RECURRING_CREATED = "recurring_created"
    RECURRING_UPDATED = "recurring_updated"
    RECURRING_DELETED = "recurring_deleted"
    RECURRING_EXECUTED = "recurring_executed"
    RECURRING_EXECUTION_SKIPPED = "recurring_execution_skipped"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'group', 'recurring', 'transaction')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Who did it
    actor_id: Optional[str] = Field(
        default=None,
        description="User whose request caused the event"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one request)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    # Additional data (event-specific)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "actor_id": self.actor_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         actor_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            self.actor_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.group_created(group_id, owner_id, name)
        event = AuditEventBuilder.access_denied(group_id, user_id, reason, roles)
    """

    @staticmethod
    def group_created(
        group_id: UUID,
        owner_id: str,
        name: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            entity_type="group",
            entity_id=group_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description=f"Group created: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def group_updated(
        group_id: UUID,
        actor_id: str,
        changes: dict,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_UPDATED,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Group settings updated: {', '.join(sorted(changes)) or 'no changes'}",
            details={"changes": changes},
            is_user_action=True,
        )

    @staticmethod
    def group_deleted(
        group_id: UUID,
        actor_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="Group deleted",
            is_user_action=True,
        )

    @staticmethod
    def invite_key_regenerated(
        group_id: UUID,
        actor_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        # The key itself is a join credential and stays out of the log.
        return AuditEvent(
            event_type=AuditEventType.INVITE_KEY_REGENERATED,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="Invite key regenerated",
            is_user_action=True,
        )

    @staticmethod
    def member_joined(
        group_id: UUID,
        user_id: str,
        role: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_JOINED,
            entity_type="group",
            entity_id=group_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description=f"User {user_id} joined as {role}",
            details={"user_id": user_id, "role": role},
            is_user_action=True,
        )

    @staticmethod
    def member_role_changed(
        group_id: UUID,
        actor_id: str,
        target_user_id: str,
        old_role: str,
        new_role: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_ROLE_CHANGED,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Role of {target_user_id} changed from {old_role} to {new_role}",
            details={
                "target_user_id": target_user_id,
                "old_role": old_role,
                "new_role": new_role,
            },
            is_user_action=True,
        )

    @staticmethod
    def member_removed(
        group_id: UUID,
        actor_id: str,
        target_user_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_REMOVED,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"User {target_user_id} removed from group",
            details={"target_user_id": target_user_id},
            is_user_action=True,
        )

    @staticmethod
    def member_left(
        group_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_LEFT,
            entity_type="group",
            entity_id=group_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description=f"User {user_id} left the group",
            is_user_action=True,
        )

    @staticmethod
    def access_denied(
        group_id: UUID,
        user_id: str,
        reason: str,
        allowed_roles: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCESS_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type="group",
            entity_id=group_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description=f"Access denied: {reason}",
            details={
                "reason": reason,
                "allowed_roles": allowed_roles,
            },
        )

    @staticmethod
    def shares_rejected(
        entity_type: str,
        entity_id: Optional[UUID],
        actor_id: str,
        amount: str,
        total_shares: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SHARES_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Participant shares ({total_shares}) do not match amount ({amount})",
            details={
                "amount": amount,
                "total_shares": total_shares,
            },
            is_user_action=True,
        )

    @staticmethod
    def recurring_changed(
        event_type: AuditEventType,
        obligation_id: UUID,
        group_id: UUID,
        actor_id: str,
        title: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        verb = {
            AuditEventType.RECURRING_CREATED: "created",
            AuditEventType.RECURRING_UPDATED: "updated",
            AuditEventType.RECURRING_DELETED: "deleted",
        }[event_type]
        return AuditEvent(
            event_type=event_type,
            entity_type="recurring",
            entity_id=obligation_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Recurring obligation {verb}: {title}",
            details={"group_id": str(group_id), "title": title},
            is_user_action=True,
        )

    @staticmethod
    def recurring_executed(
        obligation_id: UUID,
        transaction_id: UUID,
        actor_id: str,
        processed_at: datetime,
        forced: bool,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_EXECUTED,
            entity_type="recurring",
            entity_id=obligation_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="Recurring obligation executed",
            details={
                "transaction_id": str(transaction_id),
                "processed_at": processed_at.isoformat(),
                "forced": forced,
            },
            is_user_action=True,
        )

    @staticmethod
    def recurring_execution_skipped(
        obligation_id: UUID,
        actor_id: str,
        reason: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_EXECUTION_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="recurring",
            entity_id=obligation_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Recurring execution skipped: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def transaction_created(
        transaction_id: UUID,
        group_id: UUID,
        actor_id: str,
        amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Transaction created: {amount}",
            details={"group_id": str(group_id), "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )
