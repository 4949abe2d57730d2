"""
Data Models Package

This package contains all Pydantic models used in Group Ledger.
All data flowing through the system must conform to these schemas.
"""

from groupledger.models.group import (
    Currency,
    DuplicateMemberError,
    Group,
    GroupMember,
    MemberNotFoundError,
    MembershipError,
    Role,
)
from groupledger.models.recurring import (
    Frequency,
    RecurringObligation,
)
from groupledger.models.transaction import (
    Participant,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from groupledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Group models
    "Currency",
    "DuplicateMemberError",
    "Group",
    "GroupMember",
    "MemberNotFoundError",
    "MembershipError",
    "Role",
    # Recurring models
    "Frequency",
    "RecurringObligation",
    # Transaction models
    "Participant",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
