"""Recurring obligation scheduling package."""

from groupledger.scheduling.schedule import (
    add_months,
    add_period,
    build_transaction,
    is_due,
    is_ended,
    mark_executed,
    next_occurrence,
)
from groupledger.scheduling.service import (
    ExecutionConflictError,
    NotDueError,
    RecurringService,
    ScheduleError,
)

__all__ = [
    # Schedule engine
    "add_months",
    "add_period",
    "build_transaction",
    "is_due",
    "is_ended",
    "mark_executed",
    "next_occurrence",
    # Service
    "ExecutionConflictError",
    "NotDueError",
    "RecurringService",
    "ScheduleError",
]
