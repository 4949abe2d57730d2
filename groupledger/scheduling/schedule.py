"""
Recurring Schedule Engine

Pure functions over RecurringObligation. There is no background timer:
callers poll with an explicit "now" and decide whether to execute.

DESIGN DECISION: Calendar-month arithmetic keeps the day of month and lets
overflow roll into the following month, the way JavaScript's Date.setMonth
does. Jan 31 + 1 month is therefore Mar 2 in a leap year (Mar 3 otherwise),
not Feb 29. Schedules created by existing clients were computed this way,
so it is kept rather than clamped to month end.

All datetimes are naive UTC, like the rest of the models. An aware "now"
is converted before it is compared.
"""

from datetime import datetime, timedelta
from typing import Optional

from groupledger.models.recurring import Frequency, RecurringObligation
from groupledger.models.timestamps import to_naive_utc
from groupledger.models.transaction import Transaction


_FIXED_PERIODS = {
    Frequency.DAILY: timedelta(days=1),
    Frequency.WEEKLY: timedelta(days=7),
    Frequency.BIWEEKLY: timedelta(days=14),
}

_MONTH_PERIODS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


def add_months(value: datetime, months: int) -> datetime:
    """
    Add calendar months, rolling day overflow into the next month.

    >>> add_months(datetime(2024, 1, 31), 1)
    datetime.datetime(2024, 3, 2, 0, 0)
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    # Day 1 always exists; adding the remaining days reproduces the overflow.
    return value.replace(year=year, month=month, day=1) + timedelta(days=value.day - 1)


def add_period(anchor: datetime, frequency: Frequency) -> datetime:
    """Advance anchor by exactly one period of the given frequency."""
    frequency = Frequency(frequency)
    if frequency in _FIXED_PERIODS:
        return anchor + _FIXED_PERIODS[frequency]
    return add_months(anchor, _MONTH_PERIODS[frequency])


def is_ended(obligation: RecurringObligation, now: datetime) -> bool:
    return obligation.end_date is not None and obligation.end_date < to_naive_utc(now)


def next_occurrence(
    obligation: RecurringObligation,
    now: datetime,
    *,
    clamp: bool = False,
) -> Optional[datetime]:
    """
    Compute the next occurrence of an obligation.

    Args:
        obligation: The obligation to inspect
        now: Reference time
        clamp: Return now instead of an occurrence already in the past.
            This is how existing clients have always displayed overdue
            obligations ("due immediately"); the default reports the
            actual calendar date that was missed.

    Returns:
        None if the obligation is inactive or its end date has passed,
        otherwise one period after last_processed (or start_date if it
        has never run).
    """
    now = to_naive_utc(now)
    if not obligation.is_active or is_ended(obligation, now):
        return None

    anchor = obligation.last_processed or obligation.start_date
    occurrence = add_period(anchor, obligation.frequency)

    if clamp and occurrence < now:
        return now
    return occurrence


def is_due(obligation: RecurringObligation, now: datetime) -> bool:
    """True iff the obligation has a next occurrence at or before now."""
    now = to_naive_utc(now)
    occurrence = next_occurrence(obligation, now)
    return occurrence is not None and occurrence <= now


def mark_executed(
    obligation: RecurringObligation,
    now: datetime,
) -> RecurringObligation:
    """Record an execution at now. Mutates and returns the obligation."""
    obligation.last_processed = to_naive_utc(now)
    obligation.updated_at = datetime.utcnow()
    return obligation


def build_transaction(
    obligation: RecurringObligation,
    now: datetime,
    created_by: Optional[str] = None,
) -> Transaction:
    """Create the transaction one execution of the obligation produces."""
    return Transaction(
        group_id=obligation.group_id,
        description=obligation.title,
        amount=obligation.amount,
        type=obligation.type,
        category=obligation.category,
        date=now,
        payer_id=obligation.payer_id,
        participants=[p.model_copy() for p in obligation.participants],
        notes=obligation.notes,
        client_id=obligation.client_id,
        recurring_id=obligation.id,
        created_by=created_by,
    )
