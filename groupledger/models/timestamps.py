"""
Timestamp normalization

Models and the scheduler store naive UTC datetimes. Aware values coming
from callers are converted on the way in so comparisons never mix the two.
"""

from datetime import datetime, timezone
from typing import Optional


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
