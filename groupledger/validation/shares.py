"""
Participant Share Validation

A split transaction (or recurring obligation) lists how much each
participant carries. The shares must reconstruct the total amount.

DESIGN DECISION: The tolerance is a fixed absolute amount (0.01 by default),
not a percentage. It absorbs rounding from clients that compute shares in
floating point. On very large amounts a fixed tolerance is proportionally
stricter; that is intended.

IMPORTANT: Storage does not enforce this. Every write path that accepts
participants must call ensure_shares_balance before persisting.
"""

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any, Optional, Union

from groupledger.config import get_settings


Number = Union[Decimal, int, float, str]


class UnbalancedSharesError(ValueError):
    """Participant shares do not add up to the amount."""

    http_status = 400

    def __init__(self, amount: Decimal, total: Decimal):
        self.amount = amount
        self.total = total
        self.difference = abs(total - amount)
        super().__init__(
            f"Total participant shares ({total}) must equal the amount ({amount})"
        )


def _to_decimal(value: Number) -> Decimal:
    # str() first so 33.34 stays 33.34 instead of its binary expansion
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _share_of(participant: Any) -> Decimal:
    if isinstance(participant, Mapping):
        return _to_decimal(participant["share"])
    return _to_decimal(participant.share)


def total_shares(participants: Iterable[Any]) -> Decimal:
    """
    Sum participant shares.

    Participants may be Participant models, mappings with a "share" key,
    or any object with a share attribute.
    """
    return sum((_share_of(p) for p in participants), Decimal("0"))


def shares_balance(
    amount: Number,
    participants: Iterable[Any],
    tolerance: Optional[Number] = None,
) -> bool:
    """
    Check that shares reconstruct the amount.

    Returns True iff |sum(shares) - amount| < tolerance.
    An empty participant list sums to zero, so it only balances a zero amount.
    """
    if tolerance is None:
        tolerance = get_settings().app.share_tolerance
    difference = abs(total_shares(participants) - _to_decimal(amount))
    return difference < _to_decimal(tolerance)


def ensure_shares_balance(
    amount: Number,
    participants: Iterable[Any],
    tolerance: Optional[Number] = None,
) -> Decimal:
    """
    Raise UnbalancedSharesError unless shares reconstruct the amount.

    Returns the share total on success.
    """
    participants = list(participants)
    total = total_shares(participants)
    if not shares_balance(amount, participants, tolerance):
        raise UnbalancedSharesError(_to_decimal(amount), total)
    return total
