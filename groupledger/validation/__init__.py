"""Validation package."""

from groupledger.validation.shares import (
    UnbalancedSharesError,
    ensure_shares_balance,
    shares_balance,
    total_shares,
)

__all__ = [
    "UnbalancedSharesError",
    "ensure_shares_balance",
    "shares_balance",
    "total_shares",
]
