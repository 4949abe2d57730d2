"""Transactions package."""

from groupledger.transactions.service import TransactionService

__all__ = ["TransactionService"]
