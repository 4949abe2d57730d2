"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Implements Google Sheets and in-memory backends behind the same interfaces.
"""

from groupledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GroupStorageInterface,
    NotFoundError,
    RecurringStorageInterface,
    StorageError,
    TransactionStorageInterface,
)
from groupledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryGroupStorage,
    InMemoryRecurringStorage,
    InMemoryTransactionStorage,
)
from groupledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsGroupStorage,
    GoogleSheetsRecurringStorage,
    GoogleSheetsTransactionStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "GroupStorageInterface",
    "RecurringStorageInterface",
    "TransactionStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryGroupStorage",
    "InMemoryRecurringStorage",
    "InMemoryTransactionStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsGroupStorage",
    "GoogleSheetsRecurringStorage",
    "GoogleSheetsTransactionStorage",
]
