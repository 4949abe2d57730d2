"""Services package."""

from groupledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsGroupStorage,
    GoogleSheetsRecurringStorage,
    GoogleSheetsTransactionStorage,
    GroupStorageInterface,
    InMemoryAuditStorage,
    InMemoryGroupStorage,
    InMemoryRecurringStorage,
    InMemoryTransactionStorage,
    NotFoundError,
    RecurringStorageInterface,
    StorageError,
    TransactionStorageInterface,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsGroupStorage",
    "GoogleSheetsRecurringStorage",
    "GoogleSheetsTransactionStorage",
    "GroupStorageInterface",
    "InMemoryAuditStorage",
    "InMemoryGroupStorage",
    "InMemoryRecurringStorage",
    "InMemoryTransactionStorage",
    "NotFoundError",
    "RecurringStorageInterface",
    "StorageError",
    "TransactionStorageInterface",
]
