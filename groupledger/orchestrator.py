"""
Application Wiring for Group Ledger

Builds the storage backends, the audit logger and the services that the
REST handlers call.

DESIGN DECISION: One storage family is chosen for the whole application.
Google Sheets when it is configured, otherwise the in-memory backend, so
groups, obligations and transactions never end up split across backends.
"""

from typing import NamedTuple, Optional

import structlog

from groupledger.audit import AuditLogger
from groupledger.groups import GroupService
from groupledger.scheduling import RecurringService
from groupledger.services.storage import (
    AuditStorageInterface,
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
    RecurringStorageInterface,
    TransactionStorageInterface,
)
from groupledger.transactions import TransactionService


logger = structlog.get_logger("groupledger.orchestrator")


class AppComponents(NamedTuple):
    group_service: GroupService
    recurring_service: RecurringService
    transaction_service: TransactionService
    audit_logger: AuditLogger
    sheets_client: Optional[GoogleSheetsClient]


def _in_memory_storages() -> tuple[
    GroupStorageInterface,
    RecurringStorageInterface,
    TransactionStorageInterface,
    AuditStorageInterface,
]:
    return (
        InMemoryGroupStorage(),
        InMemoryRecurringStorage(),
        InMemoryTransactionStorage(),
        InMemoryAuditStorage(),
    )


def create_app_components(use_storage: bool = True) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for testing without it; the in-memory
                    backend is used instead.

    Returns:
        AppComponents with services sharing one storage family and logger
    """
    sheets_client = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            group_storage = GoogleSheetsGroupStorage(sheets_client)
            recurring_storage = GoogleSheetsRecurringStorage(sheets_client)
            transaction_storage = GoogleSheetsTransactionStorage(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            (
                group_storage,
                recurring_storage,
                transaction_storage,
                audit_storage,
            ) = _in_memory_storages()
    else:
        (
            group_storage,
            recurring_storage,
            transaction_storage,
            audit_storage,
        ) = _in_memory_storages()

    audit_logger = AuditLogger(audit_storage)

    return AppComponents(
        group_service=GroupService(group_storage, audit_logger),
        recurring_service=RecurringService(
            recurring_storage,
            transaction_storage,
            group_storage,
            audit_logger,
        ),
        transaction_service=TransactionService(
            transaction_storage,
            group_storage,
            audit_logger,
        ),
        audit_logger=audit_logger,
        sheets_client=sheets_client,
    )
