"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is a supported storage backend because:
1. Small groups can view and export their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (we're fine for household/small business use)
- No transactions. Invite key uniqueness and execution claims are
  read-check-write here, which narrows but does not close the race window
  between two concurrent writers. Deployments with concurrent writers should
  use a backend with real constraints.
- Limited query capabilities (we filter in Python)

Nested fields (members, participants, tags) are stored as JSON in one cell.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from groupledger.config import get_settings
from groupledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from groupledger.models.group import Group
from groupledger.models.recurring import Frequency, RecurringObligation
from groupledger.models.transaction import (
    Participant,
    Transaction,
    TransactionStatus,
    TransactionType,
)
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


GROUP_COLUMNS = [
    "id",
    "name",
    "currency",
    "tax_rate",
    "owner_id",
    "invite_key",
    "created_at",
    "updated_at",
    "members_json",
]

RECURRING_COLUMNS = [
    "id",
    "group_id",
    "title",
    "amount",
    "type",
    "category",
    "frequency",
    "start_date",
    "end_date",
    "last_processed",
    "payer_id",
    "participants_json",
    "notes",
    "is_active",
    "client_id",
    "created_at",
    "updated_at",
]

TRANSACTION_COLUMNS = [
    "id",
    "group_id",
    "description",
    "amount",
    "type",
    "category",
    "date",
    "payer_id",
    "participants_json",
    "notes",
    "status",
    "tags_json",
    "client_id",
    "recurring_id",
    "created_by",
    "created_at",
    "updated_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "actor_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

# Column index (1-based) of last_processed in the Recurring sheet
_LAST_PROCESSED_COL = RECURRING_COLUMNS.index("last_processed") + 1
_RECURRING_UPDATED_AT_COL = RECURRING_COLUMNS.index("updated_at") + 1

# Constraint violations are answers, not transient failures
_sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
    reraise=True,
)


def _safe_getter(row: list):
    """Return a reader that tolerates short rows and empty cells."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


def _iso_or_blank(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


def _parse_datetime(value: str) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _participants_to_json(participants: list[Participant]) -> str:
    return json.dumps([
        {"user_id": p.user_id, "share": str(p.share)} for p in participants
    ])


def _participants_from_json(value: str) -> list[Participant]:
    if not value:
        return []
    return [Participant(**item) for item in json.loads(value)]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_groups_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.groups_sheet_name, GROUP_COLUMNS
        )

    def get_recurring_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.recurring_sheet_name, RECURRING_COLUMNS
        )

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


def _find_row(sheet: gspread.Worksheet, entity_id: UUID) -> tuple[Optional[int], Optional[list]]:
    """Locate a row by the id in column A. Returns (1-based index, row)."""
    all_rows = sheet.get_all_values()
    for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
        if row and row[0] == str(entity_id):
            return idx, row
    return None, None


def _write_row(sheet: gspread.Worksheet, idx: int, values: list) -> None:
    for col_idx, value in enumerate(values, start=1):
        sheet.update_cell(idx, col_idx, value)


class GoogleSheetsGroupStorage(GroupStorageInterface):
    """
    Google Sheets implementation of group storage.

    One group per row; the member list is JSON in the last column.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _group_to_row(self, group: Group) -> list:
        return [
            str(group.id),
            group.name,
            group.currency.value,
            str(group.tax_rate),
            group.owner_id,
            group.invite_key,
            group.created_at.isoformat(),
            group.updated_at.isoformat(),
            json.dumps([m.model_dump(mode="json") for m in group.member_list]),
        ]

    def _row_to_group(self, row: list) -> Group:
        safe_get = _safe_getter(row)
        members_json = safe_get(8)
        return Group(
            id=UUID(safe_get(0)),
            name=safe_get(1),
            currency=safe_get(2),
            tax_rate=Decimal(safe_get(3, "0")),
            owner_id=safe_get(4),
            invite_key=safe_get(5),
            created_at=datetime.fromisoformat(safe_get(6)),
            updated_at=datetime.fromisoformat(safe_get(7)),
            members=json.loads(members_json) if members_json else [],
        )

    def _all_groups(self) -> list[Group]:
        sheet = self._client.get_groups_sheet()
        groups = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                groups.append(self._row_to_group(row))
            except Exception:
                continue  # Skip malformed rows
        return groups

    def _key_owner(self, invite_key: str) -> Optional[UUID]:
        sheet = self._client.get_groups_sheet()
        for row in sheet.get_all_values()[1:]:
            if len(row) > 5 and row[5] == invite_key:
                return UUID(row[0])
        return None

    @_sheets_retry
    async def save_group(self, group: Group) -> bool:
        try:
            sheet = self._client.get_groups_sheet()
            idx, _ = _find_row(sheet, group.id)
            if idx is not None:
                raise DuplicateError(f"Group already exists: {group.id}")
            if self._key_owner(group.invite_key) is not None:
                raise DuplicateError(f"Invite key already in use: {group.invite_key}")

            sheet.append_row(self._group_to_row(group), value_input_option="RAW")
            return True
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save group: {e}")

    async def get_group_by_id(self, group_id: UUID) -> Optional[Group]:
        try:
            sheet = self._client.get_groups_sheet()
            _, row = _find_row(sheet, group_id)
            return self._row_to_group(row) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get group: {e}")

    async def get_group_by_invite_key(self, invite_key: str) -> Optional[Group]:
        try:
            group_id = self._key_owner(invite_key.strip().upper())
        except Exception as e:
            raise StorageError(f"Failed to look up invite key: {e}")
        if group_id is None:
            return None
        return await self.get_group_by_id(group_id)

    @_sheets_retry
    async def update_group(self, group: Group) -> bool:
        try:
            sheet = self._client.get_groups_sheet()
            idx, _ = _find_row(sheet, group.id)
            if idx is None:
                raise NotFoundError(f"Group not found: {group.id}")

            key_owner = self._key_owner(group.invite_key)
            if key_owner is not None and key_owner != group.id:
                raise DuplicateError(f"Invite key already in use: {group.invite_key}")

            _write_row(sheet, idx, self._group_to_row(group))
            return True
        except (NotFoundError, DuplicateError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to update group: {e}")

    async def delete_group(self, group_id: UUID) -> bool:
        try:
            sheet = self._client.get_groups_sheet()
            idx, _ = _find_row(sheet, group_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete group: {e}")

    async def list_groups_for_user(self, user_id: str) -> list[Group]:
        try:
            groups = [g for g in self._all_groups() if g.is_member(user_id)]
        except Exception as e:
            raise StorageError(f"Failed to list groups: {e}")
        groups.sort(key=lambda g: g.created_at, reverse=True)
        return groups

    async def invite_key_exists(self, invite_key: str) -> bool:
        try:
            return self._key_owner(invite_key.strip().upper()) is not None
        except Exception as e:
            raise StorageError(f"Failed to look up invite key: {e}")


class GoogleSheetsRecurringStorage(RecurringStorageInterface):
    """Google Sheets implementation of recurring obligation storage."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _obligation_to_row(self, obligation: RecurringObligation) -> list:
        return [
            str(obligation.id),
            str(obligation.group_id),
            obligation.title,
            str(obligation.amount),
            obligation.type.value,
            obligation.category,
            obligation.frequency.value,
            obligation.start_date.isoformat(),
            _iso_or_blank(obligation.end_date),
            _iso_or_blank(obligation.last_processed),
            obligation.payer_id,
            _participants_to_json(obligation.participants),
            obligation.notes or "",
            str(obligation.is_active),
            obligation.client_id or "",
            obligation.created_at.isoformat(),
            obligation.updated_at.isoformat(),
        ]

    def _row_to_obligation(self, row: list) -> RecurringObligation:
        safe_get = _safe_getter(row)
        return RecurringObligation(
            id=UUID(safe_get(0)),
            group_id=UUID(safe_get(1)),
            title=safe_get(2),
            amount=Decimal(safe_get(3)),
            type=TransactionType(safe_get(4)),
            category=safe_get(5),
            frequency=Frequency(safe_get(6)),
            start_date=datetime.fromisoformat(safe_get(7)),
            end_date=_parse_datetime(safe_get(8)),
            last_processed=_parse_datetime(safe_get(9)),
            payer_id=safe_get(10),
            participants=_participants_from_json(safe_get(11)),
            notes=safe_get(12) or None,
            is_active=safe_get(13, "True").lower() == "true",
            client_id=safe_get(14) or None,
            created_at=datetime.fromisoformat(safe_get(15)),
            updated_at=datetime.fromisoformat(safe_get(16)),
        )

    @_sheets_retry
    async def save_obligation(self, obligation: RecurringObligation) -> bool:
        try:
            sheet = self._client.get_recurring_sheet()
            idx, _ = _find_row(sheet, obligation.id)
            if idx is not None:
                raise DuplicateError(f"Recurring obligation already exists: {obligation.id}")
            sheet.append_row(self._obligation_to_row(obligation), value_input_option="RAW")
            return True
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save recurring obligation: {e}")

    async def get_obligation_by_id(
        self,
        obligation_id: UUID,
    ) -> Optional[RecurringObligation]:
        try:
            sheet = self._client.get_recurring_sheet()
            _, row = _find_row(sheet, obligation_id)
            return self._row_to_obligation(row) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get recurring obligation: {e}")

    @_sheets_retry
    async def update_obligation(self, obligation: RecurringObligation) -> bool:
        try:
            sheet = self._client.get_recurring_sheet()
            idx, _ = _find_row(sheet, obligation.id)
            if idx is None:
                raise NotFoundError(f"Recurring obligation not found: {obligation.id}")
            _write_row(sheet, idx, self._obligation_to_row(obligation))
            return True
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update recurring obligation: {e}")

    async def delete_obligation(self, obligation_id: UUID) -> bool:
        try:
            sheet = self._client.get_recurring_sheet()
            idx, _ = _find_row(sheet, obligation_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete recurring obligation: {e}")

    async def list_obligations(
        self,
        group_ids: list[UUID],
        is_active: Optional[bool] = None,
        frequency: Optional[Frequency] = None,
    ) -> list[RecurringObligation]:
        wanted = {str(g) for g in group_ids}
        try:
            sheet = self._client.get_recurring_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list recurring obligations: {e}")

        results = []
        for row in all_rows:
            if not row or len(row) < 2 or row[1] not in wanted:
                continue
            try:
                obligation = self._row_to_obligation(row)
            except Exception:
                continue  # Skip malformed rows
            if is_active is not None and obligation.is_active != is_active:
                continue
            if frequency is not None and obligation.frequency != frequency:
                continue
            results.append(obligation)

        results.sort(key=lambda o: o.created_at, reverse=True)
        return results

    async def claim_execution(
        self,
        obligation_id: UUID,
        expected_last_processed: Optional[datetime],
        processed_at: Optional[datetime],
    ) -> bool:
        try:
            sheet = self._client.get_recurring_sheet()
            idx, row = _find_row(sheet, obligation_id)
        except Exception as e:
            raise StorageError(f"Failed to claim recurring execution: {e}")
        if idx is None:
            raise NotFoundError(f"Recurring obligation not found: {obligation_id}")

        current = _parse_datetime(_safe_getter(row)(_LAST_PROCESSED_COL - 1))
        if current != expected_last_processed:
            return False

        try:
            sheet.update_cell(idx, _LAST_PROCESSED_COL, _iso_or_blank(processed_at))
            sheet.update_cell(idx, _RECURRING_UPDATED_AT_COL, datetime.utcnow().isoformat())
        except Exception as e:
            raise StorageError(f"Failed to claim recurring execution: {e}")
        return True


class GoogleSheetsTransactionStorage(TransactionStorageInterface):
    """Google Sheets implementation of transaction storage."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _transaction_to_row(self, transaction: Transaction) -> list:
        return [
            str(transaction.id),
            str(transaction.group_id),
            transaction.description,
            str(transaction.amount),
            transaction.type.value,
            transaction.category,
            transaction.date.isoformat(),
            transaction.payer_id,
            _participants_to_json(transaction.participants),
            transaction.notes or "",
            transaction.status.value,
            json.dumps(transaction.tags),
            transaction.client_id or "",
            str(transaction.recurring_id) if transaction.recurring_id else "",
            transaction.created_by or "",
            transaction.created_at.isoformat(),
            transaction.updated_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> Transaction:
        safe_get = _safe_getter(row)
        return Transaction(
            id=UUID(safe_get(0)),
            group_id=UUID(safe_get(1)),
            description=safe_get(2),
            amount=Decimal(safe_get(3)),
            type=TransactionType(safe_get(4)),
            category=safe_get(5),
            date=datetime.fromisoformat(safe_get(6)),
            payer_id=safe_get(7),
            participants=_participants_from_json(safe_get(8)),
            notes=safe_get(9) or None,
            status=TransactionStatus(safe_get(10, "completed")),
            tags=json.loads(safe_get(11, "[]")),
            client_id=safe_get(12) or None,
            recurring_id=UUID(safe_get(13)) if safe_get(13) else None,
            created_by=safe_get(14) or None,
            created_at=datetime.fromisoformat(safe_get(15)),
            updated_at=datetime.fromisoformat(safe_get(16)),
        )

    @_sheets_retry
    async def save_transaction(self, transaction: Transaction) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            sheet.append_row(self._transaction_to_row(transaction), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    async def get_transaction_by_id(
        self,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        try:
            sheet = self._client.get_transactions_sheet()
            _, row = _find_row(sheet, transaction_id)
            return self._row_to_transaction(row) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def list_transactions(
        self,
        group_id: UUID,
        recurring_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

        results = []
        for row in all_rows:
            if not row or len(row) < 2 or row[1] != str(group_id):
                continue
            try:
                transaction = self._row_to_transaction(row)
            except Exception:
                continue  # Skip malformed rows
            if recurring_id is not None and transaction.recurring_id != recurring_id:
                continue
            results.append(transaction)

        results.sort(key=lambda t: t.date, reverse=True)
        return results


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        safe_get = _safe_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            actor_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _read_events(self, predicate) -> list[AuditEvent]:
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0] or not predicate(row):
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception:
                continue
        return events

    @_sheets_retry
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = self._read_events(
            lambda row: len(row) > 7 and row[7] == str(correlation_id)
        )
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = self._read_events(
            lambda row: len(row) > 5 and row[4] == entity_type and row[5] == str(entity_id)
        )
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._read_events(lambda row: True)
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
