"""Data access layer for bank connections, ledger transactions and sync logs"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from bank_sync.domain.models import (
    BankConnection,
    ConnectionStatus,
    ImportResult,
    LedgerTransaction,
    LinkedAccount,
    SyncStatus,
)
from bank_sync.infrastructure.database.models import (
    BankConnectionRecord,
    LedgerTransactionRecord,
    SyncLogRecord,
)
from bank_sync.utils.date_utils import ensure_utc


def _as_uuid(value: str | uuid.UUID) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def to_domain(record: BankConnectionRecord) -> BankConnection:
    """Detach a connection row into a plain snapshot"""
    return BankConnection(
        id=str(record.id),
        user_id=record.user_id,
        provider=record.provider,
        status=ConnectionStatus(record.status),
        consent_id=record.consent_id,
        consent_handle=record.consent_handle,
        account_link_ref=record.account_link_ref,
        masked_account_number=record.masked_account_number,
        account_type=record.account_type,
        fi_type=record.fi_type,
        institution_name=record.institution_name,
        consent_expiry=ensure_utc(record.consent_expiry),
        last_synced_at=ensure_utc(record.last_synced_at),
        last_transaction_date=record.last_transaction_date,
    )


class ConnectionRepository:
    """Repository for bank connections"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, connection_id: str | uuid.UUID) -> Optional[BankConnectionRecord]:
        key = _as_uuid(connection_id)
        if key is None:
            return None
        return self.db.get(BankConnectionRecord, key)

    def get_for_user(self, connection_id: str | uuid.UUID, user_id: str) -> Optional[BankConnectionRecord]:
        """Fetch a connection only if it belongs to the given user"""
        record = self.get(connection_id)
        if record is None or record.user_id != user_id:
            return None
        return record

    def list_for_user(self, user_id: str) -> List[BankConnectionRecord]:
        return (
            self.db.query(BankConnectionRecord)
            .filter(BankConnectionRecord.user_id == user_id)
            .order_by(BankConnectionRecord.created_at.desc())
            .all()
        )

    def list_by_consent(self, consent_id: str) -> List[BankConnectionRecord]:
        return (
            self.db.query(BankConnectionRecord)
            .filter(BankConnectionRecord.consent_id == consent_id)
            .all()
        )

    def list_by_status(self, statuses: List[ConnectionStatus], user_id: str | None = None) -> List[BankConnectionRecord]:
        query = self.db.query(BankConnectionRecord).filter(
            BankConnectionRecord.status.in_([s.value for s in statuses])
        )
        if user_id is not None:
            query = query.filter(BankConnectionRecord.user_id == user_id)
        return query.all()

    def create(
        self,
        user_id: str,
        provider: str,
        consent_id: str,
        consent_expiry: datetime | None,
        extra: Dict[str, Any] | None = None,
    ) -> BankConnectionRecord:
        """Persist a pending connection for a freshly requested consent"""
        record = BankConnectionRecord(
            user_id=user_id,
            provider=provider,
            status=ConnectionStatus.PENDING.value,
            consent_id=consent_id,
            consent_expiry=consent_expiry,
            extra=extra or {},
        )
        self.db.add(record)
        self.db.flush()  # Get ID without committing
        return record

    def match_account(
        self,
        siblings: List[BankConnectionRecord],
        link_ref: str,
    ) -> Optional[BankConnectionRecord]:
        """Row an account maps onto: its own row, else the unclaimed placeholder"""
        record = next((r for r in siblings if r.account_link_ref == link_ref), None)
        if record is None:
            record = next((r for r in siblings if r.account_link_ref is None), None)
        return record

    def upsert_account(
        self,
        consent_id: str,
        account: LinkedAccount,
        consent_handle: str | None,
    ) -> BankConnectionRecord:
        """
        Insert or update the connection keyed by (consent_id, account link ref).

        The pending placeholder created with the consent request is claimed by
        the first linked account; further accounts get rows of their own.
        """
        siblings = self.list_by_consent(consent_id)
        record = self.match_account(siblings, account.link_ref)
        if record is None:
            template = siblings[0]
            record = BankConnectionRecord(
                user_id=template.user_id,
                provider=template.provider,
                consent_id=consent_id,
                consent_expiry=template.consent_expiry,
                extra=dict(template.extra or {}),
            )
            self.db.add(record)

        record.status = ConnectionStatus.ACTIVE.value
        record.consent_handle = consent_handle
        record.account_link_ref = account.link_ref
        record.masked_account_number = account.masked_account_number
        record.account_type = account.account_type
        record.fi_type = account.fi_type
        record.institution_name = account.institution_name
        self.db.flush()
        return record

    def update(self, record: BankConnectionRecord, **fields: Any) -> BankConnectionRecord:
        for name, value in fields.items():
            setattr(record, name, value)
        self.db.flush()
        return record


class TransactionRepository:
    """Repository for imported ledger transactions"""

    def __init__(self, db: Session):
        self.db = db

    def find_by_external_id(self, user_id: str, external_id: str) -> Optional[LedgerTransactionRecord]:
        return (
            self.db.query(LedgerTransactionRecord)
            .filter(
                LedgerTransactionRecord.user_id == user_id,
                LedgerTransactionRecord.external_txn_id == external_id,
            )
            .first()
        )

    def insert(self, txn: LedgerTransaction) -> LedgerTransactionRecord:
        """
        Stage a ledger transaction and flush it.

        Raises:
            sqlalchemy.exc.IntegrityError: If (user_id, external_txn_id) already exists
        """
        record = LedgerTransactionRecord(
            user_id=txn.user_id,
            name=txn.name,
            amount=txn.amount,
            type=txn.type,
            date=txn.date,
            merchant=txn.merchant,
            source_account_name=txn.source_account_name,
            source_account_type=txn.source_account_type,
            description=txn.description,
            external_txn_id=txn.external_txn_id,
            extra=txn.metadata,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def list_for_user(self, user_id: str) -> List[LedgerTransactionRecord]:
        return (
            self.db.query(LedgerTransactionRecord)
            .filter(LedgerTransactionRecord.user_id == user_id)
            .order_by(LedgerTransactionRecord.date.desc())
            .all()
        )


class SyncLogRepository:
    """Append-only repository for sync audit rows"""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        connection_id: str,
        user_id: str,
        sync_type: str,
        status: SyncStatus,
        result: ImportResult | None = None,
        processing_time_ms: int | None = None,
        error_message: str | None = None,
    ) -> SyncLogRecord:
        result = result or ImportResult()
        record = SyncLogRecord(
            connection_id=str(connection_id),
            user_id=user_id,
            sync_type=sync_type,
            status=status.value,
            transactions_fetched=result.fetched,
            transactions_imported=result.imported,
            transactions_skipped=result.skipped,
            transactions_errored=result.errors,
            error_message=error_message,
            processing_time_ms=processing_time_ms,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def list_for_connection(self, connection_id: str, limit: int = 20) -> List[SyncLogRecord]:
        """Fetch recent sync logs for a connection, newest first"""
        return (
            self.db.query(SyncLogRecord)
            .filter(SyncLogRecord.connection_id == str(connection_id))
            .order_by(SyncLogRecord.created_at.desc())
            .limit(limit)
            .all()
        )
