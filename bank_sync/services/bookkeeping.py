"""Sync bookkeeping - watermark updates and the append-only sync log"""

from datetime import datetime
from typing import Callable
from sqlalchemy.orm import Session

from bank_sync.domain.models import BankConnection, ImportResult, SyncStatus
from bank_sync.infrastructure.database.repositories import ConnectionRepository, SyncLogRepository
from bank_sync.infrastructure.observability.logging import log_sync
from bank_sync.infrastructure.observability.metrics import record_sync
from bank_sync.utils.date_utils import ensure_utc, utc_now


class SyncBookkeeper:
    """Records the outcome of every sync attempt"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock
        self.connections = ConnectionRepository(db)
        self.sync_logs = SyncLogRepository(db)

    def record_completion(
        self,
        connection: BankConnection,
        sync_type: str,
        result: ImportResult,
        started_at: datetime,
        processing_time_ms: int,
    ) -> SyncStatus:
        """
        Advance the watermark and log a success or partial sync.

        The watermark never moves backwards: an older start time (a sync that
        began before one that already finished) leaves it untouched.
        """
        status = SyncStatus.SUCCESS if result.errors == 0 else SyncStatus.PARTIAL

        record = self.connections.get(connection.id)
        if record is not None:
            watermark = ensure_utc(record.last_synced_at)
            fields = {"last_transaction_date": self.clock().date()}
            if watermark is None or started_at > watermark:
                fields["last_synced_at"] = started_at
            self.connections.update(record, **fields)

        self.sync_logs.append(
            connection_id=connection.id,
            user_id=connection.user_id,
            sync_type=sync_type,
            status=status,
            result=result,
            processing_time_ms=processing_time_ms,
        )
        self.db.commit()

        log_sync(
            connection.id,
            connection.user_id,
            sync_type,
            status.value,
            result.imported,
            result.skipped,
            result.errors,
            processing_time_ms,
        )
        record_sync(status, sync_type, result, processing_time_ms / 1000)
        return status

    def record_failure(
        self,
        connection_id: str,
        user_id: str,
        sync_type: str,
        error: BaseException,
        processing_time_ms: int,
    ) -> None:
        """Log a failed sync; the watermark is left where it was"""
        # Discard anything the failed attempt left staged
        self.db.rollback()
        message = str(error) or error.__class__.__name__

        self.sync_logs.append(
            connection_id=connection_id,
            user_id=user_id,
            sync_type=sync_type,
            status=SyncStatus.FAILED,
            processing_time_ms=processing_time_ms,
            error_message=message,
        )
        self.db.commit()

        log_sync(str(connection_id), user_id, sync_type, SyncStatus.FAILED.value, 0, 0, 0, processing_time_ms, message)
        record_sync(SyncStatus.FAILED, sync_type, None, processing_time_ms / 1000)
