"""Transaction import - pull aggregator data for a connection into the ledger exactly once"""

import asyncio
import logging
import time
import weakref
from datetime import datetime
from typing import Callable, List
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from bank_sync.config import settings
from bank_sync.domain.exceptions import ConnectionNotActive, ConnectionNotFound
from bank_sync.domain.models import (
    AccountData,
    BankConnection,
    ConnectionStatus,
    ExternalTransaction,
    ImportResult,
    LedgerTransaction,
)
from bank_sync.domain.narration import extract_merchant, parse_transaction_name
from bank_sync.infrastructure.database.repositories import (
    ConnectionRepository,
    TransactionRepository,
    to_domain,
)
from bank_sync.services.bookkeeping import SyncBookkeeper
from bank_sync.services.session import SessionCoordinator
from bank_sync.utils.date_utils import trailing_window_start, utc_now


class ConnectionLocks:
    """One asyncio.Lock per connection id, dropped once nobody holds or waits on it"""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_connection(self, connection_id: str) -> asyncio.Lock:
        key = str(connection_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


# Shared by every importer in the process so API requests and scheduled runs serialise per connection
connection_locks = ConnectionLocks()


def build_ledger_transaction(
    connection: BankConnection,
    txn: ExternalTransaction,
    provider: str,
) -> LedgerTransaction:
    """Map an external transaction onto the ledger schema with full provenance"""
    return LedgerTransaction(
        user_id=connection.user_id,
        name=parse_transaction_name(txn.narration),
        amount=txn.amount,
        type="income" if txn.type == "CREDIT" else "expense",
        date=txn.value_date,
        external_txn_id=txn.txn_id,
        merchant=extract_merchant(txn.narration),
        source_account_name=connection.institution_name or "Bank Account",
        source_account_type=(connection.account_type or "").lower() or None,
        description=txn.narration,
        metadata={
            "source": "aggregator",
            "provider": provider,
            "connection_id": connection.id,
            "external_txn_id": txn.txn_id,
            "transaction_mode": txn.mode,
            "reference": txn.reference,
            "balance_after": str(txn.current_balance) if txn.current_balance is not None else None,
            "masked_account": connection.masked_account_number,
            "transaction_timestamp": txn.transaction_timestamp,
        },
    )


class TransactionImporter:
    """Imports one connection's fetched transactions and books the outcome"""

    def __init__(
        self,
        db: Session,
        coordinator: SessionCoordinator,
        bookkeeper: SyncBookkeeper | None = None,
        locks: ConnectionLocks | None = None,
        clock: Callable[[], datetime] = utc_now,
        window_days: int | None = None,
    ):
        self.db = db
        self.coordinator = coordinator
        self.bookkeeper = bookkeeper or SyncBookkeeper(db, clock=clock)
        self.locks = locks or connection_locks
        self.clock = clock
        self.window_days = window_days if window_days is not None else settings.default_sync_window_days
        self.connections = ConnectionRepository(db)
        self.transactions = TransactionRepository(db)

    async def import_connection(
        self,
        connection_id: str,
        user_id: str,
        sync_type: str = "manual",
        deadline: float | None = None,
    ) -> ImportResult:
        """
        Sync one connection: fetch new data, import it, record the outcome.

        Syncs of the same connection never overlap; a second caller waits for
        the first to finish and then finds everything already imported.

        Raises:
            ConnectionNotFound: Connection missing or owned by another user
            ConnectionNotActive: Consent is not active
            SessionFailed, SessionTimeout, GatewayUnavailable: Fetch failed
        """
        async with self.locks.for_connection(connection_id):
            return await self._sync(str(connection_id), user_id, sync_type, deadline)

    async def _sync(self, connection_id: str, user_id: str, sync_type: str, deadline: float | None) -> ImportResult:
        started_at = self.clock()
        start_time = time.monotonic()

        try:
            connection = self._load_active_connection(connection_id, user_id)
            range_from = connection.last_synced_at or trailing_window_start(started_at, self.window_days)
            accounts = await self.coordinator.fetch_account_data(
                connection.consent_id,
                range_from=range_from,
                range_to=started_at,
                deadline=deadline,
            )
            result = self._import_accounts(connection, accounts)

        except (Exception, asyncio.CancelledError) as e:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            try:
                self.bookkeeper.record_failure(connection_id, user_id, sync_type, e, duration_ms)
            except SQLAlchemyError:
                logging.exception("Could not write failed sync log", extra={"connection_id": connection_id})
            raise

        duration_ms = int((time.monotonic() - start_time) * 1000)
        try:
            self.bookkeeper.record_completion(connection, sync_type, result, started_at, duration_ms)
        except SQLAlchemyError as e:
            logging.error(
                f"Could not record completed sync: {e}",
                extra={
                    "connection_id": connection_id,
                    "imported": result.imported,
                    "skipped": result.skipped,
                    "errors": result.errors,
                },
            )
            try:
                self.bookkeeper.record_failure(connection_id, user_id, sync_type, e, duration_ms)
            except SQLAlchemyError:
                logging.exception("Could not write failed sync log", extra={"connection_id": connection_id})
            raise
        return result

    def _load_active_connection(self, connection_id: str, user_id: str) -> BankConnection:
        record = self.connections.get_for_user(connection_id, user_id)
        if record is None:
            raise ConnectionNotFound("Bank connection not found")

        connection = to_domain(record)
        if connection.status != ConnectionStatus.ACTIVE:
            raise ConnectionNotActive(f"Bank connection is {connection.status.value}, not active")
        return connection

    def _import_accounts(self, connection: BankConnection, accounts: List[AccountData]) -> ImportResult:
        result = ImportResult()

        for account in accounts:
            if account.link_ref != connection.account_link_ref:
                continue  # Another account under the same consent

            result.fetched += len(account.transactions) + account.malformed
            result.errors += account.malformed

            for txn in account.transactions:
                self._import_one(connection, txn, result)

        return result

    def _import_one(self, connection: BankConnection, txn: ExternalTransaction, result: ImportResult) -> None:
        """Import a single transaction; failures are counted, never raised"""
        try:
            if self.transactions.find_by_external_id(connection.user_id, txn.txn_id) is not None:
                result.skipped += 1
                return

            self.transactions.insert(build_ledger_transaction(connection, txn, connection.provider))
            self.db.commit()
            result.imported += 1

        except IntegrityError as e:
            self.db.rollback()
            # Lost a race with a concurrent import of the same transaction
            if self.transactions.find_by_external_id(connection.user_id, txn.txn_id) is not None:
                result.skipped += 1
                return
            result.errors += 1
            logging.error(
                f"Failed to import transaction: {e}",
                extra={"connection_id": connection.id, "external_txn_id": txn.txn_id},
            )

        except Exception as e:
            self.db.rollback()
            result.errors += 1
            logging.error(
                f"Failed to import transaction: {e}",
                extra={"connection_id": connection.id, "external_txn_id": txn.txn_id},
            )
