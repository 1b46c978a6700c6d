"""Scheduled sync - run every active connection through the importer"""

import asyncio
import logging
from typing import Callable, Dict, List, Tuple, Union
from sqlalchemy.orm import Session

from bank_sync.domain.models import ConnectionStatus, ImportResult
from bank_sync.infrastructure.clients.aggregator import AggregatorClient
from bank_sync.infrastructure.database.repositories import ConnectionRepository
from bank_sync.services.consent import ConsentManager
from bank_sync.services.importer import TransactionImporter
from bank_sync.services.session import SessionCoordinator

SyncOutcome = Union[ImportResult, BaseException]


class ScheduledSync:
    """
    Periodic sync runner.

    Each connection gets its own database session so independent connections
    can be synced in parallel without sharing transaction state.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        client: AggregatorClient,
        coordinator: SessionCoordinator | None = None,
    ):
        self.session_factory = session_factory
        self.client = client
        self.coordinator = coordinator or SessionCoordinator(client)

    async def sync_user(self, user_id: str) -> Dict[str, SyncOutcome]:
        """Sync every active connection of one user"""
        return await self._sync_many(self._active_connections(user_id))

    async def sync_all(self) -> Dict[str, SyncOutcome]:
        """Expire lapsed consents, then sync every active connection"""
        db = self.session_factory()
        try:
            expired = ConsentManager(db, self.client).expire_consents()
        finally:
            db.close()
        if expired:
            logging.info("Expired lapsed consents", extra={"expired_count": len(expired)})

        return await self._sync_many(self._active_connections(None))

    def _active_connections(self, user_id: str | None) -> List[Tuple[str, str]]:
        db = self.session_factory()
        try:
            records = ConnectionRepository(db).list_by_status([ConnectionStatus.ACTIVE], user_id=user_id)
            return [(str(r.id), r.user_id) for r in records]
        finally:
            db.close()

    async def _sync_many(self, targets: List[Tuple[str, str]]) -> Dict[str, SyncOutcome]:
        outcomes = await asyncio.gather(
            *(self._sync_one(connection_id, user_id) for connection_id, user_id in targets),
            return_exceptions=True,
        )
        results = dict(zip((connection_id for connection_id, _ in targets), outcomes))

        failed = sum(1 for outcome in outcomes if isinstance(outcome, BaseException))
        logging.info(
            "Scheduled sync finished",
            extra={"connections": len(targets), "failed": failed},
        )
        return results

    async def _sync_one(self, connection_id: str, user_id: str) -> ImportResult:
        db = self.session_factory()
        try:
            importer = TransactionImporter(db, self.coordinator)
            return await importer.import_connection(connection_id, user_id, sync_type="scheduled")
        finally:
            db.close()
