"""Consent lifecycle management - request, track and revoke aggregator consents"""

import logging
from datetime import datetime
from typing import Callable, List
from sqlalchemy.orm import Session

from bank_sync.config import settings
from bank_sync.domain.consent import (
    TERMINAL_STATUSES,
    build_consent_request,
    can_transition,
    ensure_transition,
    map_provider_status,
)
from bank_sync.domain.exceptions import ConnectionNotFound, GatewayUnavailable
from bank_sync.domain.models import (
    BankConnection,
    ConnectionStatus,
    ConsentOptions,
    ConsentResult,
    ConsentStatusResult,
)
from bank_sync.infrastructure.clients.aggregator import AggregatorClient
from bank_sync.infrastructure.database.models import BankConnectionRecord
from bank_sync.infrastructure.database.repositories import ConnectionRepository, to_domain
from bank_sync.infrastructure.observability.metrics import consent_counter
from bank_sync.utils.date_utils import ensure_utc, utc_now


class ConsentManager:
    """Drives BankConnection.status through the consent state machine"""

    def __init__(
        self,
        db: Session,
        client: AggregatorClient,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.client = client
        self.clock = clock
        self.connections = ConnectionRepository(db)

    async def create_consent_request(self, user_id: str, options: ConsentOptions | None = None) -> ConsentResult:
        """
        Submit a consent request and persist a pending connection for it.

        The row is only written once the gateway has accepted the request.

        Raises:
            GatewayUnavailable: If the gateway call fails
        """
        options = options or ConsentOptions()
        payload = build_consent_request(
            user_id,
            options,
            now=self.clock(),
            data_consumer_id=settings.data_consumer_id,
            validity_years=settings.consent_validity_years,
            history_years=settings.consent_history_years,
        )

        try:
            consent = await self.client.create_consent(payload, user_id)
        except GatewayUnavailable:
            consent_counter.labels(outcome="failed").inc()
            raise

        detail = payload["Detail"]
        self.connections.create(
            user_id=user_id,
            provider=settings.aggregator_provider,
            consent_id=consent.id,
            consent_expiry=datetime.fromisoformat(detail["consentExpiry"]),
            extra={"consent_url": consent.url, "fi_types": detail["fiTypes"]},
        )
        self.db.commit()
        consent_counter.labels(outcome="created").inc()
        logging.info("Consent requested", extra={"user_id": user_id, "consent_id": consent.id})

        return ConsentResult(id=consent.id, url=consent.url, status="PENDING")

    async def check_consent_status(self, consent_id: str) -> ConsentStatusResult:
        """
        Fold the gateway's current consent status into the registry.

        ACTIVE upserts one connection per linked account keyed by
        (consent_id, account link ref), so repeated checks never duplicate rows.
        """
        records = self.connections.list_by_consent(consent_id)
        if not records:
            raise ConnectionNotFound(f"No connection for consent {consent_id}")

        result = await self.client.get_consent_status(consent_id)
        target = map_provider_status(result.status)

        if target == ConnectionStatus.ACTIVE:
            for account in result.accounts:
                siblings = self.connections.list_by_consent(consent_id)
                existing = self.connections.match_account(siblings, account.link_ref)
                if existing is not None and not can_transition(ConnectionStatus(existing.status), target):
                    logging.warning(
                        "Ignoring ACTIVE status for closed connection",
                        extra={"connection_id": str(existing.id), "status": existing.status},
                    )
                    continue
                if existing is None and all(ConnectionStatus(r.status) in TERMINAL_STATUSES for r in siblings):
                    # Consent is closed locally; no new accounts hang off it
                    logging.warning(
                        "Ignoring new account under closed consent",
                        extra={"consent_id": consent_id, "link_ref": account.link_ref},
                    )
                    continue
                self.connections.upsert_account(consent_id, account, result.consent_handle)
        elif target is not None and target != ConnectionStatus.PENDING:
            for record in records:
                self._move_if_allowed(record, target)

        self.db.commit()
        return result

    async def handle_callback(self, consent_id: str, status: str | None) -> ConsentStatusResult:
        """Apply the approval redirect the provider sends after the user decides"""
        if status and status.upper() == "ACTIVE":
            return await self.check_consent_status(consent_id)

        records = self.connections.list_by_consent(consent_id)
        if not records:
            raise ConnectionNotFound(f"No connection for consent {consent_id}")

        received_at = self.clock().isoformat()
        for record in records:
            record.extra = {**(record.extra or {}), "callback_status": status, "callback_received_at": received_at}
            if record.status == ConnectionStatus.PENDING.value:
                self._move_if_allowed(record, ConnectionStatus.REJECTED)
        self.db.commit()
        return ConsentStatusResult(status=(status or "REJECTED").upper())

    async def disconnect(self, connection_id: str, user_id: str) -> BankConnection:
        """
        Revoke the consent behind a connection and mark it revoked.

        Local state is updated even when the remote revoke fails, so the
        registry never keeps an active row the user asked to remove.

        Raises:
            ConnectionNotFound: If the connection does not belong to the user
            InvalidStatusTransition: If the consent was never approved
        """
        record = self.connections.get_for_user(connection_id, user_id)
        if record is None:
            raise ConnectionNotFound(f"Connection {connection_id} not found")

        current = ConnectionStatus(record.status)
        if current in TERMINAL_STATUSES:
            return to_domain(record)
        ensure_transition(current, ConnectionStatus.REVOKED)

        if record.consent_id:
            try:
                await self.client.revoke_consent(record.consent_id)
            except GatewayUnavailable as e:
                logging.warning(
                    f"Remote revoke failed, revoking locally: {e}",
                    extra={"connection_id": str(record.id), "consent_id": record.consent_id},
                )
            siblings = [r for r in self.connections.list_by_consent(record.consent_id) if r.user_id == user_id]
        else:
            siblings = [record]

        for sibling in siblings:
            self._move_if_allowed(sibling, ConnectionStatus.REVOKED)
        self.db.commit()

        logging.info("Bank account disconnected", extra={"connection_id": str(record.id), "user_id": user_id})
        return to_domain(record)

    def expire_consents(self, now: datetime | None = None) -> List[BankConnection]:
        """Expire active or paused connections whose consent window has passed"""
        now = now or self.clock()
        expired = []
        for record in self.connections.list_by_status([ConnectionStatus.ACTIVE, ConnectionStatus.PAUSED]):
            expiry = ensure_utc(record.consent_expiry)
            if expiry is not None and expiry <= now:
                self._move(record, ConnectionStatus.EXPIRED)
                expired.append(to_domain(record))
        self.db.commit()
        return expired

    def list_connections(self, user_id: str) -> List[BankConnection]:
        return [to_domain(r) for r in self.connections.list_for_user(user_id)]

    def _move(self, record: BankConnectionRecord, target: ConnectionStatus) -> None:
        ensure_transition(ConnectionStatus(record.status), target)
        fields = {"status": target.value}
        # The consent handle is only valid while the connection is active
        if target != ConnectionStatus.ACTIVE:
            fields["consent_handle"] = None
        self.connections.update(record, **fields)

    def _move_if_allowed(self, record: BankConnectionRecord, target: ConnectionStatus) -> None:
        if can_transition(ConnectionStatus(record.status), target):
            self._move(record, target)
        else:
            logging.warning(
                f"Ignoring {target.value} status for connection in {record.status}",
                extra={"connection_id": str(record.id)},
            )
