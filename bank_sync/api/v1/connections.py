"""Bank connection endpoints - connect, list, sync, disconnect"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from bank_sync.api.v1.schemas import (
    ConnectionListResponse,
    ConnectionSchema,
    ConsentRequestBody,
    ConsentResponse,
    SyncLogItem,
    SyncLogResponse,
    SyncResponse,
)
from bank_sync.api.dependencies import get_aggregator_client, get_request_id, get_session_coordinator
from bank_sync.infrastructure.database.session import get_db
from bank_sync.infrastructure.database.repositories import ConnectionRepository, SyncLogRepository
from bank_sync.infrastructure.clients.aggregator import AggregatorClient
from bank_sync.domain.exceptions import (
    ConnectionNotActive,
    ConnectionNotFound,
    GatewayUnavailable,
    InvalidStatusTransition,
    SessionFailed,
    SessionTimeout,
)
from bank_sync.domain.models import BankConnection, ConsentOptions
from bank_sync.services.consent import ConsentManager
from bank_sync.services.importer import TransactionImporter
from bank_sync.services.session import SessionCoordinator

router = APIRouter()


def _connection_schema(connection: BankConnection) -> ConnectionSchema:
    return ConnectionSchema(
        id=connection.id,
        user_id=connection.user_id,
        provider=connection.provider,
        status=connection.status.value,
        consent_id=connection.consent_id,
        account_link_ref=connection.account_link_ref,
        masked_account_number=connection.masked_account_number,
        account_type=connection.account_type,
        fi_type=connection.fi_type,
        institution_name=connection.institution_name,
        consent_expiry=connection.consent_expiry,
        last_synced_at=connection.last_synced_at,
        last_transaction_date=connection.last_transaction_date,
    )


@router.post("/connections", response_model=ConsentResponse, status_code=201)
async def create_connection(
    body: ConsentRequestBody,
    request: Request,
    db: Session = Depends(get_db),
    client: AggregatorClient = Depends(get_aggregator_client),
):
    """
    Start linking a bank account.

    Returns the approval URL the user must visit to grant consent; the
    connection stays pending until the consent is approved.
    """
    request_id = get_request_id(request)
    options = ConsentOptions(
        customer_id=body.customer_id,
        fi_types=body.fi_types,
        consent_expiry=body.consent_expiry,
        data_range_from=body.data_range_from,
        data_range_to=body.data_range_to,
        fetch_type=body.fetch_type,
        frequency_unit=body.frequency_unit,
        frequency_value=body.frequency_value,
        data_life_unit=body.data_life_unit,
        data_life_value=body.data_life_value,
    )

    try:
        consent = await ConsentManager(db, client).create_consent_request(body.user_id, options)
    except GatewayUnavailable as e:
        db.rollback()
        logging.error(f"Consent request failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Aggregator gateway unavailable")

    return ConsentResponse(consent_id=consent.id, approval_url=consent.url, status=consent.status)


@router.get("/connections", response_model=ConnectionListResponse)
def list_connections(
    user_id: str = Query(..., description="User identifier"),
    db: Session = Depends(get_db),
    client: AggregatorClient = Depends(get_aggregator_client),
):
    """List a user's bank connections, newest first"""
    connections = ConsentManager(db, client).list_connections(user_id)
    return ConnectionListResponse(user_id=user_id, connections=[_connection_schema(c) for c in connections])


@router.post("/connections/{connection_id}/sync", response_model=SyncResponse)
async def sync_connection(
    connection_id: str,
    request: Request,
    user_id: str = Query(..., description="User identifier"),
    db: Session = Depends(get_db),
    coordinator: SessionCoordinator = Depends(get_session_coordinator),
):
    """
    Pull new transactions for one connection into the ledger.

    Flow:
    1. Check the connection is active
    2. Fetch data since the last sync through a polled session
    3. Import each transaction once, skipping ones already in the ledger
    4. Record the sync outcome
    """
    request_id = get_request_id(request)

    try:
        result = await TransactionImporter(db, coordinator).import_connection(connection_id, user_id)

    except ConnectionNotFound:
        raise HTTPException(status_code=404, detail="Connection not found")

    except ConnectionNotActive as e:
        raise HTTPException(status_code=409, detail=str(e))

    except GatewayUnavailable as e:
        logging.error(f"Aggregator error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Aggregator gateway unavailable")

    except SessionFailed as e:
        logging.error(f"Data fetch failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=502, detail="Bank data fetch failed")

    except SessionTimeout as e:
        logging.warning(f"Data fetch timed out: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=504, detail="Bank data fetch timed out")

    return SyncResponse(
        connection_id=connection_id,
        imported=result.imported,
        skipped=result.skipped,
        errors=result.errors,
        fetched=result.fetched,
    )


@router.delete("/connections/{connection_id}", response_model=ConnectionSchema)
async def disconnect_connection(
    connection_id: str,
    request: Request,
    user_id: str = Query(..., description="User identifier"),
    db: Session = Depends(get_db),
    client: AggregatorClient = Depends(get_aggregator_client),
):
    """Revoke the consent behind a connection"""
    try:
        connection = await ConsentManager(db, client).disconnect(connection_id, user_id)
    except ConnectionNotFound:
        raise HTTPException(status_code=404, detail="Connection not found")
    except InvalidStatusTransition as e:
        db.rollback()
        logging.warning(f"Disconnect rejected: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=409, detail=str(e))

    return _connection_schema(connection)


@router.get("/connections/{connection_id}/sync-logs", response_model=SyncLogResponse)
def get_sync_logs(
    connection_id: str,
    user_id: str = Query(..., description="User identifier"),
    db: Session = Depends(get_db),
):
    """
    Retrieve recent sync attempts for a connection.

    Returns:
        Sync log entries with counts and timings, newest first
    """
    if ConnectionRepository(db).get_for_user(connection_id, user_id) is None:
        raise HTTPException(status_code=404, detail="Connection not found")

    logs = [
        SyncLogItem(
            sync_type=log.sync_type,
            status=log.status,
            transactions_fetched=log.transactions_fetched,
            transactions_imported=log.transactions_imported,
            transactions_skipped=log.transactions_skipped,
            transactions_errored=log.transactions_errored,
            error_message=log.error_message,
            processing_time_ms=log.processing_time_ms,
            created_at=log.created_at.isoformat(),
        )
        for log in SyncLogRepository(db).list_for_connection(connection_id)
    ]

    return SyncLogResponse(connection_id=connection_id, logs=logs)
