"""Consent endpoints - status checks and the provider approval redirect"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from bank_sync.api.v1.schemas import ConsentStatusResponse, LinkedAccountSchema
from bank_sync.api.dependencies import get_aggregator_client, get_request_id
from bank_sync.infrastructure.database.session import get_db
from bank_sync.infrastructure.clients.aggregator import AggregatorClient
from bank_sync.domain.exceptions import ConnectionNotFound, GatewayUnavailable
from bank_sync.domain.models import ConsentStatusResult
from bank_sync.services.consent import ConsentManager

router = APIRouter()


def _status_response(consent_id: str, result: ConsentStatusResult) -> ConsentStatusResponse:
    return ConsentStatusResponse(
        consent_id=consent_id,
        status=result.status,
        accounts=[
            LinkedAccountSchema(
                link_ref=acc.link_ref,
                fi_type=acc.fi_type,
                account_type=acc.account_type,
                masked_account_number=acc.masked_account_number,
                institution_name=acc.institution_name,
            )
            for acc in result.accounts
        ],
    )


@router.post("/consents/{consent_id}/status", response_model=ConsentStatusResponse)
async def check_consent_status(
    consent_id: str,
    request: Request,
    db: Session = Depends(get_db),
    client: AggregatorClient = Depends(get_aggregator_client),
):
    """Refresh a consent from the aggregator and link any approved accounts"""
    try:
        result = await ConsentManager(db, client).check_consent_status(consent_id)
    except ConnectionNotFound:
        raise HTTPException(status_code=404, detail="Consent not found")
    except GatewayUnavailable as e:
        db.rollback()
        logging.error(f"Consent status check failed: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=503, detail="Aggregator gateway unavailable")

    return _status_response(consent_id, result)


@router.get("/consents/callback", response_model=ConsentStatusResponse)
async def consent_callback(
    request: Request,
    consent_id: str = Query(..., alias="consentId"),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    client: AggregatorClient = Depends(get_aggregator_client),
):
    """Redirect target the provider sends the user to after they approve or reject"""
    logging.info("Consent callback received", extra={"consent_id": consent_id, "callback_status": status})

    try:
        result = await ConsentManager(db, client).handle_callback(consent_id, status)
    except ConnectionNotFound:
        raise HTTPException(status_code=404, detail="Consent not found")
    except GatewayUnavailable as e:
        db.rollback()
        logging.error(f"Consent callback failed: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=503, detail="Aggregator gateway unavailable")

    return _status_response(consent_id, result)
