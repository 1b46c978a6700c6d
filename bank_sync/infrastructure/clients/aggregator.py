"""Aggregator gateway HTTP client for consent and data-fetch session calls"""

import logging
import httpx
from decimal import Decimal
from datetime import datetime
from typing import Any, Dict, Optional

from bank_sync.config import settings
from bank_sync.domain.exceptions import GatewayUnavailable
from bank_sync.domain.models import (
    AccountData,
    ConsentResult,
    ConsentStatusResult,
    DataFetchSession,
    ExternalTransaction,
    LinkedAccount,
    SessionStatus,
)
from bank_sync.infrastructure.observability.metrics import gateway_failure_counter
from bank_sync.utils.date_utils import parse_value_date

# Provider session status -> local session status; unknown values keep polling
SESSION_STATUS_MAP = {
    "COMPLETED": SessionStatus.COMPLETED,
    "PARTIAL": SessionStatus.COMPLETED,
    "FAILED": SessionStatus.FAILED,
    "EXPIRED": SessionStatus.FAILED,
}


class AggregatorClient:
    """
    Client for the aggregator gateway.

    Every operation is a JSON POST to a server-side function that holds the
    provider credentials, so nothing secret lives in this process beyond the
    gateway key.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.aggregator_gateway_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.aggregator_gateway_key
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def create_consent(self, consent_request: Dict[str, Any], user_id: str) -> ConsentResult:
        data = await self._invoke("setu-create-consent", {"consentRequest": consent_request, "userId": user_id})
        try:
            return ConsentResult(id=data["id"], url=data["url"], status=data.get("status") or "PENDING")
        except (KeyError, TypeError) as e:
            raise GatewayUnavailable(f"Invalid consent response from gateway: {e}") from e

    async def get_consent_status(self, consent_id: str) -> ConsentStatusResult:
        data = await self._invoke("setu-check-consent", {"consentId": consent_id})
        try:
            accounts = [
                LinkedAccount(
                    link_ref=acc["linkRefNumber"],
                    fi_type=acc.get("FIType") or "DEPOSIT",
                    account_type=acc.get("accType") or "SAVINGS",
                    masked_account_number=acc.get("maskedAccNumber") or "",
                    institution_name=acc.get("institutionName"),
                )
                for acc in data.get("Accounts") or []
            ]
            status = data["status"]
            consent_handle = data.get("consentHandle")
        except (KeyError, TypeError, AttributeError) as e:
            raise GatewayUnavailable(f"Invalid consent status from gateway: {e}") from e

        # An active consent is only usable for fetches through its handle
        if str(status).upper() == "ACTIVE" and not consent_handle:
            raise GatewayUnavailable(f"Invalid consent status from gateway: ACTIVE consent {consent_id} has no consentHandle")

        return ConsentStatusResult(status=status, accounts=accounts, consent_handle=consent_handle)

    async def create_session(self, consent_id: str, range_from: datetime, range_to: datetime) -> str:
        """Open a data-fetch session and return the provider session id"""
        data = await self._invoke(
            "setu-create-session",
            {
                "consentId": consent_id,
                "dataRange": {"from": range_from.isoformat(), "to": range_to.isoformat()},
                "format": "json",
            },
        )
        try:
            return str(data["id"])
        except (KeyError, TypeError) as e:
            raise GatewayUnavailable(f"Invalid session response from gateway: {e}") from e

    async def get_session(self, session_id: str) -> DataFetchSession:
        data = await self._invoke("setu-get-session", {"sessionId": session_id})
        try:
            status = SESSION_STATUS_MAP.get(str(data["status"]).upper(), SessionStatus.PENDING)
            accounts = []
            if status == SessionStatus.COMPLETED:
                accounts = [self._parse_account(acc) for acc in data.get("Accounts") or []]
            return DataFetchSession(session_id=session_id, status=status, accounts=accounts)
        except (KeyError, ValueError, TypeError, ArithmeticError, AttributeError) as e:
            raise GatewayUnavailable(f"Invalid session data from gateway: {e}") from e

    async def revoke_consent(self, consent_id: str) -> None:
        await self._invoke("setu-revoke-consent", {"consentId": consent_id})

    async def _invoke(self, function: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Call one gateway function.

        Raises:
            GatewayUnavailable: On timeout, transport or HTTP errors, or a non-JSON body
        """
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(f"{self.base_url}/{function}", json=body, headers=headers)
                response.raise_for_status()
                data = response.json()
            except httpx.TimeoutException as e:
                gateway_failure_counter.labels(operation=function).inc()
                raise GatewayUnavailable(f"Gateway timeout after {self.timeout}s calling {function}") from e
            except httpx.HTTPStatusError as e:
                gateway_failure_counter.labels(operation=function).inc()
                raise GatewayUnavailable(f"Gateway error calling {function}: {e.response.status_code}") from e
            except httpx.RequestError as e:
                gateway_failure_counter.labels(operation=function).inc()
                raise GatewayUnavailable(f"Gateway unreachable calling {function}: {e}") from e
            except ValueError as e:
                gateway_failure_counter.labels(operation=function).inc()
                raise GatewayUnavailable(f"Gateway returned invalid JSON for {function}") from e

        if not isinstance(data, dict):
            raise GatewayUnavailable(f"Unexpected payload from {function}")
        if data.get("error"):
            gateway_failure_counter.labels(operation=function).inc()
            raise GatewayUnavailable(f"Gateway reported error for {function}: {data['error']}")
        return data

    @staticmethod
    def _parse_account(acc: Dict[str, Any]) -> AccountData:
        summary = acc.get("Summary") or {}
        txn_block = acc.get("Transactions") or {}
        account = AccountData(
            link_ref=acc["linkRefNumber"],
            masked_account_number=acc.get("maskedAccNumber"),
            account_type=acc.get("type"),
            current_balance=_to_decimal(summary.get("currentBalance")),
        )

        # A malformed record is counted, not fatal: the rest of the account still imports
        for txn in txn_block.get("Transaction") or []:
            try:
                account.transactions.append(AggregatorClient._parse_transaction(txn))
            except (KeyError, ValueError, TypeError, ArithmeticError, AttributeError) as e:
                account.malformed += 1
                logging.warning(
                    f"Skipping malformed transaction: {e}",
                    extra={"account_link_ref": account.link_ref},
                )
        return account

    @staticmethod
    def _parse_transaction(txn: Dict[str, Any]) -> ExternalTransaction:
        return ExternalTransaction(
            txn_id=str(txn["txnId"]),
            type=str(txn["type"]).upper(),
            mode=txn.get("mode") or "OTHER",
            amount=Decimal(str(txn["amount"])),
            current_balance=_to_decimal(txn.get("currentBalance")),
            transaction_timestamp=txn.get("transactionTimestamp"),
            value_date=parse_value_date(txn.get("valueDate") or txn["transactionTimestamp"]),
            narration=txn.get("narration") or "",
            reference=txn.get("reference"),
        )


def _to_decimal(value: Optional[Any]) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    return Decimal(str(value))
