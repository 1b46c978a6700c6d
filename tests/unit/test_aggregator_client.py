"""Unit tests for the aggregator gateway client"""

import pytest
import httpx
from datetime import date, datetime, timezone
from decimal import Decimal
from bank_sync.domain.exceptions import GatewayUnavailable
from bank_sync.domain.models import SessionStatus
from bank_sync.infrastructure.clients.aggregator import AggregatorClient


def _client(handler) -> AggregatorClient:
    return AggregatorClient(base_url="http://gateway.test", api_key="k", transport=httpx.MockTransport(handler))


async def test_create_consent_sends_payload_with_auth(gateway):
    client = gateway.client()

    result = await client.create_consent({"Detail": {"fiTypes": ["DEPOSIT"]}}, "user_1")

    assert result.id == "consent-1"
    assert result.url == "https://aa.test/approve/consent-1"
    function, body = gateway.calls[0]
    assert function == "setu-create-consent"
    assert body == {"consentRequest": {"Detail": {"fiTypes": ["DEPOSIT"]}}, "userId": "user_1"}


async def test_bearer_header_sent():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"id": "s-9"})

    session_id = await _client(handler).create_session(
        "consent-1", datetime(2026, 9, 1, tzinfo=timezone.utc), datetime(2026, 10, 1, tzinfo=timezone.utc)
    )

    assert session_id == "s-9"
    assert seen["auth"] == "Bearer k"


async def test_consent_status_parses_accounts(gateway):
    gateway.consent_status = {
        "status": "ACTIVE",
        "consentHandle": "handle-1",
        "Accounts": [
            {"linkRefNumber": "LINK-1", "FIType": "DEPOSIT", "accType": "SAVINGS", "maskedAccNumber": "XXXX1234", "institutionName": "HDFC Bank"}
        ],
    }

    result = await gateway.client().get_consent_status("consent-1")

    assert result.status == "ACTIVE"
    assert result.consent_handle == "handle-1"
    assert result.accounts[0].link_ref == "LINK-1"
    assert result.accounts[0].institution_name == "HDFC Bank"


async def test_active_consent_without_handle_rejected(gateway):
    gateway.consent_status = {"status": "ACTIVE", "Accounts": [{"linkRefNumber": "LINK-1"}]}

    with pytest.raises(GatewayUnavailable, match="consentHandle"):
        await gateway.client().get_consent_status("consent-1")


async def test_pending_consent_needs_no_handle(gateway):
    gateway.consent_status = {"status": "PENDING"}

    result = await gateway.client().get_consent_status("consent-1")

    assert result.consent_handle is None


async def test_completed_session_parses_transactions(gateway, make_account, make_txn):
    gateway.accounts = [make_account([make_txn("T1", type="CREDIT", amount="1500.25")])]

    session = await gateway.client().get_session("session-1")

    assert session.status == SessionStatus.COMPLETED
    txn = session.accounts[0].transactions[0]
    assert txn.txn_id == "T1"
    assert txn.type == "CREDIT"
    assert txn.amount == Decimal("1500.25")
    assert txn.value_date == date(2026, 10, 1)
    assert session.accounts[0].current_balance == Decimal("10500.50")


async def test_txn_id_kept_exactly_as_received(gateway, make_account, make_txn):
    """Leading zeros and padding in the dedup key survive parsing"""
    gateway.accounts = [make_account([make_txn("000123 ")])]

    session = await gateway.client().get_session("session-1")

    assert session.accounts[0].transactions[0].txn_id == "000123 "


async def test_malformed_transaction_counted_not_fatal(gateway, make_account, make_txn):
    bad = make_txn("T2", amount="not-a-number")
    gateway.accounts = [make_account([make_txn("T1"), bad])]

    session = await gateway.client().get_session("session-1")

    account = session.accounts[0]
    assert [t.txn_id for t in account.transactions] == ["T1"]
    assert account.malformed == 1


@pytest.mark.parametrize(
    "provider_status,expected",
    [
        ("PENDING", SessionStatus.PENDING),
        ("ACTIVE", SessionStatus.PENDING),
        ("PARTIAL", SessionStatus.COMPLETED),
        ("FAILED", SessionStatus.FAILED),
        ("EXPIRED", SessionStatus.FAILED),
    ],
)
async def test_session_status_mapping(gateway, provider_status, expected):
    gateway.session_statuses = [provider_status]
    session = await gateway.client().get_session("session-1")
    assert session.status == expected


async def test_http_error_raises_gateway_unavailable(gateway):
    gateway.fail.add("setu-create-consent")

    with pytest.raises(GatewayUnavailable, match="500"):
        await gateway.client().create_consent({}, "user_1")


async def test_timeout_raises_gateway_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(GatewayUnavailable, match="timeout"):
        await _client(handler).get_consent_status("consent-1")


async def test_connect_error_raises_gateway_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GatewayUnavailable):
        await _client(handler).revoke_consent("consent-1")


async def test_missing_fields_raise_gateway_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"url": "https://aa.test"})

    with pytest.raises(GatewayUnavailable, match="Invalid consent response"):
        await _client(handler).create_consent({}, "user_1")


async def test_error_body_raises_gateway_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": "Setu authentication failed: 401"})

    with pytest.raises(GatewayUnavailable, match="authentication failed"):
        await _client(handler).create_session(
            "consent-1", datetime(2026, 9, 1, tzinfo=timezone.utc), datetime(2026, 10, 1, tzinfo=timezone.utc)
        )
