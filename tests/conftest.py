"""Pytest fixtures for testing"""

import json
import pytest
import httpx
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, List
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from bank_sync.api.main import create_app
from bank_sync.api.dependencies import get_aggregator_client, get_session_coordinator
from bank_sync.infrastructure.clients.aggregator import AggregatorClient
from bank_sync.infrastructure.database.models import Base, BankConnectionRecord
from bank_sync.infrastructure.database.session import get_db
from bank_sync.services.session import SessionCoordinator


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeGateway:
    """In-memory aggregator gateway served through httpx.MockTransport"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.fail: set = set()
        self.consent_status: Dict[str, Any] = {"status": "PENDING", "Accounts": []}
        self.session_statuses: List[str] = ["COMPLETED"]
        self.accounts: List[Dict[str, Any]] = []
        self._consent_seq = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        function = request.url.path.rsplit("/", 1)[-1]
        body = json.loads(request.content or b"{}")
        self.calls.append((function, body))

        if function in self.fail:
            return httpx.Response(500, json={"error": "provider unavailable"})

        if function == "setu-create-consent":
            self._consent_seq += 1
            consent_id = f"consent-{self._consent_seq}"
            return httpx.Response(
                200,
                json={"success": True, "id": consent_id, "url": f"https://aa.test/approve/{consent_id}", "status": "PENDING"},
            )
        if function == "setu-check-consent":
            return httpx.Response(200, json=self.consent_status)
        if function == "setu-create-session":
            return httpx.Response(200, json={"id": "session-1"})
        if function == "setu-get-session":
            # Walk through the scripted statuses; the last one repeats
            status = self.session_statuses.pop(0) if len(self.session_statuses) > 1 else self.session_statuses[0]
            payload = {"status": status}
            if status == "COMPLETED":
                payload["Accounts"] = self.accounts
            return httpx.Response(200, json=payload)
        if function == "setu-revoke-consent":
            return httpx.Response(200, json={"success": True})

        return httpx.Response(404, json={"error": "unknown function"})

    def client(self) -> AggregatorClient:
        return AggregatorClient(
            base_url="http://gateway.test/functions/v1",
            api_key="test-key",
            transport=httpx.MockTransport(self.handler),
        )

    def count(self, function: str) -> int:
        return sum(1 for name, _ in self.calls if name == function)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> Callable[[], Session]:
    """Factory for extra sessions against the test database"""
    return TestingSessionLocal


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def aggregator_client(gateway: FakeGateway) -> AggregatorClient:
    return gateway.client()


@pytest.fixture
def coordinator(aggregator_client: AggregatorClient) -> SessionCoordinator:
    """Session coordinator that polls without sleeping"""
    return SessionCoordinator(aggregator_client, poll_interval=0, max_attempts=5)


@pytest.fixture
def client(db: Session, gateway: FakeGateway) -> TestClient:
    """Create FastAPI test client with test database and fake gateway"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_aggregator_client] = gateway.client
    app.dependency_overrides[get_session_coordinator] = lambda: SessionCoordinator(
        gateway.client(), poll_interval=0, max_attempts=5
    )
    return TestClient(app)


@pytest.fixture
def make_txn() -> Callable[..., Dict[str, Any]]:
    """Build a gateway transaction payload"""

    def _make(
        txn_id: str,
        narration: str = "UPI/AMAZON/9876543210",
        type: str = "DEBIT",
        amount: str = "499.00",
        value_date: str = "2026-10-01",
    ) -> Dict[str, Any]:
        return {
            "txnId": txn_id,
            "type": type,
            "mode": "UPI",
            "amount": amount,
            "currentBalance": "10500.50",
            "transactionTimestamp": f"{value_date}T10:15:00+05:30",
            "valueDate": value_date,
            "narration": narration,
            "reference": f"REF{txn_id}",
        }

    return _make


@pytest.fixture
def make_account() -> Callable[..., Dict[str, Any]]:
    """Build a gateway account payload holding the given transactions"""

    def _make(transactions: List[Dict[str, Any]], link_ref: str = "LINK-1") -> Dict[str, Any]:
        return {
            "linkRefNumber": link_ref,
            "maskedAccNumber": "XXXXXXXX1234",
            "type": "deposit",
            "Summary": {"currentBalance": "10500.50", "currency": "INR", "balanceDateTime": "2026-10-01T10:15:00+05:30"},
            "Transactions": {"startDate": "2026-09-01", "endDate": "2026-10-01", "Transaction": transactions},
        }

    return _make


@pytest.fixture
def active_connection(db: Session) -> BankConnectionRecord:
    """Active connection for user_1 linked to LINK-1 under consent-1"""
    record = BankConnectionRecord(
        user_id="user_1",
        provider="setu",
        status="active",
        consent_id="consent-1",
        consent_handle="handle-1",
        account_link_ref="LINK-1",
        masked_account_number="XXXXXXXX1234",
        account_type="SAVINGS",
        fi_type="DEPOSIT",
        institution_name="HDFC Bank",
        consent_expiry=datetime(2027, 10, 1, tzinfo=timezone.utc),
        extra={},
    )
    db.add(record)
    db.commit()
    return record


@pytest.fixture
def pending_connection(db: Session) -> BankConnectionRecord:
    """Pending connection for user_1 awaiting approval of consent-1"""
    record = BankConnectionRecord(
        user_id="user_1",
        provider="setu",
        status="pending",
        consent_id="consent-1",
        consent_expiry=datetime(2027, 10, 1, tzinfo=timezone.utc),
        extra={"consent_url": "https://aa.test/approve/consent-1"},
    )
    db.add(record)
    db.commit()
    return record
