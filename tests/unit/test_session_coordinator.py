"""Unit tests for data-fetch session polling"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from bank_sync.domain.exceptions import GatewayUnavailable, SessionFailed, SessionTimeout
from bank_sync.services.session import SessionCoordinator


async def test_completed_session_returns_accounts(gateway, make_account, make_txn):
    gateway.session_statuses = ["PENDING", "PENDING", "COMPLETED"]
    gateway.accounts = [make_account([make_txn("T1")])]
    coordinator = SessionCoordinator(gateway.client(), poll_interval=0, max_attempts=5)

    accounts = await coordinator.fetch_account_data("consent-1")

    assert accounts[0].transactions[0].txn_id == "T1"
    assert gateway.count("setu-create-session") == 1
    assert gateway.count("setu-get-session") == 3  # no polls after completion


async def test_failed_session_raises(gateway):
    gateway.session_statuses = ["PENDING", "FAILED"]
    coordinator = SessionCoordinator(gateway.client(), poll_interval=0, max_attempts=5)

    with pytest.raises(SessionFailed):
        await coordinator.fetch_account_data("consent-1")

    assert gateway.count("setu-get-session") == 2


async def test_pending_session_times_out_after_exact_budget(gateway):
    """Never-terminal session polls exactly max_attempts times, then gives up"""
    gateway.session_statuses = ["PENDING"]
    coordinator = SessionCoordinator(gateway.client(), poll_interval=0, max_attempts=7)

    with pytest.raises(SessionTimeout):
        await coordinator.fetch_account_data("consent-1")

    assert gateway.count("setu-get-session") == 7


async def test_sleeps_between_polls(gateway, monkeypatch):
    gateway.session_statuses = ["PENDING", "PENDING", "COMPLETED"]
    sleeps = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay):
        sleeps.append(delay)
        await real_sleep(0)

    monkeypatch.setattr("bank_sync.services.session.asyncio.sleep", fake_sleep)
    coordinator = SessionCoordinator(gateway.client(), poll_interval=1.0, max_attempts=30)

    await coordinator.fetch_account_data("consent-1")

    assert [delay for delay in sleeps if delay == 1.0] == [1.0, 1.0, 1.0]


async def test_default_range_is_trailing_window(gateway):
    now = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
    coordinator = SessionCoordinator(gateway.client(), poll_interval=0, window_days=30, clock=lambda: now)

    await coordinator.fetch_account_data("consent-1")

    _, body = next(call for call in gateway.calls if call[0] == "setu-create-session")
    assert body["consentId"] == "consent-1"
    assert body["dataRange"]["from"] == (now - timedelta(days=30)).isoformat()
    assert body["dataRange"]["to"] == now.isoformat()


async def test_deadline_stops_polling_early(gateway):
    gateway.session_statuses = ["PENDING"]
    coordinator = SessionCoordinator(gateway.client(), poll_interval=0.05, max_attempts=30)
    deadline = asyncio.get_running_loop().time() + 0.12

    with pytest.raises(SessionTimeout, match="deadline"):
        await coordinator.fetch_account_data("consent-1", deadline=deadline)

    assert gateway.count("setu-get-session") < 30


async def test_cancellation_aborts_poll_loop(gateway):
    gateway.session_statuses = ["PENDING"]
    coordinator = SessionCoordinator(gateway.client(), poll_interval=10.0, max_attempts=30)

    task = asyncio.create_task(coordinator.fetch_account_data("consent-1"))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert gateway.count("setu-get-session") == 0


async def test_gateway_error_while_polling_propagates(gateway):
    gateway.fail.add("setu-get-session")
    coordinator = SessionCoordinator(gateway.client(), poll_interval=0, max_attempts=5)

    with pytest.raises(GatewayUnavailable):
        await coordinator.fetch_account_data("consent-1")

    assert gateway.count("setu-get-session") == 1
