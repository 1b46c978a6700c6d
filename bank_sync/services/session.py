"""Data-fetch session coordination - open a provider session and poll it to a terminal status"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List

from bank_sync.config import settings
from bank_sync.domain.exceptions import SessionFailed, SessionTimeout
from bank_sync.domain.models import AccountData, SessionStatus
from bank_sync.infrastructure.clients.aggregator import AggregatorClient
from bank_sync.infrastructure.observability.metrics import session_poll_histogram
from bank_sync.utils.date_utils import trailing_window_start, utc_now


class SessionCoordinator:
    """Fetches account data for a consent through a bounded poll loop"""

    def __init__(
        self,
        client: AggregatorClient,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
        window_days: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.client = client
        self.poll_interval = poll_interval if poll_interval is not None else settings.session_poll_interval_seconds
        self.max_attempts = max_attempts if max_attempts is not None else settings.session_poll_max_attempts
        self.window_days = window_days if window_days is not None else settings.default_sync_window_days
        self.clock = clock

    async def fetch_account_data(
        self,
        consent_id: str,
        range_from: datetime | None = None,
        range_to: datetime | None = None,
        deadline: float | None = None,
    ) -> List[AccountData]:
        """
        Open a session for the date range and poll until it finishes.

        Polling strategy:
        - sleep `poll_interval` seconds, then poll, at most `max_attempts` times
        - return on the first completed status, no further polls
        - cancelling the awaiting task stops the loop at the current sleep

        Args:
            consent_id: Consent the session is issued under
            range_from: Start of the data range (default: trailing window)
            range_to: End of the data range (default: now)
            deadline: Optional event-loop time after which polling gives up

        Raises:
            SessionFailed: Provider reported the session as failed
            SessionTimeout: Attempt budget or deadline exhausted while pending
            GatewayUnavailable: A gateway call failed
        """
        now = self.clock()
        range_to = range_to or now
        range_from = range_from or trailing_window_start(now, self.window_days)

        session_id = await self.client.create_session(consent_id, range_from, range_to)
        loop = asyncio.get_running_loop()

        for attempt in range(1, self.max_attempts + 1):
            if deadline is not None and loop.time() + self.poll_interval > deadline:
                raise SessionTimeout(f"Session {session_id} abandoned at deadline after {attempt - 1} polls")

            await asyncio.sleep(self.poll_interval)
            session = await self.client.get_session(session_id)

            if session.status == SessionStatus.COMPLETED:
                session_poll_histogram.observe(attempt)
                return session.accounts
            if session.status == SessionStatus.FAILED:
                session_poll_histogram.observe(attempt)
                raise SessionFailed(f"Data fetch session {session_id} failed")

            logging.debug("Session still pending", extra={"session_id": session_id, "attempt": attempt})

        raise SessionTimeout(f"Data fetch session {session_id} still pending after {self.max_attempts} polls")
