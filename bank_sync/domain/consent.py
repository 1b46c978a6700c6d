"""Consent lifecycle rules and consent request construction"""

from datetime import datetime
from typing import Any, Dict, FrozenSet, Mapping, Optional

from bank_sync.domain.exceptions import InvalidStatusTransition
from bank_sync.domain.models import ConnectionStatus, ConsentOptions
from bank_sync.utils.date_utils import shift_years

# Allowed edges of the consent state machine. Statuses missing from the map are terminal.
TRANSITIONS: Mapping[ConnectionStatus, FrozenSet[ConnectionStatus]] = {
    ConnectionStatus.PENDING: frozenset({ConnectionStatus.ACTIVE, ConnectionStatus.REJECTED}),
    ConnectionStatus.ACTIVE: frozenset(
        {ConnectionStatus.EXPIRED, ConnectionStatus.REVOKED, ConnectionStatus.PAUSED}
    ),
    ConnectionStatus.PAUSED: frozenset(
        {ConnectionStatus.ACTIVE, ConnectionStatus.REVOKED, ConnectionStatus.EXPIRED}
    ),
}

TERMINAL_STATUSES = frozenset(
    {ConnectionStatus.REJECTED, ConnectionStatus.EXPIRED, ConnectionStatus.REVOKED}
)

# Provider consent status -> local connection status
PROVIDER_STATUS_MAP: Mapping[str, ConnectionStatus] = {
    "PENDING": ConnectionStatus.PENDING,
    "ACTIVE": ConnectionStatus.ACTIVE,
    "EXPIRED": ConnectionStatus.EXPIRED,
    "REVOKED": ConnectionStatus.REVOKED,
    "REJECTED": ConnectionStatus.REJECTED,
    "PAUSED": ConnectionStatus.PAUSED,
}


def can_transition(current: ConnectionStatus, target: ConnectionStatus) -> bool:
    if current == target:
        return True
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: ConnectionStatus, target: ConnectionStatus) -> None:
    """Raise InvalidStatusTransition unless current -> target is a legal edge"""
    if not can_transition(current, target):
        raise InvalidStatusTransition(current.value, target.value)


def map_provider_status(provider_status: Optional[str]) -> Optional[ConnectionStatus]:
    if not provider_status:
        return None
    return PROVIDER_STATUS_MAP.get(provider_status.upper())


def build_consent_request(
    user_id: str,
    options: ConsentOptions,
    now: datetime,
    data_consumer_id: str,
    validity_years: int = 1,
    history_years: int = 1,
) -> Dict[str, Any]:
    """
    Build the consent payload submitted to the aggregator.

    Defaults:
    - consent valid from now for `validity_years`
    - data range covering the last `history_years` up to now
    - deposit accounts only, periodic fetch every hour, data kept 12 months
    """
    consent_start = options.consent_start or now
    consent_expiry = options.consent_expiry or shift_years(now, validity_years)
    range_from = options.data_range_from or shift_years(now, -history_years)
    range_to = options.data_range_to or now

    return {
        "Detail": {
            "consentStart": consent_start.isoformat(),
            "consentExpiry": consent_expiry.isoformat(),
            "Customer": {"id": options.customer_id or user_id},
            "FIDataRange": {"from": range_from.isoformat(), "to": range_to.isoformat()},
            "consentMode": options.consent_mode,
            "consentTypes": ["TRANSACTIONS", "PROFILE", "SUMMARY"],
            "fetchType": options.fetch_type,
            "Frequency": {"unit": options.frequency_unit, "value": options.frequency_value},
            "DataFilter": [{"type": "TRANSACTIONAMOUNT", "operator": ">=", "value": "0"}],
            "DataLife": {"unit": options.data_life_unit, "value": options.data_life_value},
            "DataConsumer": {"id": data_consumer_id},
            "Purpose": {
                "code": options.purpose_code,
                "text": "Personal Finance Management and Budget Tracking",
            },
            "fiTypes": list(options.fi_types or ["DEPOSIT"]),
        }
    }
