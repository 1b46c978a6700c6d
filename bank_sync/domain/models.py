"""Domain models - pure Python dataclasses representing business entities"""

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional


class ConnectionStatus(str, enum.Enum):
    """Lifecycle status of a bank connection"""

    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"
    REJECTED = "rejected"
    PAUSED = "paused"
    ERROR = "error"


class SessionStatus(str, enum.Enum):
    """State of a data-fetch session"""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class SyncStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class BankConnection:
    """Snapshot of a linked external account"""

    id: str
    user_id: str
    provider: str
    status: ConnectionStatus
    consent_id: Optional[str] = None
    consent_handle: Optional[str] = None
    account_link_ref: Optional[str] = None
    masked_account_number: Optional[str] = None
    account_type: Optional[str] = None
    fi_type: Optional[str] = None
    institution_name: Optional[str] = None
    consent_expiry: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    last_transaction_date: Optional[date] = None


@dataclass
class ConsentOptions:
    """Caller overrides for a consent request; None means use the default"""

    consent_start: Optional[datetime] = None
    consent_expiry: Optional[datetime] = None
    customer_id: Optional[str] = None
    fi_types: Optional[List[str]] = None
    data_range_from: Optional[datetime] = None
    data_range_to: Optional[datetime] = None
    consent_mode: str = "STORE"  # VIEW | STORE | QUERY | STREAM
    fetch_type: str = "PERIODIC"  # ONETIME | PERIODIC
    frequency_unit: str = "HOUR"
    frequency_value: int = 1
    data_life_unit: str = "MONTH"
    data_life_value: int = 12
    purpose_code: str = "101"


@dataclass
class ConsentResult:
    """Gateway response to a consent request"""

    id: str
    url: str
    status: str


@dataclass
class LinkedAccount:
    """Account exposed under an active consent"""

    link_ref: str
    fi_type: str
    account_type: str
    masked_account_number: str
    institution_name: Optional[str] = None


@dataclass
class ConsentStatusResult:
    status: str  # provider status, e.g. "ACTIVE"
    accounts: List[LinkedAccount] = field(default_factory=list)
    consent_handle: Optional[str] = None


@dataclass
class ExternalTransaction:
    """Transaction as returned by the aggregator for one account"""

    txn_id: str
    type: str  # "CREDIT" or "DEBIT"
    mode: str  # UPI, NEFT, IMPS, CARD ...
    amount: Decimal
    current_balance: Optional[Decimal]
    transaction_timestamp: Optional[str]
    value_date: date
    narration: str
    reference: Optional[str] = None


@dataclass
class AccountData:
    """Fetched data for one linked account"""

    link_ref: str
    masked_account_number: Optional[str]
    account_type: Optional[str]
    current_balance: Optional[Decimal] = None
    transactions: List[ExternalTransaction] = field(default_factory=list)
    malformed: int = 0  # records the gateway returned that could not be parsed


@dataclass
class DataFetchSession:
    session_id: str
    status: SessionStatus
    accounts: List[AccountData] = field(default_factory=list)


@dataclass
class LedgerTransaction:
    """Canonical ledger entry created from an external transaction"""

    user_id: str
    name: str
    amount: Decimal
    type: str  # "income" or "expense"
    date: date
    external_txn_id: str
    merchant: Optional[str] = None
    source_account_name: Optional[str] = None
    source_account_type: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ImportResult:
    """Counts produced by one import run"""

    imported: int = 0
    skipped: int = 0
    errors: int = 0
    fetched: int = 0
