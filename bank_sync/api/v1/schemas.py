"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import List, Literal, Optional


class ConsentRequestBody(BaseModel):
    """Request body for POST /v1/connections"""

    user_id: str = Field(..., min_length=1, description="User identifier")
    customer_id: Optional[str] = Field(None, description="Aggregator customer handle, e.g. mobile@aa")
    fi_types: Optional[List[str]] = Field(None, description="Financial-instrument types, default DEPOSIT")
    consent_expiry: Optional[datetime] = None
    data_range_from: Optional[datetime] = None
    data_range_to: Optional[datetime] = None
    fetch_type: Literal["ONETIME", "PERIODIC"] = "PERIODIC"
    frequency_unit: Literal["HOUR", "DAY", "MONTH", "YEAR"] = "HOUR"
    frequency_value: int = Field(1, gt=0)
    data_life_unit: Literal["MONTH", "YEAR"] = "MONTH"
    data_life_value: int = Field(12, gt=0)


class ConsentResponse(BaseModel):
    """Response for POST /v1/connections"""

    consent_id: str
    approval_url: str
    status: str


class LinkedAccountSchema(BaseModel):
    link_ref: str
    fi_type: str
    account_type: str
    masked_account_number: str
    institution_name: Optional[str] = None


class ConsentStatusResponse(BaseModel):
    """Response for consent status checks and approval callbacks"""

    consent_id: str
    status: str
    accounts: List[LinkedAccountSchema] = []


class ConnectionSchema(BaseModel):
    """Single bank connection"""

    id: str
    user_id: str
    provider: str
    status: str
    consent_id: Optional[str] = None
    account_link_ref: Optional[str] = None
    masked_account_number: Optional[str] = None
    account_type: Optional[str] = None
    fi_type: Optional[str] = None
    institution_name: Optional[str] = None
    consent_expiry: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    last_transaction_date: Optional[date] = None


class ConnectionListResponse(BaseModel):
    """Response for GET /v1/connections"""

    user_id: str
    connections: List[ConnectionSchema]


class SyncResponse(BaseModel):
    """Response for POST /v1/connections/{connection_id}/sync"""

    connection_id: str
    imported: int
    skipped: int
    errors: int
    fetched: int


class SyncLogItem(BaseModel):
    """Single sync attempt in history"""

    sync_type: str
    status: str
    transactions_fetched: int
    transactions_imported: int
    transactions_skipped: int
    transactions_errored: int
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    created_at: str


class SyncLogResponse(BaseModel):
    """Response for GET /v1/connections/{connection_id}/sync-logs"""

    connection_id: str
    logs: List[SyncLogItem]
