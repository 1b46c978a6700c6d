"""SQLAlchemy ORM models for bank connections, imported transactions and sync logs"""

import uuid
from sqlalchemy import Column, String, Numeric, DateTime, Date, Integer, Text, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class BankConnectionRecord(Base):
    """One linked external account under an aggregator consent"""

    __tablename__ = "bank_connections"
    __table_args__ = (
        UniqueConstraint("consent_id", "account_link_ref", name="uq_bank_connection_consent_account"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    provider = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    consent_id = Column(Text, nullable=True, index=True)
    consent_handle = Column(Text, nullable=True)
    account_link_ref = Column(Text, nullable=True)
    masked_account_number = Column(Text, nullable=True)
    account_type = Column(Text, nullable=True)
    fi_type = Column(String(32), nullable=True)
    institution_name = Column(Text, nullable=True)
    consent_expiry = Column(DateTime(timezone=True), nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_transaction_date = Column(Date, nullable=True)
    extra = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class LedgerTransactionRecord(Base):
    """Ledger entry imported from the aggregator"""

    __tablename__ = "transactions"
    __table_args__ = (
        # Dedup key: external ids are only unique per institution, so scope them to the user
        UniqueConstraint("user_id", "external_txn_id", name="uq_transaction_user_external_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    type = Column(String(16), nullable=False)  # income | expense
    date = Column(Date, nullable=False)
    merchant = Column(Text, nullable=True)
    source_account_name = Column(Text, nullable=True)
    source_account_type = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    external_txn_id = Column(Text, nullable=False)
    extra = Column("metadata", JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SyncLogRecord(Base):
    """Append-only audit row per sync attempt"""

    __tablename__ = "bank_sync_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    connection_id = Column(Text, nullable=False, index=True)
    user_id = Column(Text, nullable=False, index=True)
    sync_type = Column(String(16), nullable=False)  # manual | scheduled
    status = Column(String(16), nullable=False)  # success | partial | failed
    transactions_fetched = Column(Integer, nullable=False, default=0)
    transactions_imported = Column(Integer, nullable=False, default=0)
    transactions_skipped = Column(Integer, nullable=False, default=0)
    transactions_errored = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
