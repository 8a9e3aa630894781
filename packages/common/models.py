"""
ORM models (mirrors infra/db/migrations/versions/001_initial_schema.py)

Timestamps are stored timezone-aware in Postgres. SQLite (tests) drops the
offset, so repositories run every value read back through ensure_utc().
"""
from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)

from packages.common.database import Base


class ProfileRecord(Base):
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    email = Column(String(320), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ReceiptRecord(Base):
    __tablename__ = "receipts"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    merchant = Column(String(255), nullable=True)
    order_id = Column(String(255), nullable=True)
    purchase_date = Column(DateTime(timezone=True), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    total_cents = Column(BigInteger, nullable=True)
    dedupe_key = Column(String(64), nullable=True, unique=True)
    source = Column(String(32), nullable=False, default="manual")
    created_at = Column(DateTime(timezone=True), nullable=False)


class DeadlineRecord(Base):
    __tablename__ = "deadlines"
    __table_args__ = (
        Index("idx_deadlines_status_due", "status", "due_at"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    receipt_id = Column(String(36), ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(32), nullable=False)
    due_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(16), nullable=False, default="open")
    decision = Column(String(16), nullable=True)
    decision_note = Column(Text, nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    # Milestone gates (set once delivered) and their claim leases
    due_today_notified_at = Column(DateTime(timezone=True), nullable=True)
    due_today_claimed_at = Column(DateTime(timezone=True), nullable=True)
    heads_up_notified_at = Column(DateTime(timezone=True), nullable=True)
    heads_up_claimed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)


class CredentialRecord(Base):
    __tablename__ = "connector_credentials"

    user_id = Column(String(64), primary_key=True)
    provider = Column(String(32), primary_key=True)
    refresh_token = Column(Text, nullable=True)
    access_token = Column(Text, nullable=True)
    access_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    granted_scopes = Column(JSON, nullable=False, default=list)
    status = Column(String(32), nullable=False, default="active")
    updated_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
