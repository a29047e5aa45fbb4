"""SQLAlchemy ORM models for balances and payout requests"""

from sqlalchemy import Column, BigInteger, DateTime, Integer, Text, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class VendorBalanceRecord(Base):
    """One row per vendor; every write is conditioned on version"""

    __tablename__ = "vendor_balance"

    vendor_id = Column(Text, primary_key=True)
    available_balance_cents = Column(BigInteger, nullable=False, default=0)
    pending_balance_cents = Column(BigInteger, nullable=False, default=0)
    held_balance_cents = Column(BigInteger, nullable=False, default=0)
    total_earnings_cents = Column(BigInteger, nullable=False, default=0)
    total_withdrawn_cents = Column(BigInteger, nullable=False, default=0)
    version = Column(Integer, nullable=False)
    last_payout_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AppliedOperationRecord(Base):
    """Idempotency key consumed by a balance write, inserted in the same transaction"""

    __tablename__ = "applied_operation"

    vendor_id = Column(Text, primary_key=True)
    idempotency_key = Column(Text, primary_key=True)
    operation = Column(Text, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    balance_version = Column(Integer, nullable=False)
    applied_at = Column(DateTime(timezone=True), nullable=True)


class PayoutRequestRecord(Base):
    """Vendor withdrawal request, retained forever as an audit trail"""

    __tablename__ = "payout_request"

    id = Column(Text, primary_key=True)
    vendor_id = Column(Text, nullable=False, index=True)
    vendor_name = Column(Text, nullable=True)
    vendor_email = Column(Text, nullable=True)
    amount_cents = Column(BigInteger, nullable=False)
    payment_method = Column(Text, nullable=False)
    destination = Column(JSON, nullable=False)
    status = Column(Text, nullable=False, index=True)
    requested_at = Column(DateTime(timezone=True), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    processed_by = Column(Text, nullable=True)
    transaction_reference = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    resolving = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)
