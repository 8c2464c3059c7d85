"""
Reconciliation - Database Models

Defines SQLAlchemy models for:
- ReconciliationLog: the permanent record that a transaction was reconciled
- PaymentSource: hashed account/card identifier -> contact
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Date, DateTime, Numeric, JSON, Index

from database.connection import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== RECONCILIATION LOG TABLE ====================

class ReconciliationLogDB(Base):
    """
    Reconciliation Log - one row per reconciled transaction.

    The unique constraint on transaction_fingerprint is the only guard
    against two concurrent confirmations of the same transaction.
    Rows are immutable; a row is deleted only when propagation fails.
    """
    __tablename__ = 'reconciliation_logs'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    transaction_fingerprint = Column(String(128), nullable=False, unique=True)

    payment_date = Column(Date, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    source = Column(String(30), nullable=False)
    transaction_ref = Column(String(500), nullable=False)

    contact_id = Column(String(64), nullable=False, index=True)
    reconciled_by_user_id = Column(String(64), nullable=False)
    reconciled_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    # confidence, reasoning, description
    log_metadata = Column('metadata', JSON, nullable=True)

    __table_args__ = {'extend_existing': True}

    def to_dict(self):
        return {
            "id": self.id,
            "transaction_fingerprint": self.transaction_fingerprint,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "amount": str(self.amount),
            "source": self.source,
            "transaction_ref": self.transaction_ref,
            "contact_id": self.contact_id,
            "reconciled_by_user_id": self.reconciled_by_user_id,
            "reconciled_at": self.reconciled_at.isoformat() if self.reconciled_at else None,
            "metadata": self.log_metadata,
        }


# ==================== PAYMENT SOURCE TABLE ====================

class PaymentSourceDB(Base):
    """
    Payment Source - known payer identifiers.

    One hashed identifier maps to at most one contact (upsert by
    identifier, last write wins); a contact may own several.
    """
    __tablename__ = 'payment_sources'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    hashed_identifier = Column(String(128), nullable=False, unique=True)
    source_type = Column(String(30), nullable=False)  # bank_account, stripe_source
    contact_id = Column(String(64), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    last_seen_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_payment_sources_contact_type', 'contact_id', 'source_type'),
        {'extend_existing': True},
    )

    def to_dict(self):
        return {
            "id": self.id,
            "hashed_identifier": self.hashed_identifier,
            "source_type": self.source_type,
            "contact_id": self.contact_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_seen_at": self.last_seen_at.isoformat() if self.last_seen_at else None,
        }
