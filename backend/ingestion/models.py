"""
Payment Ingestion - Models

Defines:
- NormalizedPayment: canonical payment record produced by the CSV parsers
- CsvParseResult: parse output with skip/error accounting
- PendingPaymentDB: imported payments awaiting an operator decision
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, String, Text, Date, DateTime, Numeric, JSON, Index

from database.connection import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== ENUMS ====================

class PaymentSourceType(str, PyEnum):
    """Where a payment was imported from"""
    BANK_CSV = "BANK_CSV"
    STRIPE_REPORT = "STRIPE_REPORT"


class PendingPaymentStatus(str, PyEnum):
    """Status values for pending payments"""
    PENDING = "pending"
    PROCESSING = "processing"
    MATCHED = "matched"
    CONFIRMED = "confirmed"
    IGNORED = "ignored"


# Statuses shown in the operator queue by default
ACTIVE_STATUSES = [PendingPaymentStatus.PENDING.value, PendingPaymentStatus.PROCESSING.value]


# ==================== TRANSIENT RECORDS ====================

@dataclass
class NormalizedPayment:
    """
    Canonical payment record.

    hashed_account_identifier is a keyed one-way hash; raw account or
    card identifiers never reach this record.
    """
    transaction_fingerprint: str
    amount: Decimal
    payment_date: date
    source: PaymentSourceType
    transaction_ref: str
    description: Optional[str] = None
    hashed_account_identifier: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    card_address_line1: Optional[str] = None
    card_address_postal_code: Optional[str] = None

    def hints(self) -> Dict[str, str]:
        """Customer hint fields that are present."""
        values = {
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "card_address_line1": self.card_address_line1,
            "card_address_postal_code": self.card_address_postal_code,
        }
        return {k: v for k, v in values.items() if v}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_fingerprint": self.transaction_fingerprint,
            "amount": str(self.amount),
            "payment_date": self.payment_date.isoformat(),
            "source": self.source.value,
            "transaction_ref": self.transaction_ref,
            "description": self.description,
            "hashed_account_identifier": self.hashed_account_identifier,
            **self.hints(),
        }


@dataclass
class CsvParseResult:
    """Result of parsing one CSV file."""
    success: bool
    data: List[NormalizedPayment] = field(default_factory=list)
    processed: int = 0
    skipped: int = 0
    filtered: int = 0  # non-payment rows (debits, refunds, fees), included in skipped
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "data": [p.to_dict() for p in self.data],
            "processed": self.processed,
            "skipped": self.skipped,
            "filtered": self.filtered,
            "errors": self.errors,
        }


# ==================== PENDING PAYMENT TABLE ====================

class PendingPaymentDB(Base):
    """
    Pending Payment Table - imported transactions awaiting reconciliation.

    Rows are never deleted; status moves between pending, processing,
    confirmed and ignored.
    """
    __tablename__ = 'pending_payments'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    transaction_fingerprint = Column(String(128), nullable=False, unique=True)

    amount = Column(Numeric(10, 2), nullable=False)
    payment_date = Column(Date, nullable=False, index=True)
    source = Column(String(30), nullable=False, index=True)
    transaction_ref = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    hashed_account_identifier = Column(String(128), nullable=True, index=True)

    status = Column(String(20), nullable=False, default=PendingPaymentStatus.PENDING.value, index=True)

    uploaded_by_user_id = Column(String(64), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), default=utc_now, index=True)

    # Customer hints (name, email, card address)
    payment_metadata = Column('metadata', JSON, nullable=True)

    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_pending_payments_status_uploaded', 'status', 'uploaded_at'),
        {'extend_existing': True},
    )

    @classmethod
    def from_normalized(cls, payment: NormalizedPayment, uploaded_by_user_id: str) -> "PendingPaymentDB":
        return cls(
            transaction_fingerprint=payment.transaction_fingerprint,
            amount=payment.amount,
            payment_date=payment.payment_date,
            source=payment.source.value,
            transaction_ref=payment.transaction_ref,
            description=payment.description,
            hashed_account_identifier=payment.hashed_account_identifier,
            status=PendingPaymentStatus.PENDING.value,
            uploaded_by_user_id=uploaded_by_user_id,
            payment_metadata=payment.hints() or None,
        )

    def to_normalized(self) -> NormalizedPayment:
        hints = self.payment_metadata or {}
        return NormalizedPayment(
            transaction_fingerprint=self.transaction_fingerprint,
            amount=Decimal(str(self.amount)),
            payment_date=self.payment_date,
            source=PaymentSourceType(self.source),
            transaction_ref=self.transaction_ref,
            description=self.description,
            hashed_account_identifier=self.hashed_account_identifier,
            customer_name=hints.get("customer_name"),
            customer_email=hints.get("customer_email"),
            card_address_line1=hints.get("card_address_line1"),
            card_address_postal_code=hints.get("card_address_postal_code"),
        )

    def to_dict(self):
        return {
            "id": self.id,
            "transaction_fingerprint": self.transaction_fingerprint,
            "amount": str(self.amount),
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "source": self.source,
            "transaction_ref": self.transaction_ref,
            "description": self.description,
            "hashed_account_identifier": self.hashed_account_identifier,
            "status": self.status,
            "uploaded_by_user_id": self.uploaded_by_user_id,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "metadata": self.payment_metadata,
        }
