"""
Member Directory - Database Models

Local mirror of CRM contacts. Rows are written by the CRM sync job;
the reconciliation engine only reads them.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, Date, DateTime, Numeric, JSON, Index

from database.connection import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ContactDB(Base):
    """
    Contact Table - one row per CRM contact.

    custom_fields holds the CRM payload as received: either a list of
    {"id", "value"} entries or an object keyed by field id.
    """
    __tablename__ = 'contacts'

    id = Column(String(64), primary_key=True)  # CRM contact id
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    name = Column(String(500), nullable=True)
    email = Column(String(255), nullable=True, index=True)

    membership_type = Column(String(100), nullable=True, index=True)
    renewal_date = Column(Date, nullable=True)
    last_payment_amount = Column(Numeric(10, 2), nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)

    custom_fields = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_contacts_last_payment_amount', 'last_payment_amount'),
        {'extend_existing': True},
    )

    def to_dict(self):
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "name": self.name,
            "email": self.email,
            "membership_type": self.membership_type,
            "renewal_date": self.renewal_date.isoformat() if self.renewal_date else None,
            "last_payment_amount": str(self.last_payment_amount) if self.last_payment_amount is not None else None,
            "last_activity_at": self.last_activity_at.isoformat() if self.last_activity_at else None,
            "custom_fields": self.custom_fields,
        }
