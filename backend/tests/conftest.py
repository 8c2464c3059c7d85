"""
Shared fixtures: in-memory SQLite database, directory contacts and
payments.
"""

import os

# Settings are read at import time by config and database.connection
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("FINGERPRINT_SECRET", "test-fingerprint-secret")

from datetime import date, datetime
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database.connection import Base
from database.contact_models import ContactDB
from ingestion.models import NormalizedPayment, PaymentSourceType
import reconciliation.models  # noqa: F401


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def add_contact(db):
    """Insert a directory contact."""
    async def _add(
        contact_id: str,
        first_name: str = None,
        last_name: str = None,
        email: str = None,
        membership_type: str = None,
        last_payment_amount: str = None,
        renewal_date: date = None,
        last_activity_at: datetime = None,
    ) -> ContactDB:
        contact = ContactDB(
            id=contact_id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            membership_type=membership_type,
            last_payment_amount=Decimal(last_payment_amount) if last_payment_amount else None,
            renewal_date=renewal_date,
            last_activity_at=last_activity_at,
        )
        db.add(contact)
        await db.commit()
        return contact
    return _add


@pytest.fixture
def make_payment():
    """Build a NormalizedPayment with sensible defaults."""
    counter = {"n": 0}

    def _make(**overrides) -> NormalizedPayment:
        counter["n"] += 1
        values = {
            "transaction_fingerprint": f"fp-{counter['n']:04d}" + "0" * 58,
            "amount": Decimal("50.00"),
            "payment_date": date(2025, 1, 8),
            "source": PaymentSourceType.STRIPE_REPORT,
            "transaction_ref": f"ch_{counter['n']:04d}",
            "description": "Membership payment",
        }
        values.update(overrides)
        return NormalizedPayment(**values)
    return _make
