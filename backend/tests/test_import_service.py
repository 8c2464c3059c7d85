"""
Tests for CSV Import and the Pending-Payment Queue

Uses an in-memory SQLite database.

Tests:
- Import is idempotent (re-import adds nothing)
- Parse failures write nothing
- Queue listing filters and pagination
- Ignore / unignore transitions

Run with: pytest tests/test_import_service.py -v
"""

import pytest
from datetime import date
from decimal import Decimal

from ingestion.models import PendingPaymentStatus
from ingestion.parsers import CsvDialect, CsvParsingService
from ingestion.service import PendingPaymentImportService, PendingPaymentService
from utils.errors import ConflictError, PaymentNotFoundError, ValidationError

STRIPE_CSV = (
    "id,Created (UTC),Amount,Description,Customer Email,Status\n"
    "ch_001,2025-01-08,50.00,Full membership,jane@example.com,Paid\n"
    "ch_002,2025-01-09,30.00,Associate membership,sam@example.com,Paid\n"
    "ch_003,2025-01-10,10.00,Newsletter,lee@example.com,Paid\n"
)


@pytest.fixture
def import_service(db):
    return PendingPaymentImportService(db, CsvParsingService("secret"))


@pytest.fixture
def queue(db):
    return PendingPaymentService(db)


class TestImport:
    """Test the import summary and idempotency."""

    @pytest.mark.asyncio
    async def test_import_new_payments(self, import_service):
        summary = await import_service.import_csv(CsvDialect.STRIPE, STRIPE_CSV, "operator-1")

        assert summary["success"] is True
        assert summary["imported"] == 3
        assert summary["already_exists"] == 0
        assert summary["processed"] == 3
        assert summary["skipped"] == 0

    @pytest.mark.asyncio
    async def test_reimport_is_noop(self, import_service, queue):
        await import_service.import_csv(CsvDialect.STRIPE, STRIPE_CSV, "operator-1")

        summary = await import_service.import_csv(CsvDialect.STRIPE, STRIPE_CSV, "operator-2")

        assert summary["imported"] == 0
        assert summary["already_exists"] == 3

        listing = await queue.list_payments()
        assert listing["pagination"]["total"] == 3

    @pytest.mark.asyncio
    async def test_overlapping_import_adds_only_new_rows(self, import_service):
        await import_service.import_csv(CsvDialect.STRIPE, STRIPE_CSV, "operator-1")

        extended = STRIPE_CSV + "ch_004,2025-01-11,50.00,Full membership,kim@example.com,Paid\n"
        summary = await import_service.import_csv(CsvDialect.STRIPE, extended, "operator-1")

        assert summary["imported"] == 1
        assert summary["already_exists"] == 3

    @pytest.mark.asyncio
    async def test_parse_failure_writes_nothing(self, import_service, queue):
        summary = await import_service.import_csv(CsvDialect.STRIPE, "", "operator-1")

        assert summary["success"] is False
        assert summary["errors"] == ["File is empty"]
        assert (await queue.list_payments())["pagination"]["total"] == 0

    @pytest.mark.asyncio
    async def test_hints_stored_as_metadata(self, import_service, queue):
        await import_service.import_csv(CsvDialect.STRIPE, STRIPE_CSV, "operator-1")

        listing = await queue.list_payments(search="sam@example.com")

        assert len(listing["payments"]) == 1
        payment = listing["payments"][0]
        assert payment["metadata"] == {"customer_email": "sam@example.com"}
        assert payment["status"] == PendingPaymentStatus.PENDING.value
        assert payment["uploaded_by_user_id"] == "operator-1"


class TestQueue:
    """Test queue queries and operator actions."""

    @pytest.fixture
    async def imported(self, import_service, queue):
        await import_service.import_csv(CsvDialect.STRIPE, STRIPE_CSV, "operator-1")
        listing = await queue.list_payments(limit=100)
        return {p["transaction_ref"]: p for p in listing["payments"]}

    @pytest.mark.asyncio
    async def test_filter_by_amount_and_dates(self, queue, imported):
        by_amount = await queue.list_payments(amount=Decimal("30.00"))
        by_dates = await queue.list_payments(date_from=date(2025, 1, 9), date_to=date(2025, 1, 10))

        assert [p["transaction_ref"] for p in by_amount["payments"]] == ["ch_002"]
        assert {p["transaction_ref"] for p in by_dates["payments"]} == {"ch_002", "ch_003"}

    @pytest.mark.asyncio
    async def test_pagination(self, queue, imported):
        page = await queue.list_payments(page=2, limit=2)

        assert len(page["payments"]) == 1
        assert page["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}

    @pytest.mark.asyncio
    async def test_invalid_filters(self, queue):
        with pytest.raises(ValidationError) as exc_info:
            await queue.list_payments(limit=500)
        assert exc_info.value.field == "limit"

        with pytest.raises(ValidationError) as exc_info:
            await queue.list_payments(statuses=["archived"])
        assert exc_info.value.field == "status"

        with pytest.raises(ValidationError):
            await queue.list_payments(source="PAYPAL")

    @pytest.mark.asyncio
    async def test_ignore_and_unignore(self, queue, imported):
        payment_id = imported["ch_001"]["id"]

        ignored = await queue.ignore(payment_id)
        assert ignored["status"] == PendingPaymentStatus.IGNORED.value

        default_listing = await queue.list_payments()
        assert payment_id not in {p["id"] for p in default_listing["payments"]}

        restored = await queue.unignore(payment_id)
        assert restored["status"] == PendingPaymentStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_ignore_unknown_payment(self, queue):
        with pytest.raises(PaymentNotFoundError):
            await queue.ignore("does-not-exist")

    @pytest.mark.asyncio
    async def test_cannot_ignore_confirmed_payment(self, db, queue, imported):
        payment = await queue.get_payment(imported["ch_001"]["id"])
        payment.status = PendingPaymentStatus.CONFIRMED.value
        await db.commit()

        with pytest.raises(ConflictError):
            await queue.ignore(payment.id)
