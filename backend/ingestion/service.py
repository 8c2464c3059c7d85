"""
Payment Ingestion - Service Layer

Provides business logic for:
- CSV import into the pending-payment queue (dedup by fingerprint)
- Pending-payment queries with filters and pagination
- Ignore / unignore of pending payments
"""

from datetime import date
from decimal import Decimal
from typing import List, Dict, Any, Optional, Sequence
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, func, or_, cast, String

from ingestion.models import (
    ACTIVE_STATUSES,
    NormalizedPayment,
    PaymentSourceType,
    PendingPaymentDB,
    PendingPaymentStatus,
)
from ingestion.parsers import CsvDialect, CsvParsingService
from utils.errors import ConflictError, PaymentNotFoundError, ValidationError

logger = logging.getLogger(__name__)


# ==================== CONSTANTS ====================

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20
AMOUNT_SEARCH_TOLERANCE = Decimal("0.01")
MAX_INSERT_ATTEMPTS = 3
MAX_RETURNED_ERRORS = 50


# ==================== IMPORT SERVICE ====================

class PendingPaymentImportService:
    """Imports parsed CSV payments into the pending-payment queue"""

    def __init__(self, db: AsyncSession, parser: CsvParsingService):
        self.db = db
        self.parser = parser

    async def import_csv(
        self,
        dialect: CsvDialect,
        raw_text: str,
        uploaded_by_user_id: str,
    ) -> Dict[str, Any]:
        """
        Parse a CSV export and queue every new payment.

        Re-importing the same file is a no-op: every row is reported as
        already existing and nothing is written.

        Returns: {
            success: bool,
            imported: int,
            already_exists: int,
            processed: int,
            skipped: int,
            filtered: int,
            errors: []
        }
        """
        parse_result = self.parser.parse(dialect, raw_text)

        summary = {
            "success": parse_result.success,
            "imported": 0,
            "already_exists": 0,
            "processed": parse_result.processed,
            "skipped": parse_result.skipped,
            "filtered": parse_result.filtered,
            "errors": parse_result.errors[:MAX_RETURNED_ERRORS],
        }

        if not parse_result.success:
            logger.warning(f"Import rejected: {parse_result.errors[:1]}")
            return summary

        imported, already_exists = await self.import_payments(parse_result.data, uploaded_by_user_id)
        summary["imported"] = imported
        summary["already_exists"] = already_exists

        logger.info(
            f"Import completed: {imported} imported, {already_exists} already existed, "
            f"{parse_result.skipped} skipped",
            extra={"dialect": CsvDialect(dialect).value, "uploaded_by": uploaded_by_user_id},
        )

        return summary

    async def import_payments(
        self,
        payments: Sequence[NormalizedPayment],
        uploaded_by_user_id: str,
    ) -> tuple:
        """
        Insert payments whose fingerprint is not yet queued.

        A concurrent import of the same rows surfaces as a unique
        violation; the batch is then re-checked and retried.

        Returns:
            (imported_count, already_exists_count)
        """
        if not payments:
            return 0, 0

        fingerprints = [p.transaction_fingerprint for p in payments]

        for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
            existing = await self._existing_fingerprints(fingerprints)
            new_payments = [p for p in payments if p.transaction_fingerprint not in existing]

            for payment in new_payments:
                self.db.add(PendingPaymentDB.from_normalized(payment, uploaded_by_user_id))

            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                logger.warning(f"Concurrent import detected, retrying (attempt {attempt})")
                continue

            return len(new_payments), len(payments) - len(new_payments)

        raise ConflictError("Import could not complete because of concurrent imports")

    async def _existing_fingerprints(self, fingerprints: List[str]) -> set:
        result = await self.db.execute(
            select(PendingPaymentDB.transaction_fingerprint)
            .where(PendingPaymentDB.transaction_fingerprint.in_(fingerprints))
        )
        return set(result.scalars().all())


# ==================== QUEUE SERVICE ====================

class PendingPaymentService:
    """Queries and operator actions on pending payments"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_payment(self, payment_id: str) -> PendingPaymentDB:
        payment = await self.db.get(PendingPaymentDB, payment_id)
        if not payment:
            raise PaymentNotFoundError(payment_id)
        return payment

    async def get_by_fingerprint(self, transaction_fingerprint: str) -> Optional[PendingPaymentDB]:
        result = await self.db.execute(
            select(PendingPaymentDB)
            .where(PendingPaymentDB.transaction_fingerprint == transaction_fingerprint)
        )
        return result.scalar_one_or_none()

    async def list_payments(
        self,
        statuses: Optional[List[str]] = None,
        source: Optional[str] = None,
        amount: Optional[Decimal] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """
        List pending payments, newest upload first.

        Args:
            statuses: Status filter; defaults to pending + processing,
                ["all"] disables it
            source: PaymentSourceType value
            amount: Matches within ±0.01
            date_from / date_to: Inclusive payment date range
            search: Case-insensitive text over description, reference and hints
            page: 1-based page number
            limit: Page size, 1..100
        """
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")

        query = select(PendingPaymentDB)

        statuses = statuses or ACTIVE_STATUSES
        if "all" not in statuses:
            valid = {s.value for s in PendingPaymentStatus}
            unknown = [s for s in statuses if s not in valid]
            if unknown:
                raise ValidationError(f"Invalid status: {', '.join(unknown)}", field="status")
            query = query.where(PendingPaymentDB.status.in_(statuses))

        if source:
            try:
                query = query.where(PendingPaymentDB.source == PaymentSourceType(source).value)
            except ValueError:
                raise ValidationError(f"Invalid source: {source}", field="source")

        if amount is not None:
            query = query.where(PendingPaymentDB.amount.between(
                amount - AMOUNT_SEARCH_TOLERANCE,
                amount + AMOUNT_SEARCH_TOLERANCE,
            ))

        if date_from:
            query = query.where(PendingPaymentDB.payment_date >= date_from)
        if date_to:
            query = query.where(PendingPaymentDB.payment_date <= date_to)

        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(
                PendingPaymentDB.description.ilike(pattern),
                PendingPaymentDB.transaction_ref.ilike(pattern),
                cast(PendingPaymentDB.payment_metadata, String).ilike(pattern),
            ))

        total = (await self.db.execute(
            select(func.count()).select_from(query.subquery())
        )).scalar_one()

        query = query.order_by(
            PendingPaymentDB.uploaded_at.desc(),
            PendingPaymentDB.payment_date.desc(),
        ).limit(limit).offset((page - 1) * limit)

        result = await self.db.execute(query)
        payments = result.scalars().all()

        return {
            "payments": [p.to_dict() for p in payments],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def set_ignored(self, payment_id: str, ignore: bool) -> Dict[str, Any]:
        """
        Move a payment between pending and ignored.

        Confirmed or in-flight payments cannot be ignored.
        """
        payment = await self.get_payment(payment_id)

        target = PendingPaymentStatus.IGNORED.value if ignore else PendingPaymentStatus.PENDING.value
        if payment.status == target:
            return payment.to_dict()

        allowed_from = PendingPaymentStatus.PENDING.value if ignore else PendingPaymentStatus.IGNORED.value
        if payment.status != allowed_from:
            raise ConflictError(f"Cannot change a {payment.status} payment to {target}")

        payment.status = target
        await self.db.commit()

        logger.info(f"Payment {payment_id} marked {target}")
        return payment.to_dict()

    async def ignore(self, payment_id: str) -> Dict[str, Any]:
        return await self.set_ignored(payment_id, True)

    async def unignore(self, payment_id: str) -> Dict[str, Any]:
        return await self.set_ignored(payment_id, False)
