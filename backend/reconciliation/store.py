"""
Reconciliation Store

Storage operations behind a confirmation:
- Atomic local commit (log row, payment-source upsert, queue status)
- Compensation (log deletion, queue status restore)
- Finalization (queue status, local contact membership facts)
- Lookups used by matching (payment sources, recent reconciliations)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from sqlalchemy import select, delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.contact_models import ContactDB
from ingestion.models import NormalizedPayment, PendingPaymentDB, PendingPaymentStatus
from reconciliation.audit import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.membership import MembershipUpdate
from reconciliation.models import PaymentSourceDB, ReconciliationLogDB
from utils.errors import AlreadyReconciledError, ContactNotFoundError, ReconciliationError


class ReconciliationStore:
    """
    Reconciliation log and payment-source persistence.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_log(self, transaction_fingerprint: str) -> Optional[ReconciliationLogDB]:
        result = await self.db.execute(
            select(ReconciliationLogDB)
            .where(ReconciliationLogDB.transaction_fingerprint == transaction_fingerprint)
        )
        return result.scalar_one_or_none()

    async def record_reconciliation(
        self,
        payment: NormalizedPayment,
        contact_id: str,
        reconciled_by_user_id: str,
        metadata: Dict[str, Any],
        payment_source_kind: str,
    ) -> ReconciliationLogDB:
        """
        Create the reconciliation log in one transaction.

        Also upserts the payment source (when the payment carries a hashed
        identifier) and moves the queued payment to processing. Nothing is
        left behind if any step fails.

        Raises:
            AlreadyReconciledError: a log already exists for the fingerprint,
                including when a concurrent confirmation wins the insert
            ContactNotFoundError: the contact is not in the directory
        """
        fingerprint = payment.transaction_fingerprint

        try:
            if await self.get_log(fingerprint):
                raise AlreadyReconciledError(fingerprint)

            if await self.db.get(ContactDB, contact_id) is None:
                raise ContactNotFoundError(contact_id)

            log = ReconciliationLogDB(
                transaction_fingerprint=fingerprint,
                payment_date=payment.payment_date,
                amount=payment.amount,
                source=payment.source.value,
                transaction_ref=payment.transaction_ref,
                contact_id=contact_id,
                reconciled_by_user_id=reconciled_by_user_id,
                reconciled_at=datetime.now(timezone.utc),
                log_metadata=metadata,
            )
            self.db.add(log)

            if payment.hashed_account_identifier:
                await self._upsert_payment_source(
                    payment.hashed_account_identifier, contact_id, payment_source_kind
                )

            await self._set_queue_status(fingerprint, PendingPaymentStatus.PROCESSING)
            await self.db.commit()

        except ReconciliationError:
            await self.db.rollback()
            raise
        except IntegrityError:
            await self.db.rollback()
            if await self.get_log(fingerprint):
                raise AlreadyReconciledError(fingerprint)
            raise
        except Exception:
            await self.db.rollback()
            raise

        return log

    async def remove_reconciliation(self, log_id: str, transaction_fingerprint: str):
        """Compensation: delete the log row and put the payment back in the queue."""
        try:
            await self.db.execute(
                delete(ReconciliationLogDB).where(ReconciliationLogDB.id == log_id)
            )
            await self._set_queue_status(
                transaction_fingerprint,
                PendingPaymentStatus.PENDING,
                from_status=PendingPaymentStatus.PROCESSING,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def finalize_reconciliation(self, transaction_fingerprint: str, membership_update: MembershipUpdate):
        """
        After full propagation: confirm the queued payment and mirror the
        new membership facts onto the local contact row.
        """
        try:
            await self._set_queue_status(transaction_fingerprint, PendingPaymentStatus.CONFIRMED)

            contact = await self.db.get(ContactDB, membership_update.contact_id)
            if contact is not None:
                contact.renewal_date = membership_update.renewal_date
                if membership_update.membership_type:
                    contact.membership_type = membership_update.membership_type
                contact.last_payment_amount = membership_update.payment_amount
                contact.last_activity_at = datetime.now(timezone.utc)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def lookup_payment_source(self, hashed_identifier: str) -> Optional[str]:
        """Contact id owning a hashed identifier, if known."""
        result = await self.db.execute(
            select(PaymentSourceDB.contact_id)
            .where(PaymentSourceDB.hashed_identifier == hashed_identifier)
        )
        return result.scalar_one_or_none()

    async def get_queue_status(self, transaction_fingerprint: str) -> Optional[str]:
        result = await self.db.execute(
            select(PendingPaymentDB.status)
            .where(PendingPaymentDB.transaction_fingerprint == transaction_fingerprint)
        )
        return result.scalar_one_or_none()

    async def get_contact_email(self, contact_id: str) -> Optional[str]:
        try:
            result = await self.db.execute(select(ContactDB.email).where(ContactDB.id == contact_id))
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        return result.scalar_one_or_none()

    async def ping(self) -> bool:
        try:
            await self.db.execute(select(1))
        except SQLAlchemyError:
            return False
        return True

    async def recently_reconciled_contact_ids(self, since: datetime) -> Set[str]:
        result = await self.db.execute(
            select(ReconciliationLogDB.contact_id)
            .where(ReconciliationLogDB.reconciled_at >= since)
            .distinct()
        )
        return set(result.scalars().all())

    async def _upsert_payment_source(self, hashed_identifier: str, contact_id: str, source_type: str):
        result = await self.db.execute(
            select(PaymentSourceDB).where(PaymentSourceDB.hashed_identifier == hashed_identifier)
        )
        existing = result.scalar_one_or_none()

        if existing is None:
            self.db.add(PaymentSourceDB(
                hashed_identifier=hashed_identifier,
                source_type=source_type,
                contact_id=contact_id,
            ))
            return

        if existing.contact_id != contact_id:
            # Last write wins; surfaced for data-quality review
            log_reconciliation_event(
                ReconciliationAuditEvent.PAYMENT_SOURCE_REASSIGNED,
                None,
                {
                    "payment_source_id": existing.id,
                    "previous_contact_id": existing.contact_id,
                    "source_type": source_type,
                },
                contact_id=contact_id,
                level=logging.WARNING,
            )
            existing.contact_id = contact_id

        existing.source_type = source_type
        existing.last_seen_at = datetime.now(timezone.utc)

    async def _set_queue_status(
        self,
        transaction_fingerprint: str,
        status: PendingPaymentStatus,
        from_status: Optional[PendingPaymentStatus] = None,
    ):
        query = (
            update(PendingPaymentDB)
            .where(PendingPaymentDB.transaction_fingerprint == transaction_fingerprint)
            .values(status=status.value, updated_at=datetime.now(timezone.utc))
        )
        if from_status is not None:
            query = query.where(PendingPaymentDB.status == from_status.value)
        await self.db.execute(query)
