"""
Reconciliation Service

Confirms a (payment, contact) match:
1. Validate the request
2. Commit the reconciliation log locally (one transaction)
3. Update the CRM contact (renewal date, membership type, paid tag, note)
4. Update the CMS user role

Steps 2-4 run as a saga. If the CRM or CMS update fails, the log row is
deleted again so the transaction can be confirmed later, and the result
shows which updates did happen.

Local durability always happens before any external call.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ingestion.models import NormalizedPayment
from reconciliation.audit import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.contacts import ContactRecord
from reconciliation.membership import MembershipFeeSchedule, MembershipUpdate, calculate_renewal_date
from reconciliation.saga import Saga, SagaStep, StepFailed
from reconciliation.source_registry import SourceRegistry, source_registry
from reconciliation.store import ReconciliationStore
from sentry_integration import capture_exception
from services.ghl_client import GhlClient, build_reconciliation_note
from services.propagation import PropagationResult
from services.wordpress_client import WordPressClient
from utils.errors import InternalServiceError, ReconciliationError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

STEP_LOCAL_LOG = "local_log"
STEP_GHL = "ghl"
STEP_WORDPRESS = "wordpress"


@dataclass
class ConfirmMatchRequest:
    """An operator's decision that a payment belongs to a contact."""
    payment: NormalizedPayment
    contact_id: str
    reconciled_by_user_id: str
    confidence: Optional[float] = None
    reasoning: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None


@dataclass
class ConfirmMatchResult:
    """Outcome of a confirmation attempt."""
    success: bool
    reconciliation_log_id: Optional[str] = None
    ghl_update_result: Optional[Dict[str, Any]] = None
    wordpress_update_result: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)
    rollback_performed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "reconciliation_log_id": self.reconciliation_log_id,
            "ghl_update_result": self.ghl_update_result,
            "wordpress_update_result": self.wordpress_update_result,
            "errors": self.errors,
            "rollback_performed": self.rollback_performed,
        }


def validate_confirm_request(request: ConfirmMatchRequest):
    """
    Reject malformed confirmations before any side effect.

    Raises:
        ValidationError: first problem found
    """
    payment = request.payment
    if payment is None:
        raise ValidationError("Payment data is required", field="payment")
    if not payment.transaction_fingerprint:
        raise ValidationError("Transaction fingerprint is required", field="transaction_fingerprint")
    if not request.contact_id:
        raise ValidationError("Contact ID is required", field="contact_id")
    if not request.reconciled_by_user_id:
        raise ValidationError("Reconciling user is required", field="reconciled_by_user_id")
    if not isinstance(payment.amount, Decimal) or not payment.amount.is_finite() or payment.amount <= 0:
        raise ValidationError("Amount must be a positive number", field="amount")
    if not isinstance(payment.payment_date, date):
        raise ValidationError("Payment date is invalid", field="payment_date")
    if not payment.transaction_ref:
        raise ValidationError("Transaction reference is required", field="transaction_ref")
    if request.confidence is not None and not 0.0 <= request.confidence <= 1.0:
        raise ValidationError("Confidence must be between 0 and 1", field="confidence")


class ReconciliationService:
    """
    Reconciliation orchestrator.

    Args:
        db: Database session
        ghl_client: CRM collaborator
        wordpress_client: CMS collaborator
        fee_schedule: Membership fees (membership type for the amount)
        registry: Payment source registry
    """

    def __init__(
        self,
        db: AsyncSession,
        ghl_client: GhlClient,
        wordpress_client: WordPressClient,
        fee_schedule: MembershipFeeSchedule,
        registry: SourceRegistry = source_registry,
    ):
        self.store = ReconciliationStore(db)
        self.ghl_client = ghl_client
        self.wordpress_client = wordpress_client
        self.fee_schedule = fee_schedule
        self.registry = registry

    async def confirm_match(self, request: ConfirmMatchRequest) -> ConfirmMatchResult:
        """
        Confirm a match and propagate it.

        Raises:
            ValidationError: malformed request, nothing written
            AlreadyReconciledError: the transaction already has a log row
            ContactNotFoundError: unknown contact, nothing written
            InternalServiceError: storage failure (details only in logs)

        Returns:
            ConfirmMatchResult; success False means propagation failed and
            the local log was rolled back (rollback_performed)
        """
        validate_confirm_request(request)

        payment = request.payment
        fingerprint = payment.transaction_fingerprint
        # Filled in by the steps as they run
        state: Dict[str, Any] = {}

        async def record_log():
            log = await self.store.record_reconciliation(
                payment,
                request.contact_id,
                request.reconciled_by_user_id,
                metadata=self._log_metadata(request),
                payment_source_kind=self.registry.payment_source_kind(payment.source),
            )
            log_reconciliation_event(
                ReconciliationAuditEvent.LOG_COMMITTED,
                fingerprint,
                {"reconciliation_log_id": log.id},
                contact_id=request.contact_id,
                actor=request.reconciled_by_user_id,
            )
            return log

        async def remove_log(log):
            await self.store.remove_reconciliation(log.id, fingerprint)

        async def update_crm():
            try:
                contact = await self.ghl_client.get_contact(request.contact_id)
            except UpstreamError as e:
                raise StepFailed(
                    f"CRM contact lookup failed: {e.message}",
                    PropagationResult(False, GhlClient.COLLABORATOR, error=e.message, status_code=e.status_code),
                )

            membership_update = self._membership_update(payment, contact)
            validation = self.fee_schedule.validate_payment(contact.membership_type, payment.amount)
            note = build_reconciliation_note(membership_update, contact, validation, payment.hints())

            result = await self.ghl_client.update_membership(membership_update, note)
            result.details["membership_validation"] = validation
            if not result.success:
                raise StepFailed(f"CRM update failed: {result.error}", result)

            state["contact"] = contact
            state["membership_update"] = membership_update
            return result

        async def update_cms():
            email = state["contact"].email
            if not email:
                try:
                    email = await self.store.get_contact_email(request.contact_id)
                except SQLAlchemyError as e:
                    logger.error(f"Local contact email lookup failed: {e}", exc_info=True)
                    raise StepFailed(
                        "CMS update failed: contact email lookup failed",
                        PropagationResult(False, WordPressClient.COLLABORATOR, error="Contact email lookup failed"),
                    )
            result = await self.wordpress_client.update_membership(
                email, state["membership_update"].membership_type
            )
            if not result.success:
                raise StepFailed(f"CMS update failed: {result.error}", result)
            return result

        saga = Saga(
            "confirm_match",
            [
                SagaStep(STEP_LOCAL_LOG, record_log, remove_log),
                SagaStep(STEP_GHL, update_crm),
                SagaStep(STEP_WORDPRESS, update_cms),
            ],
            reraise=(ReconciliationError, SQLAlchemyError),
        )

        try:
            outcome = await saga.run()
        except ReconciliationError as e:
            logger.info(f"Confirmation rejected for {fingerprint[:12]}: {e.message}")
            raise
        except SQLAlchemyError as e:
            logger.error(f"Local reconciliation commit failed: {e}", exc_info=True)
            capture_exception(e, collaborator="database", transaction_fingerprint=fingerprint)
            raise InternalServiceError()

        log = outcome.results.get(STEP_LOCAL_LOG)
        result = ConfirmMatchResult(
            success=outcome.completed,
            reconciliation_log_id=log.id if log is not None else None,
            ghl_update_result=self._result_dict(outcome.results.get(STEP_GHL)),
            wordpress_update_result=self._result_dict(outcome.results.get(STEP_WORDPRESS)),
        )

        if outcome.completed:
            await self._finalize(fingerprint, state["membership_update"])
            log_reconciliation_event(
                ReconciliationAuditEvent.MATCH_CONFIRMED,
                fingerprint,
                {
                    "reconciliation_log_id": log.id,
                    "membership_type": state["membership_update"].membership_type,
                    "renewal_date": state["membership_update"].renewal_date.isoformat(),
                },
                contact_id=request.contact_id,
                actor=request.reconciled_by_user_id,
            )
            return result

        result.errors.append(outcome.error)
        result.rollback_performed = STEP_LOCAL_LOG in outcome.compensated

        log_reconciliation_event(
            ReconciliationAuditEvent.PROPAGATION_FAILED,
            fingerprint,
            {
                "failed_step": outcome.failed_step,
                "error": outcome.error,
                "reconciliation_log_id": result.reconciliation_log_id,
            },
            contact_id=request.contact_id,
            actor=request.reconciled_by_user_id,
            level=logging.ERROR,
        )
        capture_exception(
            UpstreamError(outcome.failed_step, outcome.error or "propagation failed"),
            collaborator=outcome.failed_step,
            transaction_fingerprint=fingerprint,
        )

        if result.rollback_performed:
            log_reconciliation_event(
                ReconciliationAuditEvent.COMPENSATION_PERFORMED,
                fingerprint,
                {"reconciliation_log_id": result.reconciliation_log_id},
                contact_id=request.contact_id,
            )
        elif STEP_LOCAL_LOG in outcome.compensation_errors:
            result.errors.append(f"Rollback failed: {outcome.compensation_errors[STEP_LOCAL_LOG]}")
            log_reconciliation_event(
                ReconciliationAuditEvent.COMPENSATION_FAILED,
                fingerprint,
                {
                    "reconciliation_log_id": result.reconciliation_log_id,
                    "error": outcome.compensation_errors[STEP_LOCAL_LOG],
                },
                contact_id=request.contact_id,
                level=logging.CRITICAL,
            )

        return result

    async def get_reconciliation_status(self, transaction_fingerprint: str) -> Dict[str, Any]:
        """
        Recorded state for a transaction.

        Used after a caller-side timeout, when the outcome of a
        confirmation is unknown, instead of blindly retrying it.
        """
        log = await self.store.get_log(transaction_fingerprint)
        return {
            "transaction_fingerprint": transaction_fingerprint,
            "reconciled": log is not None,
            "reconciliation_log": log.to_dict() if log else None,
            "pending_payment_status": await self.store.get_queue_status(transaction_fingerprint),
        }

    async def health_check(self) -> Dict[str, bool]:
        return {
            "ghl": await self.ghl_client.health_check(),
            "wordpress": await self.wordpress_client.health_check(),
            "database": await self.store.ping(),
        }

    def _membership_update(self, payment: NormalizedPayment, contact: ContactRecord) -> MembershipUpdate:
        return MembershipUpdate(
            contact_id=contact.id,
            membership_type=self.fee_schedule.resolve_membership_type(payment.amount, contact.membership_type),
            renewal_date=calculate_renewal_date(payment.payment_date, contact.renewal_date),
            payment_amount=payment.amount,
            payment_date=payment.payment_date,
            transaction_ref=payment.transaction_ref,
        )

    async def _finalize(self, fingerprint: str, membership_update: MembershipUpdate):
        # The reconciliation already succeeded; a failure here leaves the
        # queue entry in processing and is reported, not rolled back
        try:
            await self.store.finalize_reconciliation(fingerprint, membership_update)
        except SQLAlchemyError as e:
            logger.error(f"Failed to finalize reconciliation {fingerprint[:12]}: {e}", exc_info=True)
            capture_exception(e, collaborator="database", transaction_fingerprint=fingerprint)

    @staticmethod
    def _log_metadata(request: ConfirmMatchRequest) -> Dict[str, Any]:
        return {
            "confidence": request.confidence,
            "reasoning": request.reasoning,
            "description": request.payment.description,
            "notes": request.notes,
        }

    @staticmethod
    def _result_dict(result: Optional[PropagationResult]) -> Optional[Dict[str, Any]]:
        return result.to_dict() if result is not None else None
