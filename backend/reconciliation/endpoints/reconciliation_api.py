"""
Reconciliation API Endpoints

REST API for the operator console:
- GET /api/reconciliation/status - Module status
- GET /api/reconciliation/sources - Supported payment sources
- GET /api/reconciliation/health - CRM, CMS and database checks
- POST /api/reconciliation/upload - Import a CSV export
- GET /api/reconciliation/payments - Pending-payment queue
- POST /api/reconciliation/payments/{payment_id}/ignore - Ignore / unignore
- POST /api/reconciliation/matches - Suggestions for a payment
- GET /api/reconciliation/payments/{payment_id}/matches - Suggestions for a queued payment
- POST /api/reconciliation/confirm - Confirm a match and propagate it
- GET /api/reconciliation/payments/by-fingerprint/{fingerprint}/reconciliation - Recorded state
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from database.connection import get_db
from ingestion.models import NormalizedPayment, PaymentSourceType
from ingestion.parsers import CsvDialect, CsvParsingService
from ingestion.service import PendingPaymentImportService, PendingPaymentService
from middleware.internal_auth import InternalService, require_internal_service
from reconciliation.audit import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.contacts import ContactNormalizer
from reconciliation.directory import MemberDirectory
from reconciliation.matching_rules import build_member_rules
from reconciliation.membership import MembershipFeeSchedule
from reconciliation.services.matching_service import CandidateMatchingService
from reconciliation.services.reconciliation_service import ConfirmMatchRequest, ReconciliationService
from reconciliation.source_registry import source_registry
from reconciliation.store import ReconciliationStore
from services.ghl_client import GhlClient
from services.wordpress_client import WordPressClient
from utils.errors import (
    AlreadyReconciledError,
    ConflictError,
    ContactNotFoundError,
    InternalServiceError,
    PaymentNotFoundError,
    ValidationError,
)
from utils.validation_errors import raise_invalid_parameter, raise_validation_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


# ==================== Request Models ====================

class UploadRequest(BaseModel):
    """CSV export to import."""
    dialect: str = Field(..., description="CSV dialect (lloyds, stripe)")
    content: str = Field(..., description="Full file contents")
    uploaded_by_user_id: Optional[str] = Field(default=None, description="Operator performing the upload")


class PaymentData(BaseModel):
    """A normalized payment as shown to the operator."""
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

    def to_normalized(self) -> NormalizedPayment:
        return NormalizedPayment(**self.model_dump())


class FindMatchesRequest(BaseModel):
    payment: PaymentData


class ConfirmRequest(BaseModel):
    """Operator decision that a payment belongs to a contact."""
    payment_data: PaymentData
    contact_id: str
    reconciled_by_user_id: str
    confidence: Optional[float] = Field(default=None, description="Confidence of the accepted suggestion")
    reasoning: Optional[Dict[str, Any]] = Field(default=None, description="Signal breakdown of the accepted suggestion")
    notes: Optional[str] = None


class IgnoreRequest(BaseModel):
    ignore: bool = True


# ==================== Dependencies ====================

def get_ghl_client(settings: Settings = Depends(get_settings)) -> GhlClient:
    return GhlClient.from_settings(settings)


def get_wordpress_client(settings: Settings = Depends(get_settings)) -> WordPressClient:
    return WordPressClient.from_settings(settings)


def get_fee_schedule(settings: Settings = Depends(get_settings)) -> MembershipFeeSchedule:
    return MembershipFeeSchedule(settings.MEMBERSHIP_FEES, settings.MATCH_AMOUNT_TOLERANCE)


def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
    ghl_client: GhlClient = Depends(get_ghl_client),
    wordpress_client: WordPressClient = Depends(get_wordpress_client),
    fee_schedule: MembershipFeeSchedule = Depends(get_fee_schedule),
) -> ReconciliationService:
    return ReconciliationService(db, ghl_client, wordpress_client, fee_schedule)


def get_matching_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> CandidateMatchingService:
    normalizer = ContactNormalizer(settings.GHL_RENEWAL_DATE_FIELD_ID, settings.GHL_MEMBERSHIP_TYPE_FIELD_ID)
    return CandidateMatchingService(
        directory=MemberDirectory(db, normalizer),
        store=ReconciliationStore(db),
        rules=build_member_rules(settings),
        narrow_accept_confidence=settings.MATCH_NARROW_ACCEPT_CONFIDENCE,
        recently_reconciled_days=settings.MATCH_RECENTLY_RECONCILED_DAYS,
    )


def get_import_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> PendingPaymentImportService:
    return PendingPaymentImportService(db, CsvParsingService(settings.FINGERPRINT_SECRET))


def get_payment_service(db: AsyncSession = Depends(get_db)) -> PendingPaymentService:
    return PendingPaymentService(db)


# ==================== Endpoints ====================

@router.get("/status", summary="Module status")
async def get_module_status():
    """
    Get reconciliation module status.

    Returns configuration and availability information.
    """
    return {
        "module": "reconciliation",
        "status": "operational",
        "version": "1.0.0",
        "dialects": [d.value for d in CsvDialect if source_registry.is_dialect_enabled(d)],
        "sources_enabled": [s.value for s in source_registry.get_enabled_sources()],
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/sources", summary="List supported sources")
async def list_sources():
    """List all supported payment sources with their CSV dialects."""
    return {
        "sources": source_registry.to_dict(),
        "enabled_count": len(source_registry.get_enabled_sources())
    }


@router.get("/health", summary="Collaborator health")
async def collaborator_health(
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Reachability of the CRM, the CMS and the database.

    Always 200; each check is reported separately.
    """
    checks = await service.health_check()
    return {
        "status": "healthy" if all(checks.values()) else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/upload", summary="Import CSV export")
async def upload_csv(
    request: UploadRequest,
    import_service: PendingPaymentImportService = Depends(get_import_service),
    caller: InternalService = Depends(require_internal_service),
):
    """
    Import a bank or Stripe CSV export into the pending-payment queue.

    Re-uploading a file already imported adds nothing; its rows are
    counted in already_exists.

    Requires internal API key authentication.
    """
    try:
        dialect = CsvDialect(request.dialect.strip().lower())
    except ValueError:
        raise_invalid_parameter(
            "dialect",
            f"Invalid dialect. Valid values: {[d.value for d in CsvDialect]}",
            request.dialect
        )

    if not source_registry.is_dialect_enabled(dialect):
        raise_invalid_parameter("dialect", f"Dialect {dialect.value} is disabled", request.dialect)

    uploaded_by = request.uploaded_by_user_id or caller.name

    try:
        summary = await import_service.import_csv(dialect, request.content, uploaded_by)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except Exception as e:
        logger.error(f"CSV import failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal service error")

    if not summary["success"]:
        raise HTTPException(status_code=400, detail=summary)

    log_reconciliation_event(
        ReconciliationAuditEvent.IMPORT_COMPLETED,
        None,
        {
            "dialect": dialect.value,
            "imported": summary["imported"],
            "already_exists": summary["already_exists"],
            "skipped": summary["skipped"],
        },
        actor=uploaded_by,
    )

    return summary


@router.get("/payments", summary="List pending payments")
async def list_payments(
    status: Optional[str] = Query(default=None, description="Comma-separated statuses, or 'all'"),
    source: Optional[str] = Query(default=None, description="BANK_CSV or STRIPE_REPORT"),
    amount: Optional[Decimal] = Query(default=None, description="Amount, matched within 0.01"),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    search: Optional[str] = Query(default=None, description="Text search"),
    page: int = Query(default=1),
    limit: int = Query(default=20),
    payment_service: PendingPaymentService = Depends(get_payment_service),
):
    """
    Pending-payment queue, newest upload first.

    Defaults to pending and processing payments.
    """
    statuses = [s.strip() for s in status.split(",") if s.strip()] if status else None

    try:
        return await payment_service.list_payments(
            statuses=statuses,
            source=source,
            amount=amount,
            date_from=date_from,
            date_to=date_to,
            search=search,
            page=page,
            limit=limit,
        )
    except ValidationError as e:
        raise_validation_error(e)


@router.post("/payments/{payment_id}/ignore", summary="Ignore or unignore a payment")
async def ignore_payment(
    payment_id: str,
    request: IgnoreRequest,
    payment_service: PendingPaymentService = Depends(get_payment_service),
    _caller: InternalService = Depends(require_internal_service),
):
    """
    Move a payment between pending and ignored.

    Requires internal API key authentication.
    """
    try:
        if request.ignore:
            return await payment_service.ignore(payment_id)
        return await payment_service.unignore(payment_id)
    except PaymentNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.post("/matches", summary="Find contact suggestions")
async def find_matches(
    request: FindMatchesRequest,
    matching_service: CandidateMatchingService = Depends(get_matching_service),
):
    """
    Ranked contact suggestions for a payment.

    An empty suggestion list is a normal result.
    """
    result = await matching_service.find_matches(request.payment.to_normalized())
    return result.to_dict()


@router.get("/payments/{payment_id}/matches", summary="Suggestions for a queued payment")
async def find_matches_for_payment(
    payment_id: str,
    payment_service: PendingPaymentService = Depends(get_payment_service),
    matching_service: CandidateMatchingService = Depends(get_matching_service),
):
    try:
        payment = await payment_service.get_payment(payment_id)
    except PaymentNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    result = await matching_service.find_matches(payment.to_normalized())
    return result.to_dict()


@router.post("/confirm", summary="Confirm match")
async def confirm_match(
    request: ConfirmRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
    _caller: InternalService = Depends(require_internal_service),
):
    """
    Confirm that a payment belongs to a contact.

    The reconciliation log is committed first, then the CRM contact and
    the CMS user are updated. If either update fails the log is removed
    and the response (500) shows the partial results.

    Requires internal API key authentication.
    """
    confirm_request = ConfirmMatchRequest(
        payment=request.payment_data.to_normalized(),
        contact_id=request.contact_id,
        reconciled_by_user_id=request.reconciled_by_user_id,
        confidence=request.confidence,
        reasoning=request.reasoning,
        notes=request.notes,
    )

    try:
        result = await service.confirm_match(confirm_request)
    except ValidationError as e:
        raise_validation_error(e)
    except ContactNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except AlreadyReconciledError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except InternalServiceError as e:
        raise HTTPException(status_code=500, detail=e.message)

    if not result.success:
        return JSONResponse(status_code=500, content=jsonable_encoder(result.to_dict()))

    return result.to_dict()


@router.get(
    "/payments/by-fingerprint/{transaction_fingerprint}/reconciliation",
    summary="Recorded reconciliation state"
)
async def get_reconciliation_state(
    transaction_fingerprint: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Whether a transaction is reconciled.

    Use after a confirm request timed out on the caller side, before
    trying again.
    """
    return await service.get_reconciliation_status(transaction_fingerprint)
