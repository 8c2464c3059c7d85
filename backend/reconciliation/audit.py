"""
Reconciliation audit events, logged as structured records.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("reconciliation.audit")


class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    IMPORT_COMPLETED = "reconciliation.import_completed"
    CANDIDATES_FOUND = "reconciliation.candidates_found"
    LOG_COMMITTED = "reconciliation.log_committed"
    PROPAGATION_FAILED = "reconciliation.propagation_failed"
    COMPENSATION_PERFORMED = "reconciliation.compensation_performed"
    COMPENSATION_FAILED = "reconciliation.compensation_failed"
    MATCH_CONFIRMED = "reconciliation.match_confirmed"
    PAYMENT_SOURCE_REASSIGNED = "payment_source.reassigned"


def log_reconciliation_event(
    event_type: str,
    transaction_fingerprint: Optional[str],
    details: Dict[str, Any],
    contact_id: Optional[str] = None,
    actor: str = "system",
    level: int = logging.INFO,
):
    """Log reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "transaction_fingerprint": transaction_fingerprint,
        "contact_id": contact_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    logger.log(level, f"Reconciliation event: {event_type}", extra=log_entry)
