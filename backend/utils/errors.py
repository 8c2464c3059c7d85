"""
Error taxonomy for payment import and reconciliation.

Callers distinguish conditions by class (or by `code` once serialized):
- ValidationError: bad input, never retried
- ConflictError / AlreadyReconciledError: already processed
- NotFoundError / ContactNotFoundError / PaymentNotFoundError
- UpstreamError: CRM/CMS call failed, names the collaborator
- InternalServiceError: storage or unexpected failure, detail only in logs
"""

from typing import Optional


class ReconciliationError(Exception):
    """Base error for import/matching/reconciliation."""

    code = "reconciliation_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(ReconciliationError):
    """Raised for invalid confirmation or query input."""

    code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        return {"error": self.code, "parameter": self.field, "message": self.message}


class ConflictError(ReconciliationError):
    """Raised when the requested transition is no longer possible."""

    code = "conflict"


class AlreadyReconciledError(ConflictError):
    """Raised when a reconciliation log already exists for the fingerprint."""

    code = "already_reconciled"

    def __init__(self, transaction_fingerprint: str):
        super().__init__("Transaction has already been reconciled")
        self.transaction_fingerprint = transaction_fingerprint


class NotFoundError(ReconciliationError):
    code = "not_found"


class ContactNotFoundError(NotFoundError):
    code = "contact_not_found"

    def __init__(self, contact_id: str):
        super().__init__(f"Contact not found: {contact_id}")
        self.contact_id = contact_id


class PaymentNotFoundError(NotFoundError):
    code = "payment_not_found"

    def __init__(self, payment_id: str):
        super().__init__(f"Payment not found: {payment_id}")
        self.payment_id = payment_id


class UpstreamError(ReconciliationError):
    """
    Raised when an external collaborator call fails.

    status_code is None for transport failures (timeouts, refused
    connections) and for responses that could not be decoded; `transient`
    tells those two apart.
    """

    code = "upstream_error"

    def __init__(
        self,
        collaborator: str,
        message: str,
        status_code: Optional[int] = None,
        transient: bool = False,
    ):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator
        self.status_code = status_code
        self.transient = transient

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "collaborator": self.collaborator,
            "status_code": self.status_code,
            "message": self.message,
        }


class InternalServiceError(ReconciliationError):
    """Storage or unexpected failure; the caller only sees a generic message."""

    code = "internal_error"

    def __init__(self, message: str = "Internal service error"):
        super().__init__(message)
