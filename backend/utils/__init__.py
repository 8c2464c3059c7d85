"""
Utils Package

Provides utility modules for:
- errors: error taxonomy shared by ingestion and reconciliation
- validation_errors: structured 400 bodies for the HTTP layer
"""

from .errors import (
    ReconciliationError,
    ValidationError,
    ConflictError,
    AlreadyReconciledError,
    NotFoundError,
    ContactNotFoundError,
    PaymentNotFoundError,
    UpstreamError,
    InternalServiceError,
)

__all__ = [
    'ReconciliationError',
    'ValidationError',
    'ConflictError',
    'AlreadyReconciledError',
    'NotFoundError',
    'ContactNotFoundError',
    'PaymentNotFoundError',
    'UpstreamError',
    'InternalServiceError',
]
