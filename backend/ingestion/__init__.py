"""
Payment Ingestion Module

Parses bank and payment-processor CSV exports and maintains the
pending-payment queue.
"""

from .models import (
    NormalizedPayment,
    CsvParseResult,
    PendingPaymentDB,
    PendingPaymentStatus,
    PaymentSourceType,
)
from .parsers import CsvDialect, CsvParsingService
from .service import PendingPaymentImportService, PendingPaymentService

__all__ = [
    "NormalizedPayment",
    "CsvParseResult",
    "PendingPaymentDB",
    "PendingPaymentStatus",
    "PaymentSourceType",
    "CsvDialect",
    "CsvParsingService",
    "PendingPaymentImportService",
    "PendingPaymentService",
]
