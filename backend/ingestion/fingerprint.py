"""
Payment Ingestion - Fingerprints

Deterministic dedup keys and one-way account identifier hashes.

Both are HMAC-SHA256 digests keyed with FINGERPRINT_SECRET, so the same
transaction always yields the same key while raw identifiers cannot be
recovered from what is stored.
"""

import hashlib
import hmac
import re
from datetime import date
from decimal import Decimal
from typing import Optional

from ingestion.normalization import TWO_PLACES, canonical_text
from ingestion.models import PaymentSourceType

FIELD_SEPARATOR = "\x1f"


def _digest(secret: str, message: str) -> str:
    return hmac.new(secret.encode('utf-8'), message.encode('utf-8'), hashlib.sha256).hexdigest()


def generate_fingerprint(
    secret: str,
    source: PaymentSourceType,
    natural_key: str,
    amount: Decimal,
    payment_date: date,
    description: Optional[str] = None,
) -> str:
    """
    Fingerprint over (source, natural key, amount, date, description).

    Text parts are whitespace-collapsed and case-folded and the amount is
    fixed to two places, so re-exports of the same statement with
    different spacing or column order produce the same key.
    """
    canonical = FIELD_SEPARATOR.join([
        source.value,
        canonical_text(natural_key),
        str(amount.quantize(TWO_PLACES)),
        payment_date.isoformat(),
        canonical_text(description),
    ])
    return _digest(secret, canonical)


def hash_account_identifier(secret: str, *parts: Optional[str]) -> Optional[str]:
    """
    One-way hash of a bank account (sort code + account number) or card
    token. Returns None when no identifying characters are present.
    """
    joined = "".join(re.sub(r'[\s\-]', '', canonical_text(p)) for p in parts if p)
    if not joined:
        return None
    return _digest(secret, f"account{FIELD_SEPARATOR}{joined}")
