"""
Payment Ingestion - Field Normalization

Pure helpers shared by the CSV dialects:
- Amount parsing to fixed-point Decimal
- Whole-file date format detection (UK / US / ISO)
- Date parsing against the detected format
- Text and hint cleanup
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Optional


# ==================== CONSTANTS ====================

TWO_PLACES = Decimal("0.01")

MIN_YEAR = 1900
MAX_YEAR = 2100

_ISO_DATE = re.compile(r'^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$')
_NUMERIC_DATE = re.compile(r'^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2}|\d{4})(?:\s.*)?$')

# Formats with month names are unambiguous
NAMED_MONTH_FORMATS = [
    "%d %b %Y",        # 08 Jan 2025
    "%d %B %Y",        # 08 January 2025
    "%d-%b-%Y",
    "%d-%b-%y",
    "%b %d, %Y",       # Jan 08, 2025
]

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

POSTCODE_MIN_LENGTH = 3
POSTCODE_MAX_LENGTH = 10


class DateFormat(str, Enum):
    """Day/month ordering of numeric dates in a file"""
    UK = "UK"           # DD/MM/YYYY
    US = "US"           # MM/DD/YYYY
    ISO = "ISO"         # YYYY-MM-DD
    UNKNOWN = "UNKNOWN"


class DetectionConfidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass
class DateFormatDetection:
    """Outcome of scanning every date value in a file."""
    format: DateFormat
    confidence: DetectionConfidence
    uk_indicators: int = 0
    us_indicators: int = 0
    iso_count: int = 0
    ambiguous_count: int = 0


# ==================== AMOUNTS ====================

def parse_amount(value) -> Optional[Decimal]:
    """
    Parse an amount string into a two-place Decimal.

    Accepts currency symbols, thousands separators, parentheses for
    negatives and CR/DR suffixes. Returns None when unparseable.
    """
    if isinstance(value, Decimal):
        return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    if isinstance(value, (int, float)):
        return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    if value is None:
        return None

    value_str = str(value).strip()
    if not value_str:
        return None

    value_str = re.sub(r'[$€£¥\s]', '', value_str)
    value_str = value_str.replace(',', '')

    if value_str.startswith('(') and value_str.endswith(')'):
        value_str = '-' + value_str[1:-1]

    if value_str.upper().endswith('CR'):
        value_str = value_str[:-2]
    elif value_str.upper().endswith('DR'):
        value_str = '-' + value_str[:-2]

    try:
        amount = Decimal(value_str)
    except InvalidOperation:
        return None

    if not amount.is_finite():
        return None

    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


# ==================== DATES ====================

def _valid_parts(day: int, month: int, year: int) -> bool:
    return 1 <= day <= 31 and 1 <= month <= 12 and MIN_YEAR <= year <= MAX_YEAR


def _expand_year(year: str) -> int:
    value = int(year)
    if len(year) == 2:
        value += 2000
    return value


def detect_date_format(values: Iterable[str]) -> DateFormatDetection:
    """
    Decide how to read numeric dates by looking at the whole column.

    A first component above 12 can only be a day (UK), a second component
    above 12 can only be a day (US). When nothing disambiguates, UK wins.
    """
    uk = us = iso = ambiguous = 0

    for raw in values:
        value = (raw or "").strip()
        if not value:
            continue

        if _ISO_DATE.match(value):
            iso += 1
            continue

        match = _NUMERIC_DATE.match(value)
        if not match:
            continue

        first, second = int(match.group(1)), int(match.group(2))
        if first > 12 and second <= 12:
            uk += 1
        elif second > 12 and first <= 12:
            us += 1
        else:
            ambiguous += 1

    if uk == 0 and us == 0:
        if iso and not ambiguous:
            return DateFormatDetection(DateFormat.ISO, DetectionConfidence.HIGH, uk, us, iso, ambiguous)
        if ambiguous:
            return DateFormatDetection(DateFormat.UK, DetectionConfidence.LOW, uk, us, iso, ambiguous)
        return DateFormatDetection(DateFormat.UNKNOWN, DetectionConfidence.LOW, uk, us, iso, ambiguous)

    if uk and not us:
        return DateFormatDetection(DateFormat.UK, DetectionConfidence.HIGH, uk, us, iso, ambiguous)
    if us and not uk:
        return DateFormatDetection(DateFormat.US, DetectionConfidence.HIGH, uk, us, iso, ambiguous)

    # Conflicting indicators: majority, ties to UK
    chosen = DateFormat.US if us > uk else DateFormat.UK
    return DateFormatDetection(chosen, DetectionConfidence.LOW, uk, us, iso, ambiguous)


def parse_date(value, date_format: DateFormat = DateFormat.UK) -> Optional[date]:
    """
    Parse a date using the file's detected format.

    ISO dates (optionally with a time part) and month-name dates are read
    regardless of the detected format. Returns None when unparseable.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    value_str = (value or "").strip() if isinstance(value, str) else ""
    if not value_str:
        return None

    match = _ISO_DATE.match(value_str)
    if match:
        year, month, day = int(match.group(1)), int(match.group(2)), int(match.group(3))
        return _build_date(year, month, day)

    match = _NUMERIC_DATE.match(value_str)
    if match:
        first, second = int(match.group(1)), int(match.group(2))
        year = _expand_year(match.group(3))
        if date_format == DateFormat.US:
            month, day = first, second
        else:
            day, month = first, second
        return _build_date(year, month, day)

    for fmt in NAMED_MONTH_FORMATS:
        try:
            parsed = datetime.strptime(value_str, fmt).date()
        except ValueError:
            continue
        return parsed if MIN_YEAR <= parsed.year <= MAX_YEAR else None

    return None


def _build_date(year: int, month: int, day: int) -> Optional[date]:
    if not _valid_parts(day, month, year):
        return None
    try:
        return date(year, month, day)
    except ValueError:
        # e.g. 31/02
        return None


# ==================== TEXT ====================

def collapse_whitespace(value: Optional[str]) -> str:
    """Trim and collapse internal runs of whitespace."""
    return re.sub(r'\s+', ' ', value or '').strip()


def canonical_text(value: Optional[str]) -> str:
    """Whitespace-collapsed, case-folded form used inside fingerprints."""
    return collapse_whitespace(value).casefold()


def clean_email(value: Optional[str]) -> Optional[str]:
    """Lower-cased email, or None when missing or malformed."""
    email = collapse_whitespace(value).lower()
    if not email or not EMAIL_PATTERN.match(email):
        return None
    return email


def clean_postcode(value: Optional[str]) -> Optional[str]:
    postcode = collapse_whitespace(value).upper()
    if not POSTCODE_MIN_LENGTH <= len(postcode) <= POSTCODE_MAX_LENGTH:
        return None
    return postcode


def clean_optional(value: Optional[str]) -> Optional[str]:
    text = collapse_whitespace(value)
    return text or None


# Words banks and members add to transfer references around the payer name
REFERENCE_STOPWORDS = {
    "MEMBERSHIP", "MEMBER", "PAYMENT", "RENEWAL", "FEE", "FEES", "ANNUAL",
    "SUBS", "SUBSCRIPTION", "TRANSFER", "BANK", "FROM", "REF", "FPI", "BGC", "TFR",
}


def extract_payer_name(reference: Optional[str]) -> Optional[str]:
    """
    Payer name from a bank transfer reference.

    'J SMITH MEMBERSHIP 2025' -> 'J SMITH'. Digits and stop-words are
    dropped; None when nothing name-like is left.
    """
    words = [
        word for word in re.split(r'[^A-Za-z\'\-]+', reference or '')
        if re.search(r'[A-Za-z]', word) and word.upper() not in REFERENCE_STOPWORDS
    ]
    return ' '.join(words) or None
