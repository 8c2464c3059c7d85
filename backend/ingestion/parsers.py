"""
Payment Ingestion - CSV Parsing Service

Turns raw CSV exports into NormalizedPayment records.

Dialects:
- lloyds: bank statement export, credits only
- stripe: payment-processor report, payment rows only, with customer hints

Row-level problems (bad amount, bad date, missing value, wrong column
count, duplicate transaction within the file) skip the row and add an
error message; they never abort the parse. Non-payment rows (debits,
refunds, fees, failed charges) are filtered and counted as skipped.
"""

import csv
import io
import logging
import re
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from ingestion.fingerprint import generate_fingerprint, hash_account_identifier
from ingestion.models import CsvParseResult, NormalizedPayment, PaymentSourceType
from ingestion.normalization import (
    DateFormat,
    clean_email,
    clean_optional,
    clean_postcode,
    collapse_whitespace,
    detect_date_format,
    extract_payer_name,
    parse_amount,
    parse_date,
)

logger = logging.getLogger(__name__)


class CsvDialect(str, Enum):
    """Supported CSV export dialects"""
    LLOYDS = "lloyds"
    STRIPE = "stripe"


class RowError(ValueError):
    """A single row could not be turned into a payment."""


class HeaderError(ValueError):
    """The header row is missing or lacks required columns."""


def normalize_header(name: str) -> str:
    """'Created (UTC)' and 'created_utc' both become 'createdutc'."""
    return re.sub(r'[^a-z0-9]', '', (name or '').lower())


def read_rows(raw_text: str) -> Tuple[List[str], List[Tuple[int, List[str]]]]:
    """
    Split raw CSV text into a header and numbered data rows.

    Row numbers are file line numbers (header is row 1). Blank lines are
    dropped.
    """
    text = raw_text.lstrip('\ufeff')
    first_line = text.split('\n', 1)[0]
    if ',' in first_line:
        dialect = csv.excel
    else:
        try:
            dialect = csv.Sniffer().sniff(text[:4096], delimiters=';\t|')
        except csv.Error:
            dialect = csv.excel

    reader = csv.reader(io.StringIO(text), dialect=dialect)
    header: List[str] = []
    rows: List[Tuple[int, List[str]]] = []

    for cells in reader:
        if not any(c.strip() for c in cells):
            continue
        if not header:
            header = [c.strip() for c in cells]
            continue
        rows.append((reader.line_num, cells))

    return header, rows


# ==================== DIALECT PARSERS ====================

class DialectParser:
    """
    Base for dialect parsers.

    Subclasses declare COLUMN_ALIASES (field -> accepted headers) and
    REQUIRED_FIELDS, and implement parse_row().
    """

    dialect: CsvDialect
    source: PaymentSourceType
    COLUMN_ALIASES: Dict[str, List[str]] = {}
    REQUIRED_FIELDS: List[str] = []
    DATE_FIELD = "date"
    STRICT_COLUMN_COUNT = False

    def __init__(self, secret: str = ""):
        self.secret = secret

    def resolve_columns(self, header: Sequence[str]) -> Dict[str, int]:
        """Map logical fields to column indexes; raise HeaderError on missing required columns."""
        positions = {normalize_header(name): index for index, name in enumerate(header)}
        columns = {}
        for field, aliases in self.COLUMN_ALIASES.items():
            for alias in aliases:
                index = positions.get(normalize_header(alias))
                if index is not None:
                    columns[field] = index
                    break

        missing = [self.COLUMN_ALIASES[f][0] for f in self.REQUIRED_FIELDS if f not in columns]
        if missing:
            raise HeaderError(f"Missing required columns: {', '.join(missing)}")
        return columns

    def parse_row(self, values: Dict[str, str], date_format: DateFormat) -> Optional[NormalizedPayment]:
        """Return a payment, None for a filtered non-payment row, or raise RowError."""
        raise NotImplementedError

    def _require(self, values: Dict[str, str], field: str) -> str:
        value = collapse_whitespace(values.get(field))
        if not value:
            raise RowError(f"Missing {field}")
        return value

    def _positive_amount(self, raw: str) -> Decimal:
        amount = parse_amount(raw)
        if amount is None:
            raise RowError(f"Invalid amount '{raw}'")
        if amount <= 0:
            raise RowError(f"Amount must be positive, got {amount}")
        return amount

    def _date(self, raw: str, date_format: DateFormat):
        parsed = parse_date(raw, date_format)
        if parsed is None:
            raise RowError(f"Invalid date '{raw}'")
        return parsed


class LloydsBankParser(DialectParser):
    """
    Bank statement export.

    Only credits are payments; debit rows are filtered. The account is
    identified by a keyed hash of sort code + account number.
    """

    dialect = CsvDialect.LLOYDS
    source = PaymentSourceType.BANK_CSV
    COLUMN_ALIASES = {
        "date": ["Transaction Date"],
        "type": ["Transaction Type"],
        "sort_code": ["Sort Code"],
        "account_number": ["Account Number"],
        "description": ["Transaction Description"],
        "debit": ["Debit Amount"],
        "credit": ["Credit Amount"],
    }
    REQUIRED_FIELDS = ["date", "account_number", "description", "credit"]
    STRICT_COLUMN_COUNT = True

    def parse_row(self, values: Dict[str, str], date_format: DateFormat) -> Optional[NormalizedPayment]:
        raw_credit = collapse_whitespace(values.get("credit"))
        if not raw_credit:
            return None

        amount = self._positive_amount(raw_credit)
        payment_date = self._date(values.get("date", ""), date_format)
        reference = self._require(values, "description")
        account_number = self._require(values, "account_number")

        hashed_account = hash_account_identifier(self.secret, values.get("sort_code"), account_number)

        fingerprint = generate_fingerprint(
            self.secret,
            self.source,
            natural_key=f"{hashed_account}|{reference}",
            amount=amount,
            payment_date=payment_date,
            description=reference,
        )

        return NormalizedPayment(
            transaction_fingerprint=fingerprint,
            amount=amount,
            payment_date=payment_date,
            source=self.source,
            transaction_ref=reference,
            description=reference,
            hashed_account_identifier=hashed_account,
            customer_name=extract_payer_name(reference),
        )


class StripeReportParser(DialectParser):
    """
    Payment-processor report.

    Header names vary between export types, so each field accepts
    several aliases. Refunds, fees, payouts and unpaid charges are
    filtered by the type and status columns when present.
    """

    dialect = CsvDialect.STRIPE
    source = PaymentSourceType.STRIPE_REPORT
    COLUMN_ALIASES = {
        "id": ["id", "source_id", "transaction_id", "charge_id"],
        "amount": ["Amount", "gross", "Customer_facing_amount", "total"],
        "date": ["Created (UTC)", "created_utc", "created", "date", "timestamp"],
        "description": ["Description", "memo", "note", "details"],
        "customer_name": ["customer_name", "name", "Customer Name", "Card Name"],
        "customer_email": ["customer_email", "email", "Customer Email"],
        "card_address_line1": ["card_address_line1", "address_line1", "billing_address_line1", "Card Address Line1"],
        "card_address_postal_code": ["card_address_postal_code", "postal_code", "zip_code", "Card Address Zip"],
        "card_identifier": ["Card Fingerprint", "card_fingerprint", "Customer ID", "customer_id"],
        "type": ["Type", "reporting_category", "Transaction Type"],
        "status": ["Status"],
    }
    REQUIRED_FIELDS = ["id", "amount", "date"]

    PAYMENT_TYPES = {"charge", "payment"}
    PAID_STATUSES = {"paid", "succeeded", "available"}

    def parse_row(self, values: Dict[str, str], date_format: DateFormat) -> Optional[NormalizedPayment]:
        row_type = collapse_whitespace(values.get("type")).lower()
        if row_type and row_type not in self.PAYMENT_TYPES:
            return None

        status = collapse_whitespace(values.get("status")).lower()
        if status and status not in self.PAID_STATUSES:
            return None

        transaction_id = self._require(values, "id")
        amount = self._positive_amount(values.get("amount", ""))
        payment_date = self._date(values.get("date", ""), date_format)
        description = clean_optional(values.get("description")) or f"Stripe transaction {transaction_id}"

        card_identifier = clean_optional(values.get("card_identifier"))
        hashed_identifier = hash_account_identifier(self.secret, card_identifier) if card_identifier else None

        fingerprint = generate_fingerprint(
            self.secret,
            self.source,
            natural_key=transaction_id,
            amount=amount,
            payment_date=payment_date,
            description=description,
        )

        return NormalizedPayment(
            transaction_fingerprint=fingerprint,
            amount=amount,
            payment_date=payment_date,
            source=self.source,
            transaction_ref=transaction_id,
            description=description,
            hashed_account_identifier=hashed_identifier,
            customer_name=clean_optional(values.get("customer_name")),
            customer_email=clean_email(values.get("customer_email")),
            card_address_line1=clean_optional(values.get("card_address_line1")),
            card_address_postal_code=clean_postcode(values.get("card_address_postal_code")),
        )


# ==================== PARSING SERVICE ====================

class CsvParsingService:
    """
    Pure CSV -> NormalizedPayment transformation. Persistence is the
    import service's job.
    """

    PARSERS = {
        CsvDialect.LLOYDS: LloydsBankParser,
        CsvDialect.STRIPE: StripeReportParser,
    }

    def __init__(self, secret: str = ""):
        self.secret = secret

    def get_parser(self, dialect: CsvDialect) -> DialectParser:
        try:
            return self.PARSERS[CsvDialect(dialect)](self.secret)
        except (KeyError, ValueError):
            raise ValueError(f"Unsupported CSV dialect: {dialect}")

    def parse(self, dialect: CsvDialect, raw_text: str) -> CsvParseResult:
        """
        Parse a CSV export.

        Args:
            dialect: Export dialect (lloyds or stripe)
            raw_text: Full file contents

        Returns:
            CsvParseResult; success is False only for an empty file, a
            missing/invalid header, no data rows, or every row failing.
        """
        parser = self.get_parser(dialect)

        if not raw_text or not raw_text.strip():
            return CsvParseResult(success=False, errors=["File is empty"])

        try:
            header, rows = read_rows(raw_text)
        except csv.Error as e:
            return CsvParseResult(success=False, errors=[f"Unreadable CSV: {e}"])

        if not header:
            return CsvParseResult(success=False, errors=["No header row found"])

        try:
            columns = parser.resolve_columns(header)
        except HeaderError as e:
            return CsvParseResult(success=False, errors=[str(e)])

        if not rows:
            return CsvParseResult(success=False, errors=["No data rows found"])

        date_index = columns[parser.DATE_FIELD]
        detection = detect_date_format(
            cells[date_index] for _, cells in rows if date_index < len(cells)
        )
        date_format = detection.format

        result = CsvParseResult(success=True, processed=len(rows))
        seen: Dict[str, int] = {}
        failed = 0

        for row_number, cells in rows:
            if parser.STRICT_COLUMN_COUNT and len(cells) != len(header):
                result.errors.append(
                    f"Row {row_number}: expected {len(header)} columns, found {len(cells)}"
                )
                failed += 1
                continue

            values = {
                field: cells[index] if index < len(cells) else ""
                for field, index in columns.items()
            }

            try:
                payment = parser.parse_row(values, date_format)
            except RowError as e:
                result.errors.append(f"Row {row_number}: {e}")
                failed += 1
                continue

            if payment is None:
                result.filtered += 1
                continue

            first_row = seen.get(payment.transaction_fingerprint)
            if first_row is not None:
                result.errors.append(f"Row {row_number}: duplicate of row {first_row}")
                failed += 1
                continue

            seen[payment.transaction_fingerprint] = row_number
            result.data.append(payment)

        result.skipped = failed + result.filtered

        if not result.data and failed:
            result.success = False
            result.errors.insert(0, "No valid payment rows found")

        logger.info(
            f"Parsed {parser.dialect.value} CSV: {len(result.data)} payments, {result.filtered} filtered, "
            f"{failed} failed (date format {date_format.value}/{detection.confidence.value})"
        )

        return result
