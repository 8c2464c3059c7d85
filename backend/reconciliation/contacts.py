"""
Contact Normalization

The CRM returns custom fields either as a list of {"id", "value"}
entries or as an object keyed by field id, sometimes nested under a
"contact" key. Everything entering matching or reconciliation goes
through ContactNormalizer first and comes out as a ContactRecord.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from database.contact_models import ContactDB
from ingestion.normalization import DateFormat, collapse_whitespace, parse_amount, parse_date
from reconciliation.membership import normalize_membership_type


@dataclass
class ContactRecord:
    """Fixed internal view of a member contact."""
    id: str
    full_name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    membership_type: Optional[str] = None
    renewal_date: Optional[date] = None
    last_payment_amount: Optional[Decimal] = None
    last_activity_at: Optional[datetime] = None

    def summary(self) -> Dict[str, Any]:
        """Display fields carried on each suggestion."""
        return {
            "name": self.full_name,
            "email": self.email,
            "membership_type": self.membership_type,
        }


def normalize_custom_fields(raw: Any) -> Dict[str, Any]:
    """
    Flatten any custom-field shape into {field_id: value}.

    Unknown shapes yield an empty mapping.
    """
    if isinstance(raw, dict):
        return {str(k): v for k, v in raw.items()}

    if isinstance(raw, list):
        fields = {}
        for entry in raw:
            if not isinstance(entry, dict) or "id" not in entry:
                continue
            value = entry.get("value", entry.get("fieldValue", entry.get("field_value")))
            fields[str(entry["id"])] = value
        return fields

    return {}


def _as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        # epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).date()
    return parse_date(str(value), DateFormat.UK)


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class ContactNormalizer:
    """
    Maps CRM payloads and directory rows to ContactRecord.

    Args:
        renewal_date_field_id: CRM custom field holding the renewal date
        membership_type_field_id: CRM custom field holding the membership type
    """

    def __init__(self, renewal_date_field_id: str, membership_type_field_id: str):
        self.renewal_date_field_id = renewal_date_field_id
        self.membership_type_field_id = membership_type_field_id

    def from_crm(self, payload: Dict[str, Any]) -> ContactRecord:
        """Normalize a CRM contact response (optionally wrapped in {"contact": ...})."""
        contact = payload.get("contact") if isinstance(payload.get("contact"), dict) else payload

        custom_fields = normalize_custom_fields(
            contact.get("customField") or contact.get("customFields") or contact.get("customData")
        )

        first_name = collapse_whitespace(contact.get("firstName") or contact.get("first_name")) or None
        last_name = collapse_whitespace(contact.get("lastName") or contact.get("last_name")) or None

        return ContactRecord(
            id=str(contact.get("id") or contact.get("contact_id") or ""),
            full_name=self._full_name(contact.get("name") or contact.get("contactName"), first_name, last_name),
            first_name=first_name,
            last_name=last_name,
            email=(contact.get("email") or "").strip().lower() or None,
            membership_type=normalize_membership_type(custom_fields.get(self.membership_type_field_id)),
            renewal_date=_as_date(custom_fields.get(self.renewal_date_field_id)),
            last_activity_at=_as_datetime(contact.get("lastActivity") or contact.get("dateUpdated")),
        )

    def from_row(self, row: ContactDB) -> ContactRecord:
        """Normalize a directory row; typed columns win over raw custom fields."""
        custom_fields = normalize_custom_fields(row.custom_fields)

        membership_type = row.membership_type or custom_fields.get(self.membership_type_field_id)
        renewal_date = row.renewal_date or _as_date(custom_fields.get(self.renewal_date_field_id))

        last_payment = row.last_payment_amount
        if last_payment is not None:
            last_payment = parse_amount(last_payment)

        return ContactRecord(
            id=row.id,
            full_name=self._full_name(row.name, row.first_name, row.last_name),
            first_name=row.first_name,
            last_name=row.last_name,
            email=(row.email or "").strip().lower() or None,
            membership_type=normalize_membership_type(membership_type),
            renewal_date=renewal_date,
            last_payment_amount=last_payment,
            last_activity_at=_as_datetime(row.last_activity_at),
        )

    @staticmethod
    def _full_name(name: Optional[str], first_name: Optional[str], last_name: Optional[str]) -> str:
        joined = collapse_whitespace(f"{first_name or ''} {last_name or ''}")
        return joined or collapse_whitespace(name)
