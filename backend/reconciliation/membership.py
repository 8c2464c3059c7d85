"""
Membership Rules

Derives the membership facts written to the CRM and CMS after a
payment is confirmed:
- Canonical membership type names
- Fee tiers (amount -> membership type)
- Renewal date (one year from payment, never moved backwards)
- CMS role for a membership type
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional


FULL = "Full"
ASSOCIATE = "Associate"
NEWSLETTER_ONLY = "Newsletter Only"
EX_MEMBER = "Ex Member"

WORDPRESS_ROLES = {
    FULL: "full_member",
    ASSOCIATE: "associate_member",
    NEWSLETTER_ONLY: "subscriber",
    EX_MEMBER: "subscriber",
}
DEFAULT_WORDPRESS_ROLE = "subscriber"

# Membership types that keep CMS access active
ACTIVE_MEMBERSHIP_TYPES = {FULL, ASSOCIATE}


def normalize_membership_type(value: Any) -> Optional[str]:
    """Map free-text membership values onto the canonical names."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    lowered = text.lower()
    if lowered.startswith("full"):
        return FULL
    if lowered.startswith("associate"):
        return ASSOCIATE
    if lowered.startswith("newsletter"):
        return NEWSLETTER_ONLY
    if lowered.startswith("ex"):
        return EX_MEMBER
    return text


def wordpress_role_for(membership_type: Optional[str]) -> str:
    return WORDPRESS_ROLES.get(normalize_membership_type(membership_type), DEFAULT_WORDPRESS_ROLE)


def add_one_year(value: date) -> date:
    try:
        return value.replace(year=value.year + 1)
    except ValueError:
        # 29 February
        return value.replace(year=value.year + 1, day=28)


def calculate_renewal_date(payment_date: date, current_renewal: Optional[date] = None) -> date:
    """
    Renewal date after a payment: one year from the payment date, unless
    the contact already renews later than that.
    """
    renewal = add_one_year(payment_date)
    if current_renewal and current_renewal > renewal:
        return current_renewal
    return renewal


class MembershipFeeSchedule:
    """
    Annual fee per membership type.

    Args:
        fees: Canonical membership type -> fee
        tolerance: Difference still treated as paying that fee
    """

    def __init__(self, fees: Dict[str, Decimal], tolerance: Decimal = Decimal("0.01")):
        self.fees = {normalize_membership_type(k): Decimal(str(v)) for k, v in fees.items()}
        self.tolerance = tolerance

    def fee_for(self, membership_type: Optional[str]) -> Optional[Decimal]:
        return self.fees.get(normalize_membership_type(membership_type))

    def membership_type_for_amount(self, amount: Decimal) -> Optional[str]:
        for membership_type, fee in self.fees.items():
            if abs(fee - amount) <= self.tolerance:
                return membership_type
        return None

    def resolve_membership_type(self, amount: Decimal, current_type: Optional[str]) -> Optional[str]:
        """Fee tier matching the amount, else the contact's current type."""
        return self.membership_type_for_amount(amount) or normalize_membership_type(current_type)

    def validate_payment(self, membership_type: Optional[str], amount: Decimal) -> Dict[str, Any]:
        """
        Check a payment against the contact's recorded tier.

        Never blocks a confirmation; the result goes into the CRM note so
        an unexpected amount is visible on the contact.
        """
        membership_type = normalize_membership_type(membership_type)
        result = {
            "is_valid": False,
            "membership_type": membership_type,
            "expected_amount": None,
            "actual_amount": str(amount),
            "warning": None,
        }

        if not membership_type:
            result["warning"] = "Contact has no membership type recorded"
            return result

        fee = self.fee_for(membership_type)
        if fee is None:
            result["warning"] = f"Unknown membership type: {membership_type}"
            return result

        result["expected_amount"] = str(fee)
        result["is_valid"] = abs(fee - amount) <= self.tolerance
        if not result["is_valid"]:
            result["warning"] = f"Payment amount {amount} does not match the {membership_type} fee {fee}"
        return result

    def to_dict(self) -> Dict[str, str]:
        return {k: str(v) for k, v in self.fees.items()}


@dataclass
class MembershipUpdate:
    """Membership facts propagated to the CRM for one confirmed payment."""
    contact_id: str
    membership_type: Optional[str]
    renewal_date: date
    payment_amount: Decimal
    payment_date: date
    transaction_ref: str
    paid_status: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "membership_type": self.membership_type,
            "renewal_date": self.renewal_date.isoformat(),
            "payment_amount": str(self.payment_amount),
            "payment_date": self.payment_date.isoformat(),
            "transaction_ref": self.transaction_ref,
            "paid_status": self.paid_status,
        }
