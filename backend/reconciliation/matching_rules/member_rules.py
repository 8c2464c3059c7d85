"""
Member Matching Rules

Scores how likely a contact is the payer of a payment.

Signals (each 0..1, weighted):
- email (0.5): exact case-insensitive match dominates; otherwise half of
  the local-part similarity
- name (0.3): order-tolerant fuzzy match, accents and case ignored
- amount (0.2): 1.0 within tolerance of the contact's last payment or
  tier fee, decaying linearly to 0 at the cutoff
- payment_source (0.4): the payment's hashed account/card is already
  mapped to this contact

Absent signals are left out of the weighted average. A contact needs an
identity signal (email, name or payment source) scoring at least
min_identity_score; amount only adds to a contact that already qualifies
on identity, so amount alone never produces a suggestion.

Ordering: confidence desc, then most recent activity, then contact id.
"""

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from thefuzz import fuzz

from ingestion.models import NormalizedPayment
from reconciliation.contacts import ContactRecord
from reconciliation.membership import MembershipFeeSchedule


SIGNAL_EMAIL = "email_match"
SIGNAL_NAME = "name_match"
SIGNAL_AMOUNT = "amount_match"
SIGNAL_PAYMENT_SOURCE = "payment_source_match"

IDENTITY_SIGNALS = (SIGNAL_EMAIL, SIGNAL_NAME, SIGNAL_PAYMENT_SOURCE)


@dataclass
class ContactMatch:
    """
    A suggested contact for a payment.
    """
    contact_id: str
    confidence: float
    reasoning: Dict[str, Dict[str, Any]]
    contact: Dict[str, Any]
    last_activity_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "contact": self.contact,
        }


@dataclass
class MatchingResult:
    """
    Ranked suggestions for one payment.
    """
    transaction_fingerprint: str
    suggestions: List[ContactMatch] = field(default_factory=list)
    total_matches: int = 0
    processing_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_fingerprint": self.transaction_fingerprint,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "total_matches": self.total_matches,
            "processing_time_ms": self.processing_time_ms,
        }


def normalize_name(value: Optional[str]) -> str:
    """'José  O'Brien' -> 'jose obrien'"""
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    letters = re.sub(r"[^a-z\s]", "", stripped.casefold())
    return re.sub(r"\s+", " ", letters).strip()


class MemberMatchingRules:
    """
    Scoring engine for payment -> contact suggestions.

    Args:
        fee_schedule: Membership fees used for the amount signal
        min_confidence: Suggestions below this are dropped
        max_suggestions: Length cap on the ranked list
        amount_tolerance: Difference still scored as an exact amount
        amount_cutoff: Difference at which the amount score reaches 0
        min_identity_score: Best identity signal a contact needs to be scored
    """

    # Scoring weights
    WEIGHT_EMAIL = 0.5
    WEIGHT_NAME = 0.3
    WEIGHT_AMOUNT = 0.2
    WEIGHT_PAYMENT_SOURCE = 0.4

    # Partial email similarity never counts for more than half
    EMAIL_PARTIAL_FACTOR = 0.5

    def __init__(
        self,
        fee_schedule: MembershipFeeSchedule,
        min_confidence: float = 0.3,
        max_suggestions: int = 5,
        amount_tolerance: Decimal = Decimal("0.01"),
        amount_cutoff: Decimal = Decimal("10.00"),
        min_identity_score: float = 0.5,
    ):
        self.fee_schedule = fee_schedule
        self.min_confidence = min_confidence
        self.max_suggestions = max_suggestions
        self.amount_tolerance = amount_tolerance
        self.amount_cutoff = amount_cutoff
        self.min_identity_score = min_identity_score

    # ==================== SCORING ====================

    def score_contact(
        self,
        payment: NormalizedPayment,
        contact: ContactRecord,
        payment_source_contact_id: Optional[str] = None,
    ) -> Optional[ContactMatch]:
        """
        Score one contact.

        Returns None when no identity signal reaches min_identity_score.
        """
        signals = {
            SIGNAL_EMAIL: (self.score_email(payment.customer_email, contact.email), self.WEIGHT_EMAIL),
            SIGNAL_NAME: (self.score_name(payment.customer_name, contact.full_name), self.WEIGHT_NAME),
            SIGNAL_AMOUNT: (self.score_amount(payment.amount, contact), self.WEIGHT_AMOUNT),
            SIGNAL_PAYMENT_SOURCE: (
                1.0 if payment_source_contact_id and payment_source_contact_id == contact.id else None,
                self.WEIGHT_PAYMENT_SOURCE,
            ),
        }

        identity = [signals[name][0] for name in IDENTITY_SIGNALS if signals[name][0] is not None]
        if not identity or max(identity) < self.min_identity_score:
            return None

        weighted = 0.0
        total_weight = 0.0
        reasoning = {}
        for name, (score, weight) in signals.items():
            if score is None:
                reasoning[name] = {"score": None, "weight": 0.0}
                continue
            weighted += score * weight
            total_weight += weight
            reasoning[name] = {"score": round(score, 4), "weight": weight}

        confidence = min(max(weighted / total_weight, 0.0), 1.0)

        return ContactMatch(
            contact_id=contact.id,
            confidence=round(confidence, 4),
            reasoning=reasoning,
            contact=contact.summary(),
            last_activity_at=contact.last_activity_at,
        )

    def score_email(self, hint: Optional[str], email: Optional[str]) -> Optional[float]:
        if not hint or not email:
            return None

        hint = hint.strip().lower()
        email = email.strip().lower()
        if hint == email:
            return 1.0

        hint_local = hint.split("@", 1)[0]
        email_local = email.split("@", 1)[0]
        if not hint_local or not email_local:
            return 0.0
        return fuzz.ratio(hint_local, email_local) / 100 * self.EMAIL_PARTIAL_FACTOR

    def score_name(self, hint: Optional[str], full_name: Optional[str]) -> Optional[float]:
        hint = normalize_name(hint)
        full_name = normalize_name(full_name)
        if not hint or not full_name:
            return None
        if hint == full_name:
            return 1.0

        # token_set scores a lone surname as a full match; keep it below exact
        similarity = max(
            fuzz.token_sort_ratio(hint, full_name),
            fuzz.token_set_ratio(hint, full_name) * 0.9,
        )
        return similarity / 100

    def score_amount(self, amount: Decimal, contact: ContactRecord) -> Optional[float]:
        references = self._reference_amounts(contact)
        if not references:
            return None

        difference = min(abs(amount - ref) for ref in references)
        if difference <= self.amount_tolerance:
            return 1.0
        if difference >= self.amount_cutoff:
            return 0.0

        span = self.amount_cutoff - self.amount_tolerance
        return float(1 - (difference - self.amount_tolerance) / span)

    def _reference_amounts(self, contact: ContactRecord) -> List[Decimal]:
        """Contact's last payment and tier fee; every known fee when neither is recorded."""
        references = []
        if contact.last_payment_amount is not None:
            references.append(contact.last_payment_amount)
        fee = self.fee_schedule.fee_for(contact.membership_type)
        if fee is not None:
            references.append(fee)
        return references or list(self.fee_schedule.fees.values())

    # ==================== RANKING ====================

    def rank(self, matches: List[ContactMatch]) -> List[ContactMatch]:
        """
        Drop matches under the floor and order the rest.
        """
        kept = [m for m in matches if m.confidence >= self.min_confidence]
        kept.sort(key=lambda m: m.contact_id)
        # Stable sorts: activity (missing last), then confidence
        kept.sort(key=lambda m: m.last_activity_at.timestamp() if m.last_activity_at else float("-inf"), reverse=True)
        kept.sort(key=lambda m: m.confidence, reverse=True)
        return kept


def build_member_rules(settings) -> MemberMatchingRules:
    """Rules configured from Settings."""
    return MemberMatchingRules(
        fee_schedule=MembershipFeeSchedule(settings.MEMBERSHIP_FEES, settings.MATCH_AMOUNT_TOLERANCE),
        min_confidence=settings.MATCH_MIN_CONFIDENCE,
        max_suggestions=settings.MATCH_MAX_SUGGESTIONS,
        amount_tolerance=settings.MATCH_AMOUNT_TOLERANCE,
        amount_cutoff=settings.MATCH_AMOUNT_CUTOFF,
        min_identity_score=settings.MATCH_MIN_IDENTITY_SCORE,
    )
