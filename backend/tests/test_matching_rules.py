"""
Unit Tests for Member Matching Rules

Tests:
- Individual signals (email, name, amount, payment source)
- Weighted confidence with absent signals left out
- Identity signal requirement
- Floor, ordering and tie-breaks

Run with: pytest tests/test_matching_rules.py -v
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from reconciliation.contacts import ContactRecord
from reconciliation.matching_rules.member_rules import (
    SIGNAL_AMOUNT,
    SIGNAL_EMAIL,
    SIGNAL_NAME,
    SIGNAL_PAYMENT_SOURCE,
    ContactMatch,
    MemberMatchingRules,
    normalize_name,
)
from reconciliation.membership import MembershipFeeSchedule

FEES = {"Full": Decimal("50.00"), "Associate": Decimal("30.00"), "Newsletter Only": Decimal("10.00")}


@pytest.fixture
def rules():
    return MemberMatchingRules(MembershipFeeSchedule(FEES))


def contact(contact_id="c1", name="Jane Doe", email="jane@example.com", **kwargs):
    return ContactRecord(id=contact_id, full_name=name, email=email, **kwargs)


class TestSignals:
    """Test individual signal scores."""

    def test_exact_email_case_insensitive(self, rules):
        assert rules.score_email("Jane@Example.com", "jane@example.com") == 1.0

    def test_partial_email_capped_at_half(self, rules):
        score = rules.score_email("jane.doe@gmail.com", "jane@example.com")

        assert 0.0 < score <= 0.5

    def test_missing_email_is_absent(self, rules):
        assert rules.score_email(None, "jane@example.com") is None
        assert rules.score_email("jane@example.com", None) is None

    def test_name_normalization(self):
        assert normalize_name("  José   O'Brien ") == "jose obrien"

    def test_name_order_tolerant(self, rules):
        assert rules.score_name("DOE JANE", "Jane Doe") == 1.0

    def test_accented_name_matches(self, rules):
        assert rules.score_name("Zoe Lopez", "Zoë López") == 1.0

    def test_partial_name_below_exact(self, rules):
        score = rules.score_name("Doe", "Jane Doe")

        assert 0.5 < score < 1.0

    def test_amount_exact_within_tolerance(self, rules):
        assert rules.score_amount(Decimal("50.00"), contact(membership_type="Full")) == 1.0

    def test_amount_decays_linearly(self, rules):
        score = rules.score_amount(Decimal("45.00"), contact(membership_type="Full"))

        assert score == pytest.approx(1 - (5 - 0.01) / (10 - 0.01))

    def test_amount_zero_beyond_cutoff(self, rules):
        assert rules.score_amount(Decimal("80.00"), contact(membership_type="Full")) == 0.0

    def test_amount_uses_last_payment(self, rules):
        record = contact(last_payment_amount=Decimal("42.00"))

        assert rules.score_amount(Decimal("42.00"), record) == 1.0


class TestScoreContact:
    """Test weighted confidence."""

    def test_all_signals_exact(self, rules, make_payment):
        payment = make_payment(
            amount=Decimal("50.00"),
            customer_email="jane@example.com",
            customer_name="Jane Doe",
        )

        match = rules.score_contact(payment, contact(membership_type="Full"), payment_source_contact_id="c1")

        assert match.confidence == 1.0
        assert match.reasoning[SIGNAL_PAYMENT_SOURCE] == {"score": 1.0, "weight": 0.4}

    def test_absent_signals_do_not_dilute(self, rules, make_payment):
        payment = make_payment(amount=Decimal("50.00"), customer_email="jane@example.com")

        match = rules.score_contact(payment, contact(membership_type="Full"))

        assert match.confidence == 1.0
        assert match.reasoning[SIGNAL_NAME] == {"score": None, "weight": 0.0}
        assert match.reasoning[SIGNAL_PAYMENT_SOURCE] == {"score": None, "weight": 0.0}

    def test_weighted_average(self, rules, make_payment):
        # Email exact (0.5 * 1.0), amount off by more than the cutoff (0.2 * 0.0)
        payment = make_payment(amount=Decimal("99.00"), customer_email="jane@example.com")

        match = rules.score_contact(payment, contact(membership_type="Full"))

        assert match.confidence == pytest.approx(0.5 / 0.7, abs=1e-4)
        assert match.reasoning[SIGNAL_EMAIL]["score"] == 1.0
        assert match.reasoning[SIGNAL_AMOUNT]["score"] == 0.0

    def test_amount_alone_never_suggests(self, rules, make_payment):
        payment = make_payment(amount=Decimal("50.00"))

        assert rules.score_contact(payment, contact(membership_type="Full")) is None

    def test_payment_source_for_other_contact_is_absent(self, rules, make_payment):
        payment = make_payment(amount=Decimal("50.00"))

        assert rules.score_contact(payment, contact(), payment_source_contact_id="someone-else") is None

    def test_confidence_bounded(self, rules, make_payment):
        payment = make_payment(customer_name="Jane Doe", amount=Decimal("500.00"))

        match = rules.score_contact(payment, contact())

        assert 0.0 <= match.confidence <= 1.0

    def test_weak_name_with_matching_fee_not_suggested(self, rules, make_payment):
        payment = make_payment(customer_name="Bob Lee", amount=Decimal("50.00"))
        member = contact(name="Margaret Thompson", email="margaret.t@example.org", membership_type="Full")

        assert rules.score_name("Bob Lee", "Margaret Thompson") < 0.5
        assert rules.score_contact(payment, member) is None

    def test_weak_email_with_matching_fee_not_suggested(self, rules, make_payment):
        payment = make_payment(customer_email="zed@other.com", amount=Decimal("50.00"))
        member = contact(name="Margaret Thompson", email="margaret.t@example.org", membership_type="Full")

        assert rules.score_contact(payment, member) is None

    def test_partial_name_still_boosted_by_amount(self, rules, make_payment):
        payment = make_payment(customer_name="J Doe", amount=Decimal("50.00"))

        match = rules.score_contact(payment, contact(membership_type="Full"))

        assert match is not None
        assert match.reasoning[SIGNAL_AMOUNT]["score"] == 1.0
        assert match.confidence > match.reasoning[SIGNAL_NAME]["score"]

    def test_identity_threshold_configurable(self, make_payment):
        strict = MemberMatchingRules(MembershipFeeSchedule(FEES), min_identity_score=0.95)
        payment = make_payment(customer_name="J Doe", amount=Decimal("50.00"))

        assert strict.score_contact(payment, contact(membership_type="Full")) is None


class TestRanking:
    """Test floor and ordering."""

    def _match(self, contact_id, confidence, activity=None):
        return ContactMatch(
            contact_id=contact_id,
            confidence=confidence,
            reasoning={},
            contact={},
            last_activity_at=activity,
        )

    def test_floor_drops_low_confidence(self, rules):
        ranked = rules.rank([self._match("a", 0.29), self._match("b", 0.3)])

        assert [m.contact_id for m in ranked] == ["b"]

    def test_sorted_by_confidence(self, rules):
        ranked = rules.rank([self._match("a", 0.4), self._match("b", 0.9), self._match("c", 0.6)])

        assert [m.contact_id for m in ranked] == ["b", "c", "a"]

    def test_ties_break_on_activity_then_id(self, rules):
        older = datetime(2024, 6, 1, tzinfo=timezone.utc)
        newer = datetime(2025, 1, 1, tzinfo=timezone.utc)

        ranked = rules.rank([
            self._match("d", 0.8),
            self._match("c", 0.8, older),
            self._match("b", 0.8),
            self._match("a", 0.8, newer),
        ])

        assert [m.contact_id for m in ranked] == ["a", "c", "b", "d"]

    def test_to_dict_shape(self):
        match = self._match("a", 0.75)

        assert match.to_dict() == {"contact_id": "a", "confidence": 0.75, "reasoning": {}, "contact": {}}
