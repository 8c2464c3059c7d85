"""
Tests for the Candidate Matching Service

Uses an in-memory SQLite directory.

Tests:
- Ranked suggestions with reasoning
- Payment-source lookup lifts the known payer
- Full-directory pass when the narrowed pool is weak
- Recently reconciled contacts are left out
- Empty results are not errors
- Unrelated payers are not suggested on amount alone
- Stored membership type variants reach the near-amount pool

Run with: pytest tests/test_matching_service.py -v
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from ingestion.models import PaymentSourceType
from reconciliation.contacts import ContactNormalizer
from reconciliation.directory import MemberDirectory
from reconciliation.matching_rules.member_rules import MemberMatchingRules
from reconciliation.membership import MembershipFeeSchedule
from reconciliation.models import PaymentSourceDB, ReconciliationLogDB
from reconciliation.services.matching_service import CandidateMatchingService
from reconciliation.store import ReconciliationStore

FEES = {"Full": Decimal("50.00"), "Associate": Decimal("30.00"), "Newsletter Only": Decimal("10.00")}
NOW = datetime(2025, 1, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def matching_service(db):
    return CandidateMatchingService(
        directory=MemberDirectory(db, ContactNormalizer("renewal-field", "membership-field")),
        store=ReconciliationStore(db),
        rules=MemberMatchingRules(MembershipFeeSchedule(FEES)),
        clock=lambda: NOW,
    )


class TestFindMatches:
    """Test suggestion ranking."""

    @pytest.mark.asyncio
    async def test_email_match_ranks_first(self, matching_service, add_contact, make_payment):
        await add_contact("c1", "Jane", "Doe", "jane@example.com", "Full")
        await add_contact("c2", "Janet", "Dow", "janet@example.com", "Full")

        payment = make_payment(customer_email="jane@example.com", customer_name="Jane Doe")
        result = await matching_service.find_matches(payment)

        assert result.suggestions[0].contact_id == "c1"
        assert result.suggestions[0].confidence == 1.0
        assert result.suggestions[0].reasoning["email_match"]["score"] == 1.0
        assert result.total_matches >= 1
        assert result.transaction_fingerprint == payment.transaction_fingerprint

    @pytest.mark.asyncio
    async def test_confidences_non_increasing(self, matching_service, add_contact, make_payment):
        await add_contact("c1", "Jane", "Doe", "jane@example.com", "Full")
        await add_contact("c2", "Jane", "Smith", "jsmith@example.com", "Associate")
        await add_contact("c3", "John", "Doe", "john@example.com", "Full")

        result = await matching_service.find_matches(make_payment(customer_name="Jane Doe"))

        confidences = [s.confidence for s in result.suggestions]
        assert confidences == sorted(confidences, reverse=True)
        assert all(c >= 0.3 for c in confidences)
        assert len(result.suggestions) <= 5

    @pytest.mark.asyncio
    async def test_payment_source_identifies_payer(self, db, matching_service, add_contact, make_payment):
        await add_contact("c1", "Jane", "Doe", "jane@example.com", "Full")
        await add_contact("c2", "Sam", "Lee", "sam@example.com", "Full")
        db.add(PaymentSourceDB(hashed_identifier="acct-hash", source_type="bank_account", contact_id="c2"))
        await db.commit()

        payment = make_payment(
            source=PaymentSourceType.BANK_CSV,
            hashed_account_identifier="acct-hash",
            amount=Decimal("50.00"),
        )
        result = await matching_service.find_matches(payment)

        assert [s.contact_id for s in result.suggestions] == ["c2"]
        assert result.suggestions[0].reasoning["payment_source_match"]["score"] == 1.0

    @pytest.mark.asyncio
    async def test_full_directory_pass_finds_far_amount(self, matching_service, add_contact, make_payment):
        # Amount far from every tier, so the narrowed pool is empty
        await add_contact("c1", "Jane", "Doe", None, "Full")

        result = await matching_service.find_matches(
            make_payment(amount=Decimal("120.00"), customer_name="Jane Doe")
        )

        assert [s.contact_id for s in result.suggestions] == ["c1"]

    @pytest.mark.asyncio
    async def test_no_identity_hint_gives_empty_result(self, matching_service, add_contact, make_payment):
        await add_contact("c1", "Jane", "Doe", "jane@example.com", "Full")

        result = await matching_service.find_matches(make_payment(amount=Decimal("50.00")))

        assert result.suggestions == []
        assert result.total_matches == 0

    @pytest.mark.asyncio
    async def test_unrelated_payer_with_matching_fee_gives_empty_result(
        self, matching_service, add_contact, make_payment
    ):
        await add_contact("c1", "Margaret", "Thompson", "margaret.t@example.org", "Full")
        await add_contact("c2", "Priya", "Shah", "priya@example.org", "Full", last_payment_amount="50.00")

        result = await matching_service.find_matches(make_payment(
            amount=Decimal("50.00"), customer_name="Bob Lee", customer_email="zed@other.com"
        ))

        assert result.suggestions == []
        assert result.total_matches == 0

    @pytest.mark.asyncio
    async def test_suggestions_capped(self, matching_service, add_contact, make_payment):
        for i in range(7):
            await add_contact(f"c{i}", "Jane", "Doe", f"jane{i}@example.com", "Full")

        result = await matching_service.find_matches(make_payment(customer_name="Jane Doe"))

        assert len(result.suggestions) == 5
        assert result.total_matches == 7

    @pytest.mark.asyncio
    async def test_empty_directory(self, matching_service, make_payment):
        result = await matching_service.find_matches(make_payment(customer_name="Jane Doe"))

        assert result.to_dict()["suggestions"] == []

    @pytest.mark.asyncio
    async def test_recently_reconciled_contact_excluded(self, db, matching_service, add_contact, make_payment):
        await add_contact("c1", "Jane", "Doe", "jane@example.com", "Full")
        db.add(ReconciliationLogDB(
            transaction_fingerprint="old-fp",
            payment_date=date(2025, 1, 2),
            amount=Decimal("50.00"),
            source="STRIPE_REPORT",
            transaction_ref="ch_old",
            contact_id="c1",
            reconciled_by_user_id="operator-1",
            reconciled_at=NOW - timedelta(days=5),
        ))
        await db.commit()

        result = await matching_service.find_matches(make_payment(customer_email="jane@example.com"))

        assert result.suggestions == []

    @pytest.mark.asyncio
    async def test_old_reconciliation_does_not_exclude(self, db, matching_service, add_contact, make_payment):
        await add_contact("c1", "Jane", "Doe", "jane@example.com", "Full")
        db.add(ReconciliationLogDB(
            transaction_fingerprint="old-fp",
            payment_date=date(2024, 1, 2),
            amount=Decimal("50.00"),
            source="STRIPE_REPORT",
            transaction_ref="ch_old",
            contact_id="c1",
            reconciled_by_user_id="operator-1",
            reconciled_at=NOW - timedelta(days=300),
        ))
        await db.commit()

        result = await matching_service.find_matches(make_payment(customer_email="jane@example.com"))

        assert [s.contact_id for s in result.suggestions] == ["c1"]

    @pytest.mark.asyncio
    async def test_batch_keyed_by_fingerprint(self, matching_service, add_contact, make_payment):
        await add_contact("c1", "Jane", "Doe", "jane@example.com", "Full")
        first = make_payment(customer_email="jane@example.com")
        second = make_payment(customer_name="Nobody Known")

        results = await matching_service.find_batch_matches([first, second])

        assert set(results) == {first.transaction_fingerprint, second.transaction_fingerprint}
        assert results[first.transaction_fingerprint].suggestions[0].contact_id == "c1"


class TestNarrowedPool:
    """Test the near-amount candidate pool."""

    @pytest.mark.asyncio
    async def test_stored_type_variants_match_tier(self, db, add_contact):
        await add_contact("c1", "Jane", "Doe", "jane@example.com", "full member")
        await add_contact("c2", "Sam", "Lee", "sam@example.com", "Associate")
        await add_contact("c3", "Ann", "Roe", "ann@example.com", None, last_payment_amount="45.00")
        directory = MemberDirectory(db, ContactNormalizer("renewal-field", "membership-field"))

        pool = await directory.list_near_amount(Decimal("50.00"), MembershipFeeSchedule(FEES), Decimal("10.00"))

        assert sorted(c.id for c in pool) == ["c1", "c3"]
        assert {c.id: c.membership_type for c in pool}["c1"] == "Full"

    @pytest.mark.asyncio
    async def test_variant_type_gets_amount_signal(self, matching_service, add_contact, make_payment):
        await add_contact("c1", "Jane", "Doe", None, "full member")

        result = await matching_service.find_matches(make_payment(customer_name="Jane Doe"))

        assert [s.contact_id for s in result.suggestions] == ["c1"]
        assert result.suggestions[0].reasoning["amount_match"]["score"] == 1.0
