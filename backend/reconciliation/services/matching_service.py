"""
Candidate Matching Service

Suggests which member a payment belongs to.

Pool narrowing:
1. Cheap candidates: the contact owning the payment's hashed account,
   contacts with the hinted email, contacts whose last payment or tier
   fee is near the amount
2. Only when no cheap candidate reaches the accept threshold is the rest
   of the directory scored

Contacts reconciled recently are left out of the suggestions.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

from ingestion.models import NormalizedPayment
from reconciliation.audit import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.contacts import ContactRecord
from reconciliation.directory import MemberDirectory
from reconciliation.matching_rules.member_rules import ContactMatch, MatchingResult, MemberMatchingRules
from reconciliation.store import ReconciliationStore

logger = logging.getLogger(__name__)


class CandidateMatchingService:
    """
    Ranked contact suggestions for payments.

    Args:
        directory: Member directory lookups
        store: Payment-source and reconciliation-log lookups
        rules: Scoring rules
        narrow_accept_confidence: Best narrowed score that skips the full scan
        recently_reconciled_days: Window for excluding just-reconciled contacts
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        directory: MemberDirectory,
        store: ReconciliationStore,
        rules: MemberMatchingRules,
        narrow_accept_confidence: float = 0.8,
        recently_reconciled_days: int = 30,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.directory = directory
        self.store = store
        self.rules = rules
        self.narrow_accept_confidence = narrow_accept_confidence
        self.recently_reconciled_days = recently_reconciled_days
        self.clock = clock

    async def find_matches(self, payment: NormalizedPayment) -> MatchingResult:
        """
        Find suggestions for one payment.

        Returns:
            MatchingResult with at most max_suggestions entries, sorted by
            confidence; empty (not an error) when nothing clears the floor
        """
        started = time.perf_counter()

        excluded = await self._recently_reconciled()
        matches = await self._score_pool(payment, excluded)

        ranked = self.rules.rank(matches)
        result = MatchingResult(
            transaction_fingerprint=payment.transaction_fingerprint,
            suggestions=ranked[:self.rules.max_suggestions],
            total_matches=len(ranked),
            processing_time_ms=int((time.perf_counter() - started) * 1000),
        )

        log_reconciliation_event(
            ReconciliationAuditEvent.CANDIDATES_FOUND,
            payment.transaction_fingerprint,
            {
                "total_matches": result.total_matches,
                "best_confidence": result.suggestions[0].confidence if result.suggestions else None,
                "processing_time_ms": result.processing_time_ms,
            },
        )

        return result

    async def find_batch_matches(self, payments: Sequence[NormalizedPayment]) -> Dict[str, MatchingResult]:
        """Suggestions for several payments, keyed by transaction fingerprint."""
        results = {}
        for payment in payments:
            results[payment.transaction_fingerprint] = await self.find_matches(payment)
        return results

    async def _recently_reconciled(self) -> set:
        if self.recently_reconciled_days <= 0:
            return set()
        since = self.clock() - timedelta(days=self.recently_reconciled_days)
        return await self.store.recently_reconciled_contact_ids(since)

    async def _score_pool(self, payment: NormalizedPayment, excluded: set) -> List[ContactMatch]:
        source_contact_id: Optional[str] = None
        if payment.hashed_account_identifier:
            source_contact_id = await self.store.lookup_payment_source(payment.hashed_account_identifier)

        pool: Dict[str, ContactRecord] = {}

        if source_contact_id:
            contact = await self.directory.get_contact(source_contact_id)
            if contact:
                pool[contact.id] = contact

        if payment.customer_email:
            for contact in await self.directory.find_by_email(payment.customer_email):
                pool.setdefault(contact.id, contact)

        near_amount = await self.directory.list_near_amount(
            payment.amount, self.rules.fee_schedule, self.rules.amount_cutoff
        )
        for contact in near_amount:
            pool.setdefault(contact.id, contact)

        matches = self._score(payment, pool.values(), excluded, source_contact_id)

        best = max((m.confidence for m in matches), default=0.0)
        if best >= self.narrow_accept_confidence:
            return matches

        remaining = await self.directory.list_all(exclude_ids=list(pool))
        logger.debug(
            f"Narrowed pool best {best:.2f} below {self.narrow_accept_confidence}, "
            f"scoring {len(remaining)} more contacts"
        )
        matches.extend(self._score(payment, remaining, excluded, source_contact_id))
        return matches

    def _score(self, payment, contacts, excluded, source_contact_id) -> List[ContactMatch]:
        matches = []
        for contact in contacts:
            if contact.id in excluded:
                continue
            match = self.rules.score_contact(payment, contact, source_contact_id)
            if match is not None:
                matches.append(match)
        return matches
