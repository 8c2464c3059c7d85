"""
Reconciliation Engine Module

Matches imported payments to member contacts and records confirmed
matches:
- Candidate scoring and ranking
- Atomic reconciliation log with payment-source index
- CRM and CMS propagation with rollback on failure

The orchestrator and router live in reconciliation.services and
reconciliation.endpoints; import them from there.
"""

from reconciliation.source_registry import (
    PaymentSourceKind,
    SourceConfig,
    SourceRegistry,
    source_registry
)
from reconciliation.membership import MembershipFeeSchedule, MembershipUpdate, calculate_renewal_date
from reconciliation.contacts import ContactNormalizer, ContactRecord
from reconciliation.matching_rules.member_rules import (
    MemberMatchingRules,
    ContactMatch,
    MatchingResult,
    build_member_rules
)
from reconciliation.saga import Saga, SagaStep, StepFailed

__all__ = [
    # Source Registry
    'PaymentSourceKind',
    'SourceConfig',
    'SourceRegistry',
    'source_registry',
    # Membership
    'MembershipFeeSchedule',
    'MembershipUpdate',
    'calculate_renewal_date',
    # Contacts
    'ContactNormalizer',
    'ContactRecord',
    # Matching Rules
    'MemberMatchingRules',
    'ContactMatch',
    'MatchingResult',
    'build_member_rules',
    # Saga
    'Saga',
    'SagaStep',
    'StepFailed',
]
