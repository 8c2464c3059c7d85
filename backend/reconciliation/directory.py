"""
Member Directory

Read-only access to the contact directory for matching. Rows come back
as ContactRecord so matching never sees raw CRM field shapes.
"""

from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from database.contact_models import ContactDB
from reconciliation.contacts import ContactNormalizer, ContactRecord
from reconciliation.membership import MembershipFeeSchedule


class MemberDirectory:
    """
    Contact lookups used to build candidate pools.

    Args:
        db: Database session
        normalizer: Maps directory rows to ContactRecord
    """

    def __init__(self, db: AsyncSession, normalizer: ContactNormalizer):
        self.db = db
        self.normalizer = normalizer

    async def get_contact(self, contact_id: str) -> Optional[ContactRecord]:
        row = await self.db.get(ContactDB, contact_id)
        return self.normalizer.from_row(row) if row else None

    async def find_by_email(self, email: str) -> List[ContactRecord]:
        """Contacts whose email equals the given one, case-insensitive."""
        if not email:
            return []
        result = await self.db.execute(
            select(ContactDB).where(func.lower(ContactDB.email) == email.strip().lower())
        )
        return [self.normalizer.from_row(row) for row in result.scalars().all()]

    async def list_near_amount(
        self,
        amount: Decimal,
        fee_schedule: MembershipFeeSchedule,
        cutoff: Decimal,
    ) -> List[ContactRecord]:
        """
        Contacts whose last payment, or whose tier fee, is within the cutoff
        of the amount.

        Tiers are compared after normalization, so stored variants such as
        "full member" or a custom-field value still count.
        """
        low, high = amount - cutoff, amount + cutoff
        tiers = {
            membership_type
            for membership_type, fee in fee_schedule.fees.items()
            if abs(fee - amount) <= cutoff
        }

        conditions = [ContactDB.last_payment_amount.between(low, high)]
        if tiers:
            conditions.append(ContactDB.membership_type.isnot(None))
            conditions.append(ContactDB.custom_fields.isnot(None))

        result = await self.db.execute(select(ContactDB).where(or_(*conditions)))
        records = [self.normalizer.from_row(row) for row in result.scalars().all()]
        return [
            record for record in records
            if record.membership_type in tiers
            or (record.last_payment_amount is not None and low <= record.last_payment_amount <= high)
        ]

    async def list_all(self, exclude_ids: Iterable[str] = ()) -> List[ContactRecord]:
        query = select(ContactDB)
        exclude = list(exclude_ids)
        if exclude:
            query = query.where(ContactDB.id.notin_(exclude))
        result = await self.db.execute(query)
        return [self.normalizer.from_row(row) for row in result.scalars().all()]
