"""
Subscription invoice Data Access Object (DAO).

WHAT: DAO for Stripe invoices attached to subscriptions.
"""

from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.dao.base import BaseDAO
from saas_billing.models.subscription_invoice import SubscriptionInvoice


class SubscriptionInvoiceDAO(BaseDAO[SubscriptionInvoice]):
    """Data Access Object for SubscriptionInvoice model."""

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionInvoice, session)

    async def get_by_stripe_invoice_id(
        self, stripe_invoice_id: str
    ) -> Optional[SubscriptionInvoice]:
        """Get an invoice by its Stripe invoice ID (in_xxx)."""
        result = await self.session.execute(
            select(SubscriptionInvoice).where(
                SubscriptionInvoice.stripe_invoice_id == stripe_invoice_id
            )
        )
        return result.scalar_one_or_none()

    async def list_for_subscription(
        self,
        subscription_id: int,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 10,
    ) -> Tuple[List[SubscriptionInvoice], int]:
        """
        Page through a subscription's invoices, newest invoice date first.

        Returns:
            Tuple of (page of invoices, total matching)
        """
        conditions = [SubscriptionInvoice.subscription_id == subscription_id]
        if status:
            conditions.append(SubscriptionInvoice.status == status)

        total_result = await self.session.execute(
            select(func.count()).select_from(SubscriptionInvoice).where(*conditions)
        )
        total = int(total_result.scalar_one())

        result = await self.session.execute(
            select(SubscriptionInvoice)
            .where(*conditions)
            .order_by(SubscriptionInvoice.invoice_date.desc(), SubscriptionInvoice.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total
