"""
Invoice Data Access Object (DAO).

WHAT: Read-only aggregates over tenant invoices.

WHY: Billing never writes tenant invoices. It counts them for the monthly
usage quota and sums paid totals for the admin revenue series.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.dao.base import BaseDAO
from saas_billing.models.invoice import Invoice, InvoiceStatus


class InvoiceDAO(BaseDAO[Invoice]):
    """Data Access Object for Invoice model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Invoice, session)

    async def count_for_user_between(
        self, user_id: int, start: datetime, end: datetime
    ) -> int:
        """
        Count invoices a tenant created in ``[start, end)``.

        Args:
            user_id: Tenant user ID
            start: Inclusive lower bound on created_at
            end: Exclusive upper bound on created_at
        """
        result = await self.session.execute(
            select(func.count())
            .select_from(Invoice)
            .where(
                Invoice.user_id == user_id,
                Invoice.created_at >= start,
                Invoice.created_at < end,
            )
        )
        return int(result.scalar_one())

    async def sum_paid_between(self, start: datetime, end: datetime) -> Decimal:
        """Sum of paid invoice totals with a paid date in ``[start, end)``."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(Invoice.total), 0)).where(
                Invoice.status == InvoiceStatus.PAID.value,
                Invoice.paid_date >= start,
                Invoice.paid_date < end,
            )
        )
        value: Optional[Decimal] = result.scalar_one()
        return Decimal(str(value or 0))
