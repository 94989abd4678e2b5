"""
User Data Access Object.

WHY: Billing reads the user directory to resolve webhook events (by Stripe
customer id), to mirror the current plan onto the user row, and to count
users for admin dashboards.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.dao.base import BaseDAO
from saas_billing.models.user import User


class UserDAO(BaseDAO[User]):
    """Data Access Object for User model."""

    def __init__(self, session: AsyncSession):
        super().__init__(User, session)

    async def get_by_stripe_customer_id(self, stripe_customer_id: str) -> Optional[User]:
        """
        Retrieve user by Stripe customer ID (cus_xxx).

        WHY: Invoice webhooks identify the tenant only by customer id.
        """
        result = await self.session.execute(
            select(User).where(User.stripe_customer_id == stripe_customer_id)
        )
        return result.scalar_one_or_none()

    async def count_created_before(self, moment: datetime) -> int:
        """Count users registered strictly before ``moment``."""
        result = await self.session.execute(
            select(func.count()).select_from(User).where(User.created_at < moment)
        )
        return int(result.scalar_one())
