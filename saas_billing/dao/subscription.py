"""
Subscription Data Access Object (DAO).

WHAT: DAO for managing subscription records in the database.

WHY: Subscriptions are looked up three ways:
1. By user, for the current (non-canceled) subscription
2. By Stripe subscription ID, for webhook reconciliation
3. By id, for admin actions

Every lookup used before a state transition accepts ``for_update=True`` so
the caller holds a row lock until commit. User actions and webhook handlers
touching the same subscription are serialized by that lock.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from saas_billing.dao.base import BaseDAO
from saas_billing.models.plan import Plan
from saas_billing.models.subscription import Subscription, SubscriptionStatus


class SubscriptionDAO(BaseDAO[Subscription]):
    """
    Data Access Object for Subscription model.

    HOW: Extends BaseDAO with user-scoped, Stripe-keyed and aggregate queries.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(Subscription, session)

    # ========================================================================
    # User-scoped lookups
    # ========================================================================

    async def list_current_for_user(
        self, user_id: int, for_update: bool = False
    ) -> List[Subscription]:
        """
        Get every non-canceled subscription of a user, newest first.

        WHY: There should be at most one. Returning all of them lets the
        caller detect and log an invariant violation instead of hiding it.
        """
        query = (
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status != SubscriptionStatus.CANCELED.value,
            )
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_latest_for_user(
        self, user_id: int, for_update: bool = False
    ) -> Optional[Subscription]:
        """Most recently created subscription of a user, any status."""
        query = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_latest_canceled_for_user(
        self, user_id: int, for_update: bool = False
    ) -> Optional[Subscription]:
        """Most recently canceled subscription of a user."""
        query = (
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.CANCELED.value,
            )
            .order_by(Subscription.canceled_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    # ========================================================================
    # Stripe lookups
    # ========================================================================

    async def get_by_stripe_subscription_id(
        self, stripe_subscription_id: str, for_update: bool = False
    ) -> Optional[Subscription]:
        """
        Get subscription by Stripe subscription ID (sub_xxx).

        WHY: Webhook events reference subscriptions only by Stripe id.
        """
        query = select(Subscription).where(
            Subscription.stripe_subscription_id == stripe_subscription_id
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    # ========================================================================
    # Admin listing
    # ========================================================================

    async def list_filtered(
        self,
        plan: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Subscription], int]:
        """
        List subscriptions with optional plan/status filters, newest first.

        Returns:
            Tuple of (page of subscriptions with user loaded, total matching)
        """
        conditions = []
        if plan:
            conditions.append(Subscription.plan == plan)
        if status:
            conditions.append(Subscription.status == status)

        total_result = await self.session.execute(
            select(func.count()).select_from(Subscription).where(*conditions)
        )
        total = int(total_result.scalar_one())

        result = await self.session.execute(
            select(Subscription)
            .options(selectinload(Subscription.user))
            .where(*conditions)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    # ========================================================================
    # Aggregates
    # ========================================================================

    async def active_paid_counts(self) -> Dict[str, Tuple[int, Decimal]]:
        """
        Count active subscriptions on paid plans, per plan.

        Returns:
            Mapping of plan code -> (active subscription count, current plan price)
        """
        result = await self.session.execute(
            select(Subscription.plan, Plan.price, func.count(Subscription.id))
            .join(Plan, Plan.code == Subscription.plan)
            .where(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Plan.price > 0,
            )
            .group_by(Subscription.plan, Plan.price)
        )
        return {
            plan: (int(count), Decimal(price))
            for plan, price, count in result.all()
        }

    async def count_active_at(self, moment: datetime) -> int:
        """
        Count subscriptions that were live at ``moment``.

        A subscription is live at a moment when it had started and had not
        been canceled yet, whatever its status is today.
        """
        result = await self.session.execute(
            select(func.count())
            .select_from(Subscription)
            .where(
                Subscription.start_date <= moment,
                or_(
                    Subscription.canceled_at.is_(None),
                    Subscription.canceled_at >= moment,
                ),
            )
        )
        return int(result.scalar_one())

    async def count_canceled_between(self, start: datetime, end: datetime) -> int:
        """Count subscriptions canceled in ``[start, end)``."""
        result = await self.session.execute(
            select(func.count())
            .select_from(Subscription)
            .where(
                Subscription.canceled_at >= start,
                Subscription.canceled_at < end,
            )
        )
        return int(result.scalar_one())
