"""
Subscription record store.

WHAT: The local state machine of a user's subscription.

WHY: The subscription row is the authoritative view of a user's billing
state until a gateway webhook says otherwise. Every plan transition goes
through this service so business rules are enforced in one place:

    active <-> trialing -> canceled -> active (within the reactivation window)

HOW: Each transition loads the subscription with a row lock
(SELECT ... FOR UPDATE), validates, mutates, flushes, mirrors the result
onto the user row, and writes an audit entry. Transitions never call the
billing gateway; routes sync the gateway after committing.
"""

import calendar
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.core.config import settings
from saas_billing.core.exceptions import (
    AlreadyOnPlanError,
    BusinessRuleViolation,
    FeatureNotImplementedError,
    NoActiveSubscriptionError,
    ReactivationWindowExpiredError,
    ResourceNotFoundError,
    SubscriptionNotFoundError,
    ValidationError,
)
from saas_billing.dao.subscription import SubscriptionDAO
from saas_billing.dao.subscription_invoice import SubscriptionInvoiceDAO
from saas_billing.dao.user import UserDAO
from saas_billing.models.audit_log import AuditAction
from saas_billing.models.base import utcnow
from saas_billing.models.plan import BillingInterval, Plan
from saas_billing.models.subscription import Subscription, SubscriptionStatus
from saas_billing.models.subscription_invoice import SubscriptionInvoice
from saas_billing.services.audit import AuditService, AuditContext
from saas_billing.services.plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)

DEFAULT_PLAN_CODE = "free"


def add_billing_period(moment: datetime, billing_period: str) -> datetime:
    """
    Advance ``moment`` by one billing period.

    Month arithmetic clamps to the last day of the target month
    (Jan 31 + 1 month = Feb 28/29).
    """
    if billing_period == BillingInterval.YEAR.value:
        months = 12
    elif billing_period == BillingInterval.MONTH.value:
        months = 1
    else:
        raise ValidationError(f"Unknown billing period '{billing_period}'")

    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class SubscriptionStore:
    """
    Service for subscription state transitions.

    Every mutating method takes an ``AuditContext`` naming the actor.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.dao = SubscriptionDAO(session)
        self.invoice_dao = SubscriptionInvoiceDAO(session)
        self.user_dao = UserDAO(session)
        self.catalog = PlanCatalog(session)
        self.audit = AuditService(session)

    # ========================================================================
    # Lookups
    # ========================================================================

    async def get_current(
        self, user_id: int, for_update: bool = False
    ) -> Optional[Subscription]:
        """
        Get the user's current (non-canceled) subscription.

        If more than one exists the newest wins and a warning is logged.
        """
        current = await self.dao.list_current_for_user(user_id, for_update=for_update)
        if not current:
            return None
        if len(current) > 1:
            logger.warning(
                f"User {user_id} has {len(current)} current subscriptions, using newest",
                extra={
                    "user_id": user_id,
                    "subscription_ids": [s.id for s in current],
                },
            )
        return current[0]

    async def require_current(self, user_id: int, for_update: bool = False) -> Subscription:
        """
        Get the current subscription or fail.

        Raises:
            NoActiveSubscriptionError: If the user has none
        """
        subscription = await self.get_current(user_id, for_update=for_update)
        if subscription is None:
            raise NoActiveSubscriptionError(user_id=user_id)
        return subscription

    async def get(self, subscription_id: int, for_update: bool = False) -> Subscription:
        subscription = await self.dao.get_by_id(subscription_id, for_update=for_update)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id=subscription_id)
        return subscription

    async def list_invoices(
        self,
        subscription_id: int,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[SubscriptionInvoice], int]:
        """Page through a subscription's gateway invoices (1-based page)."""
        skip = (max(page, 1) - 1) * limit
        return await self.invoice_dao.list_for_subscription(
            subscription_id, status=status, skip=skip, limit=limit
        )

    async def list_subscriptions(
        self,
        plan: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Subscription], int]:
        skip = (max(page, 1) - 1) * limit
        return await self.dao.list_filtered(plan=plan, status=status, skip=skip, limit=limit)

    # ========================================================================
    # Creation
    # ========================================================================

    async def create_default(self, user_id: int) -> Subscription:
        """
        Create a free, active subscription starting now.

        Used when a user has no current subscription.
        """
        subscription = await self.dao.create(
            user_id=user_id,
            plan=DEFAULT_PLAN_CODE,
            status=SubscriptionStatus.ACTIVE.value,
            billing_period=BillingInterval.MONTH.value,
            price=Decimal("0.00"),
            start_date=utcnow(),
            next_billing_date=None,
        )
        await self._sync_user_mirror(subscription)
        logger.info(
            f"Created default subscription for user {user_id}",
            extra={"user_id": user_id, "subscription_id": subscription.id},
        )
        return subscription

    async def get_or_create_current(self, user_id: int) -> Subscription:
        subscription = await self.get_current(user_id)
        if subscription is None:
            subscription = await self.create_default(user_id)
        return subscription

    # ========================================================================
    # User-initiated transitions
    # ========================================================================

    async def upgrade(
        self,
        subscription_id: int,
        new_plan_code: str,
        billing_period: str,
        context: AuditContext,
    ) -> Subscription:
        """
        Move a subscription to a new plan starting a fresh billing period.

        Sets the price snapshot to the plan's current price, status to
        active, and the next billing date one billing period from now.

        Raises:
            SubscriptionNotFoundError: If the subscription does not exist
            PlanNotFoundError: If the plan code is unknown
            AlreadyOnPlanError: If the subscription is already on this plan
        """
        subscription = await self.get(subscription_id, for_update=True)
        plan = await self._check_plan_change(subscription, new_plan_code)

        now = utcnow()
        old_plan = subscription.plan
        subscription.plan = plan.code
        subscription.billing_period = billing_period
        subscription.price = plan.price
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.next_billing_date = add_billing_period(now, billing_period)

        await self._commit_transition(subscription)
        await self.audit.log(
            AuditAction.UPGRADE_SUBSCRIPTION,
            context,
            target=f"subscription:{subscription.id}",
            metadata={
                "old_plan": old_plan,
                "new_plan": plan.code,
                "billing_period": billing_period,
            },
        )
        logger.info(
            f"Subscription {subscription.id} upgraded {old_plan} -> {plan.code}",
            extra={"subscription_id": subscription.id, "user_id": subscription.user_id},
        )
        return subscription

    async def downgrade(
        self,
        subscription_id: int,
        new_plan_code: str,
        context: AuditContext,
        effective_date: Optional[datetime] = None,
    ) -> Subscription:
        """
        Move a subscription to a cheaper plan.

        The next billing date becomes ``effective_date`` when given, else now.
        Past effective dates are accepted as-is.

        Raises:
            SubscriptionNotFoundError: If the subscription does not exist
            PlanNotFoundError: If the plan code is unknown
            AlreadyOnPlanError: If the subscription is already on this plan
        """
        subscription = await self.get(subscription_id, for_update=True)
        plan = await self._check_plan_change(subscription, new_plan_code)

        old_plan = subscription.plan
        subscription.plan = plan.code
        subscription.price = plan.price
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.next_billing_date = effective_date or utcnow()

        await self._commit_transition(subscription)
        await self.audit.log(
            AuditAction.DOWNGRADE_SUBSCRIPTION,
            context,
            target=f"subscription:{subscription.id}",
            metadata={
                "old_plan": old_plan,
                "new_plan": plan.code,
                "effective_date": subscription.next_billing_date.isoformat(),
            },
        )
        logger.info(
            f"Subscription {subscription.id} downgraded {old_plan} -> {plan.code}",
            extra={"subscription_id": subscription.id, "user_id": subscription.user_id},
        )
        return subscription

    async def cancel(
        self,
        subscription_id: int,
        context: AuditContext,
        reason: Optional[str] = None,
        feedback: Optional[str] = None,
        action: AuditAction = AuditAction.USER_CANCEL_SUBSCRIPTION,
    ) -> Subscription:
        """
        Cancel a subscription. The row is kept as history.

        Canceling an already canceled subscription is a no-op.
        """
        subscription = await self.get(subscription_id, for_update=True)
        if subscription.is_canceled:
            return subscription

        old_status = subscription.status
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.canceled_at = utcnow()

        await self._commit_transition(subscription)
        metadata = {"old_status": old_status, "plan": subscription.plan}
        if reason is not None:
            metadata["reason"] = reason
        if feedback is not None:
            metadata["feedback"] = feedback
        await self.audit.log(
            action,
            context,
            target=f"subscription:{subscription.id}",
            metadata=metadata,
        )
        logger.info(
            f"Subscription {subscription.id} canceled",
            extra={"subscription_id": subscription.id, "user_id": subscription.user_id},
        )
        return subscription

    async def reactivate(self, subscription_id: int, context: AuditContext) -> Subscription:
        """
        Reactivate a canceled subscription within the reactivation window.

        A current subscription created after the cancellation (the default
        free one) is superseded: it is marked canceled so the user keeps a
        single current subscription.

        Raises:
            SubscriptionNotFoundError: If the subscription does not exist
            BusinessRuleViolation: If the subscription is not canceled
            ReactivationWindowExpiredError: If it was canceled too long ago
        """
        subscription = await self.get(subscription_id, for_update=True)
        if not subscription.is_canceled:
            raise BusinessRuleViolation(
                "Subscription is not canceled", subscription_id=subscription_id
            )

        now = utcnow()
        window = timedelta(days=settings.REACTIVATION_WINDOW_DAYS)
        elapsed = subscription.canceled_for(now)
        if elapsed is not None and elapsed > window:
            raise ReactivationWindowExpiredError(
                f"Cannot reactivate after {settings.REACTIVATION_WINDOW_DAYS} days",
                subscription_id=subscription_id,
                canceled_at=subscription.canceled_at.isoformat(),
            )

        superseded = []
        for other in await self.dao.list_current_for_user(subscription.user_id, for_update=True):
            other.status = SubscriptionStatus.CANCELED.value
            other.canceled_at = now
            superseded.append(other.id)

        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.canceled_at = None

        await self._commit_transition(subscription)
        await self.audit.log(
            AuditAction.REACTIVATE_SUBSCRIPTION,
            context,
            target=f"subscription:{subscription.id}",
            metadata={"plan": subscription.plan, "superseded": superseded},
        )
        logger.info(
            f"Subscription {subscription.id} reactivated",
            extra={"subscription_id": subscription.id, "user_id": subscription.user_id},
        )
        return subscription

    async def reactivate_latest(self, user_id: int, context: AuditContext) -> Subscription:
        """Reactivate the user's most recently canceled subscription."""
        subscription = await self.dao.get_latest_canceled_for_user(user_id)
        if subscription is None:
            raise ResourceNotFoundError("No canceled subscription", user_id=user_id)
        return await self.reactivate(subscription.id, context)

    # ========================================================================
    # Admin transitions
    # ========================================================================

    async def assign_plan(
        self, user_id: int, plan_code: str, context: AuditContext
    ) -> Subscription:
        """
        Put a user on a plan, creating a subscription when they have none.

        Unlike ``upgrade`` this does not reject the current plan: assigning
        it again restarts the billing period.
        """
        user = await self.user_dao.get_by_id(user_id)
        if user is None:
            raise ResourceNotFoundError("User not found", user_id=user_id)
        plan = await self.catalog.get_by_code(plan_code)

        now = utcnow()
        subscription = await self.get_current(user_id, for_update=True)
        old_plan = subscription.plan if subscription else None
        if subscription is None:
            subscription = await self.dao.create(
                user_id=user_id,
                plan=plan.code,
                status=SubscriptionStatus.ACTIVE.value,
                billing_period=plan.interval,
                price=plan.price,
                start_date=now,
                next_billing_date=add_billing_period(now, plan.interval),
            )
        else:
            subscription.plan = plan.code
            subscription.status = SubscriptionStatus.ACTIVE.value
            subscription.billing_period = plan.interval
            subscription.price = plan.price
            subscription.next_billing_date = add_billing_period(now, plan.interval)

        await self._commit_transition(subscription)
        await self.audit.log(
            AuditAction.ASSIGN_PLAN,
            context,
            target=f"user:{user_id}",
            metadata={"old_plan": old_plan, "new_plan": plan.code},
        )
        return subscription

    async def change_plan(
        self, subscription_id: int, plan_code: str, context: AuditContext
    ) -> Subscription:
        """Admin plan change on a given subscription, keeping its dates."""
        subscription = await self.get(subscription_id, for_update=True)
        plan = await self._check_plan_change(subscription, plan_code)

        old_plan = subscription.plan
        subscription.plan = plan.code
        subscription.price = plan.price

        await self._commit_transition(subscription)
        await self.audit.log(
            AuditAction.CHANGE_SUBSCRIPTION_PLAN,
            context,
            target=f"subscription:{subscription.id}",
            metadata={"old_plan": old_plan, "new_plan": plan.code},
        )
        return subscription

    async def admin_cancel(
        self, subscription_id: int, context: AuditContext, reason: Optional[str] = None
    ) -> Subscription:
        return await self.cancel(
            subscription_id,
            context,
            reason=reason,
            action=AuditAction.CANCEL_SUBSCRIPTION,
        )

    # ========================================================================
    # Gateway bookkeeping
    # ========================================================================

    async def attach_gateway_subscription(
        self,
        subscription_id: int,
        stripe_subscription_id: Optional[str],
    ) -> Subscription:
        """Record the gateway subscription id returned by a sync call."""
        subscription = await self.get(subscription_id, for_update=True)
        if stripe_subscription_id and subscription.stripe_subscription_id != stripe_subscription_id:
            subscription.stripe_subscription_id = stripe_subscription_id
            await self._commit_transition(subscription)
        return subscription

    async def process_due_renewals(self, now: Optional[datetime] = None) -> int:
        """
        Renew subscriptions whose next billing date has passed.

        Raises:
            FeatureNotImplementedError: Always. Renewal rules (proration,
                retries, dunning) are not defined.
        """
        raise FeatureNotImplementedError("Recurring renewal processing is not implemented")

    # ========================================================================
    # Internals
    # ========================================================================

    async def _check_plan_change(self, subscription: Subscription, plan_code: str) -> Plan:
        plan = await self.catalog.get_by_code(plan_code)
        if plan.code == subscription.plan:
            raise AlreadyOnPlanError(
                subscription_id=subscription.id,
                plan_code=plan_code,
            )
        return plan

    async def _commit_transition(self, subscription: Subscription) -> None:
        await self.session.flush()
        await self.session.refresh(subscription)
        await self._sync_user_mirror(subscription)

    async def _sync_user_mirror(self, subscription: Subscription) -> None:
        """
        Copy plan, status and gateway id onto the user row.

        A canceled subscription is mirrored only when the user has no other
        current subscription.
        """
        if subscription.is_canceled:
            other = await self.get_current(subscription.user_id)
            if other is not None:
                subscription = other

        user = await self.user_dao.get_by_id(subscription.user_id)
        if user is None:
            return
        user.subscription_plan = subscription.plan
        user.subscription_status = subscription.status
        user.stripe_subscription_id = subscription.stripe_subscription_id
        await self.session.flush()
