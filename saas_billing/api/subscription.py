"""
Subscription API endpoints for the signed-in tenant.

WHAT: REST API endpoints for the user's own subscription:
1. GET  /subscription/plans - List available plans (public)
2. GET  /subscription - Current subscription (a free one is created on first access)
3. POST /subscription/upgrade - Move to a plan, starting a new billing period
4. POST /subscription/downgrade - Move to a cheaper plan, optionally deferred
5. POST /subscription/cancel - Cancel, keeping the row as history
6. POST /subscription/reactivate - Undo a cancellation within the window
7. GET  /subscription/invoices - Gateway invoices of the current subscription
8. GET  /subscription/usage - Consumption against plan limits this month

WHY: Plan changes are two steps that can fail independently. The local
change is committed first; the Stripe sync runs afterwards. A failed sync
never rolls the local change back: the route answers 502 (or 422 for a plan
without a Stripe price) with ``local_state_committed`` and a snapshot of the
committed subscription, and webhook reconciliation converges the two sides.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.core.deps import get_current_user, get_audit_context
from saas_billing.core.exceptions import (
    AppException,
    GatewayUnavailableError,
    PlanNotConfiguredError,
)
from saas_billing.db.session import get_db
from saas_billing.models.base import utcnow
from saas_billing.models.plan import Plan
from saas_billing.models.subscription import Subscription
from saas_billing.models.user import User
from saas_billing.schemas.subscription import (
    CancelRequest,
    CancelResponse,
    DowngradeRequest,
    DowngradeResponse,
    PlanResponse,
    ReactivateResponse,
    SubscriptionInvoiceListResponse,
    SubscriptionInvoiceResponse,
    SubscriptionResponse,
    UpgradeRequest,
    UpgradeResponse,
    UsageResponse,
)
from saas_billing.services.audit import AuditContext
from saas_billing.services.billing_gateway import StripeBillingGateway, get_billing_gateway
from saas_billing.services.plan_catalog import PlanCatalog
from saas_billing.services.subscription_store import SubscriptionStore
from saas_billing.services.usage_metrics import UsageMetrics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["Subscription"])


# ============================================================================
# Gateway sync helpers
# ============================================================================


def subscription_snapshot(subscription: Subscription) -> Dict[str, Any]:
    """Committed local state echoed back when the gateway sync fails."""
    return {
        "id": subscription.id,
        "plan": subscription.plan,
        "status": subscription.status,
        "nextBillingDate": (
            subscription.next_billing_date.isoformat()
            if subscription.next_billing_date
            else None
        ),
        "canceledAt": (
            subscription.canceled_at.isoformat() if subscription.canceled_at else None
        ),
    }


async def sync_failed(
    db: AsyncSession, error: AppException, subscription: Subscription
) -> AppException:
    """
    Commit whatever the failed sync left pending and build the error to raise.

    The gateway adapter may have stored a new Stripe customer id on the user
    before failing; that id is kept.
    """
    await db.commit()
    logger.warning(
        f"Gateway sync failed after local commit for subscription {subscription.id}: "
        f"{error.message}",
        extra={
            "subscription_id": subscription.id,
            "user_id": subscription.user_id,
            "error": error.__class__.__name__,
        },
    )
    return error.__class__(
        error.message,
        local_state_committed=True,
        subscription=subscription_snapshot(subscription),
        **error.context,
    )


async def sync_plan(
    db: AsyncSession,
    store: SubscriptionStore,
    gateway: StripeBillingGateway,
    user: User,
    subscription: Subscription,
    plan: Plan,
) -> None:
    """
    Push a committed plan change to Stripe.

    Paid plans create or update the Stripe subscription; moving to a free
    plan schedules the Stripe subscription to end with the paid period.
    """
    try:
        if plan.is_paid:
            remote = await gateway.create_or_update_subscription(user, plan)
            await store.attach_gateway_subscription(subscription.id, remote.id)
        else:
            await gateway.cancel_subscription(user, immediate=False)
    except (GatewayUnavailableError, PlanNotConfiguredError) as e:
        raise await sync_failed(db, e, subscription)


# ============================================================================
# Plans
# ============================================================================


@router.get(
    "/plans",
    response_model=List[PlanResponse],
    summary="List available subscription plans",
)
async def list_plans(db: AsyncSession = Depends(get_db)):
    """
    List all plans, ordered by code.

    WHY: Public so the pricing page can render before sign-in.
    """
    return await PlanCatalog(db).list_all()


# ============================================================================
# Current subscription
# ============================================================================


@router.get(
    "",
    response_model=SubscriptionResponse,
    summary="Get current subscription",
)
async def get_subscription(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Return the current subscription, creating the default free one if missing."""
    store = SubscriptionStore(db)
    subscription = await store.get_or_create_current(current_user.id)
    await db.commit()
    return subscription


@router.post(
    "/upgrade",
    response_model=UpgradeResponse,
    summary="Upgrade subscription plan",
)
async def upgrade_subscription(
    body: UpgradeRequest,
    current_user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
    gateway: StripeBillingGateway = Depends(get_billing_gateway),
):
    """
    Move to ``planId`` and start a new billing period now.

    Raises:
        PlanNotFoundError (404): Unknown plan code
        AlreadyOnPlanError (400): Already on this plan (nothing changes, Stripe not called)
        GatewayUnavailableError (502): Local change committed, Stripe sync failed
    """
    store = SubscriptionStore(db)
    current = await store.get_or_create_current(current_user.id)
    subscription = await store.upgrade(current.id, body.plan_id, body.billing_period, context)
    await db.commit()

    plan = await store.catalog.get_by_code(subscription.plan)
    await sync_plan(db, store, gateway, current_user, subscription, plan)

    return subscription


@router.post(
    "/downgrade",
    response_model=DowngradeResponse,
    summary="Downgrade subscription plan",
)
async def downgrade_subscription(
    body: DowngradeRequest,
    current_user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
    gateway: StripeBillingGateway = Depends(get_billing_gateway),
):
    """
    Move to a cheaper plan.

    ``effectiveDate`` becomes the next billing date; without it the
    downgrade is immediate. Past dates are accepted unchanged.
    """
    store = SubscriptionStore(db)
    current = await store.get_or_create_current(current_user.id)
    subscription = await store.downgrade(
        current.id,
        body.plan_id,
        context,
        effective_date=body.effective_datetime(),
    )
    await db.commit()

    plan = await store.catalog.get_by_code(subscription.plan)
    await sync_plan(db, store, gateway, current_user, subscription, plan)

    return DowngradeResponse(
        user_id=subscription.user_id,
        plan=subscription.plan,
        status=subscription.status,
        start_date=subscription.start_date,
        downgrade_effective_date=subscription.next_billing_date,
    )


@router.post(
    "/cancel",
    response_model=CancelResponse,
    summary="Cancel subscription",
)
async def cancel_subscription(
    body: Optional[CancelRequest] = None,
    current_user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
    gateway: StripeBillingGateway = Depends(get_billing_gateway),
):
    """
    Cancel the current subscription.

    Stripe is asked to stop renewing at the end of the paid period.

    Raises:
        NoActiveSubscriptionError (404): Nothing to cancel
        GatewayUnavailableError (502): Canceled locally, Stripe sync failed
    """
    body = body or CancelRequest()
    store = SubscriptionStore(db)
    current = await store.require_current(current_user.id)
    subscription = await store.cancel(
        current.id, context, reason=body.reason, feedback=body.feedback
    )
    await db.commit()

    if current_user.stripe_subscription_id:
        try:
            await gateway.cancel_subscription(current_user, immediate=False)
        except GatewayUnavailableError as e:
            raise await sync_failed(db, e, subscription)

    return CancelResponse(canceled_at=subscription.canceled_at)


@router.post(
    "/reactivate",
    response_model=ReactivateResponse,
    summary="Reactivate canceled subscription",
)
async def reactivate_subscription(
    current_user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
    gateway: StripeBillingGateway = Depends(get_billing_gateway),
):
    """
    Reactivate the most recently canceled subscription.

    Raises:
        ResourceNotFoundError (404): Nothing was ever canceled
        ReactivationWindowExpiredError (409): Canceled too long ago
        GatewayUnavailableError (502): Reactivated locally, Stripe sync failed
    """
    store = SubscriptionStore(db)
    reactivated_at = utcnow()
    subscription = await store.reactivate_latest(current_user.id, context)
    await db.commit()

    if current_user.stripe_subscription_id:
        try:
            await gateway.reactivate_subscription(current_user)
        except GatewayUnavailableError as e:
            raise await sync_failed(db, e, subscription)

    return ReactivateResponse(
        user_id=subscription.user_id,
        plan=subscription.plan,
        status=subscription.status,
        reactivated_at=reactivated_at,
    )


# ============================================================================
# Invoices & Usage
# ============================================================================


@router.get(
    "/invoices",
    response_model=SubscriptionInvoiceListResponse,
    summary="List subscription invoices",
)
async def list_subscription_invoices(
    status: Optional[str] = Query(None, description="Filter by invoice status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Page through the gateway invoices of the current subscription."""
    store = SubscriptionStore(db)
    subscription = await store.require_current(current_user.id)
    invoices, total = await store.list_invoices(
        subscription.id, status=status, page=page, limit=limit
    )
    return SubscriptionInvoiceListResponse(
        total=total,
        page=page,
        limit=limit,
        invoices=[SubscriptionInvoiceResponse.model_validate(i) for i in invoices],
    )


@router.get(
    "/usage",
    response_model=UsageResponse,
    summary="Get usage against plan limits",
)
async def get_usage(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Invoices issued this calendar month and clients created, against the
    current plan's limits. Unlimited plans report 0% used.
    """
    report = await UsageMetrics(db).usage_for(current_user.id)
    return UsageResponse.model_validate(report)
