"""
Stripe API endpoints.

WHAT: Thin pass-through routes over the billing gateway adapter, plus the
public webhook receiver:
1. POST /stripe/checkout - Create a Checkout Session for a plan
2. POST /stripe/portal - Create a Customer Portal session
3. POST /stripe/cancel - Cancel the Stripe subscription
4. GET  /stripe/subscription - Stripe's view of the subscription
5. GET  /stripe/customer - Stripe customer details
6. GET  /stripe/invoices - Recent Stripe invoices
7. POST /stripe/webhook - Stripe webhook receiver (signature-authenticated)

WHY: The pass-through routes change nothing locally. Local subscription
state follows from the webhooks Stripe sends afterwards.

SECURITY:
- Every route except the webhook requires a bearer token
- The webhook body is verified against the shared secret before parsing
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.core.deps import get_current_user
from saas_billing.core.exceptions import (
    GatewayUnavailableError,
    NoActiveSubscriptionError,
    ResourceNotFoundError,
)
from saas_billing.db.session import get_db
from saas_billing.models.user import User
from saas_billing.schemas.subscription import (
    CheckoutRequest,
    CheckoutResponse,
    GatewayCancelRequest,
    GatewayCancelResponse,
    GatewayCustomerResponse,
    GatewayInvoiceListResponse,
    GatewayInvoiceResponse,
    GatewaySubscriptionResponse,
    PortalResponse,
    WebhookResponse,
)
from saas_billing.services.billing_gateway import StripeBillingGateway, get_billing_gateway
from saas_billing.services.plan_catalog import PlanCatalog
from saas_billing.services.webhook_reconciler import WebhookReconciler

router = APIRouter(prefix="/stripe", tags=["Stripe"])


async def _keep_customer(db: AsyncSession, error: GatewayUnavailableError) -> GatewayUnavailableError:
    # A customer created before the failing call stays attached to the user.
    await db.commit()
    return error


# ============================================================================
# Checkout & Portal
# ============================================================================


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    summary="Create Stripe Checkout session",
)
async def create_checkout(
    body: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: StripeBillingGateway = Depends(get_billing_gateway),
):
    """
    Create a hosted Checkout page for ``planCode``.

    Paid plans open in subscription mode, free plans in setup mode.
    The plan change itself is applied by the checkout.session.completed
    webhook.
    """
    plan = await PlanCatalog(db).get_by_code(body.plan_code)
    try:
        session = await gateway.create_checkout_session(current_user, plan)
    except GatewayUnavailableError as e:
        raise await _keep_customer(db, e)

    return CheckoutResponse(
        session_id=session.id,
        checkout_url=session.url,
        mode=session.mode.value,
    )


@router.post(
    "/portal",
    response_model=PortalResponse,
    summary="Create Stripe Customer Portal session",
)
async def create_portal(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: StripeBillingGateway = Depends(get_billing_gateway),
):
    """Create a Customer Portal session for payment methods and invoices."""
    try:
        url = await gateway.create_portal_session(current_user)
    except GatewayUnavailableError as e:
        raise await _keep_customer(db, e)
    return PortalResponse(portal_url=url)


# ============================================================================
# Subscription
# ============================================================================


@router.post(
    "/cancel",
    response_model=GatewayCancelResponse,
    summary="Cancel Stripe subscription",
)
async def cancel_stripe_subscription(
    body: Optional[GatewayCancelRequest] = None,
    current_user: User = Depends(get_current_user),
    gateway: StripeBillingGateway = Depends(get_billing_gateway),
):
    """
    Cancel the Stripe subscription, immediately or at period end.

    Raises:
        NoActiveSubscriptionError (404): The user has no Stripe subscription
    """
    body = body or GatewayCancelRequest()
    result = await gateway.cancel_subscription(current_user, immediate=body.immediately)
    if result is None:
        raise NoActiveSubscriptionError(
            "User does not have a gateway subscription", user_id=current_user.id
        )

    message = (
        "Subscription canceled"
        if body.immediately
        else "Subscription will be canceled at the end of the billing period"
    )
    return GatewayCancelResponse(message=message, subscription_status=result.status)


@router.get(
    "/subscription",
    response_model=GatewaySubscriptionResponse,
    summary="Get Stripe subscription details",
)
async def get_stripe_subscription(
    current_user: User = Depends(get_current_user),
    gateway: StripeBillingGateway = Depends(get_billing_gateway),
):
    details = await gateway.get_subscription_details(current_user)
    if details is None:
        raise NoActiveSubscriptionError(
            "User does not have a gateway subscription", user_id=current_user.id
        )
    return GatewaySubscriptionResponse.model_validate(details)


@router.get(
    "/customer",
    response_model=GatewayCustomerResponse,
    summary="Get Stripe customer details",
)
async def get_stripe_customer(
    current_user: User = Depends(get_current_user),
    gateway: StripeBillingGateway = Depends(get_billing_gateway),
):
    customer = await gateway.get_customer(current_user)
    if customer is None:
        raise ResourceNotFoundError("No Stripe customer", user_id=current_user.id)
    return GatewayCustomerResponse.model_validate(customer)


@router.get(
    "/invoices",
    response_model=GatewayInvoiceListResponse,
    summary="List Stripe invoices",
)
async def list_stripe_invoices(
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: StripeBillingGateway = Depends(get_billing_gateway),
):
    """Most recent Stripe invoices; amounts in major units, currency upper-cased."""
    try:
        invoices = await gateway.list_invoices(current_user, limit=limit)
    except GatewayUnavailableError as e:
        raise await _keep_customer(db, e)

    return GatewayInvoiceListResponse(
        invoices=[GatewayInvoiceResponse.model_validate(i) for i in invoices],
        count=len(invoices),
    )


# ============================================================================
# Webhook
# ============================================================================


# Separate router: no auth dependency, the signature authenticates the call
webhooks_router = APIRouter(prefix="/stripe", tags=["Webhooks"])


@webhooks_router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Stripe webhook",
    responses={400: {"model": WebhookResponse}},
)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
):
    """
    Receive a Stripe event.

    WHY: Webhooks are the source of truth for subscription state. Unknown
    event types are acknowledged so new Stripe events never cause retries.

    Returns:
        200 when the event was applied or ignored, 400 when the signature
        is invalid or the handler failed (Stripe retries those)
    """
    # Raw body: the signature covers the exact bytes
    payload = await request.body()

    result = await WebhookReconciler(db).handle(payload, stripe_signature)
    return JSONResponse(
        status_code=200 if result.success else 400,
        content=result.to_dict(),
    )
