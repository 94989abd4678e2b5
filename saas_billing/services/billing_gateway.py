"""
Stripe billing gateway adapter.

WHAT: Translates local subscription intents into Stripe API calls
(customers, checkout and portal sessions, subscriptions, invoices).

WHY: Keeping every Stripe call behind one adapter gives the rest of the
application a single failure type (``GatewayUnavailableError``) and a
single retry policy:
1. Every call has a bounded timeout (``STRIPE_TIMEOUT_SECONDS``)
2. Idempotent reads are retried once on a connection error
3. Mutating calls are never retried, so a timeout can never create a
   second subscription at Stripe

HOW: The adapter is always called AFTER the local subscription change has
been committed. A failure here leaves local state ahead of Stripe; webhook
reconciliation brings the two back together.

The adapter stores a newly created Stripe customer id on the user object
it was given. It never commits; the caller's session does.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import stripe

from saas_billing.core.config import settings
from saas_billing.core.exceptions import (
    GatewayUnavailableError,
    NoActiveSubscriptionError,
    PlanNotConfiguredError,
)
from saas_billing.models.base import from_timestamp
from saas_billing.models.plan import Plan
from saas_billing.models.user import User

logger = logging.getLogger(__name__)


# ============================================================================
# Stripe Configuration
# ============================================================================


def configure_stripe() -> None:
    """
    Configure the Stripe SDK from settings.

    Sets the API key, pins the API version, disables the SDK's own retries
    (the adapter owns the retry policy) and installs an HTTP client with
    the configured timeout.
    """
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.api_version = settings.STRIPE_API_VERSION
    stripe.max_network_retries = 0
    stripe.default_http_client = stripe.RequestsClient(
        timeout=settings.STRIPE_TIMEOUT_SECONDS
    )


# Initialize Stripe on module load
configure_stripe()


# ============================================================================
# Data Classes
# ============================================================================


class CheckoutMode(str, Enum):
    """
    Stripe Checkout mode.

    Paid plans collect a recurring payment; free plans only save a card.
    """

    SUBSCRIPTION = "subscription"
    SETUP = "setup"


@dataclass
class StripeCustomer:
    """Customer record at Stripe."""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass
class CheckoutSession:
    """A created Checkout Session; ``url`` is where the user is redirected."""

    id: str
    url: str
    mode: CheckoutMode


@dataclass
class GatewaySubscription:
    """Stripe's view of a subscription."""

    id: str
    status: str
    cancel_at_period_end: bool = False
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


@dataclass
class GatewayInvoice:
    """Invoice issued by Stripe, amounts in major currency units."""

    id: str
    number: Optional[str]
    amount: Decimal
    currency: str
    status: Optional[str]
    created: Optional[datetime]
    paid: bool


# ============================================================================
# Helpers
# ============================================================================


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or plain dict."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


def to_minor_units(amount: Decimal) -> int:
    """12.00 -> 1200"""
    return int((Decimal(amount) * 100).to_integral_value())


def from_minor_units(amount: Optional[int]) -> Decimal:
    """1200 -> Decimal('12.00')"""
    return (Decimal(int(amount or 0)) / 100).quantize(Decimal("0.01"))


def describe_plan(plan: Plan) -> str:
    """Feature list joined for the Checkout product description."""
    return " | ".join(plan.features or [])


def _to_subscription(obj: Any) -> GatewaySubscription:
    return GatewaySubscription(
        id=_field(obj, "id"),
        status=_field(obj, "status", ""),
        cancel_at_period_end=bool(_field(obj, "cancel_at_period_end", False)),
        current_period_start=from_timestamp(_field(obj, "current_period_start")),
        current_period_end=from_timestamp(_field(obj, "current_period_end")),
    )


def _to_invoice(obj: Any) -> GatewayInvoice:
    status = _field(obj, "status")
    return GatewayInvoice(
        id=_field(obj, "id"),
        number=_field(obj, "number"),
        amount=from_minor_units(_field(obj, "amount_paid") or _field(obj, "amount_due")),
        currency=str(_field(obj, "currency", "")).upper(),
        status=status,
        created=from_timestamp(_field(obj, "created")),
        paid=bool(_field(obj, "paid", status == "paid")),
    )


# ============================================================================
# Billing Gateway
# ============================================================================


class StripeBillingGateway:
    """
    Adapter over the Stripe SDK.

    All public methods raise ``GatewayUnavailableError`` when Stripe fails.
    """

    def __init__(self, frontend_url: Optional[str] = None):
        self.frontend_url = (frontend_url or settings.FRONTEND_URL).rstrip("/")

    # ========================================================================
    # Call wrapper
    # ========================================================================

    def _call(
        self,
        operation: str,
        fn: Callable[..., Any],
        *args: Any,
        idempotent: bool = False,
        **kwargs: Any,
    ) -> Any:
        """
        Invoke a Stripe SDK function.

        Idempotent calls get exactly one retry after a connection error.
        Every Stripe error is logged and re-raised as GatewayUnavailableError.
        """
        attempts = 2 if idempotent else 1
        for attempt in range(1, attempts + 1):
            try:
                return fn(*args, **kwargs)
            except stripe.APIConnectionError as e:
                if attempt < attempts:
                    logger.warning(
                        f"Stripe {operation} connection error, retrying: {e}",
                        extra={"operation": operation},
                    )
                    continue
                logger.error(f"Stripe {operation} failed: {e}", extra={"operation": operation})
                raise GatewayUnavailableError(
                    message="Payment processor unreachable",
                    operation=operation,
                    stripe_error=str(e),
                )
            except stripe.StripeError as e:
                logger.error(f"Stripe {operation} failed: {e}", extra={"operation": operation})
                raise GatewayUnavailableError(
                    message=f"Payment processor rejected {operation}",
                    operation=operation,
                    stripe_error=str(e),
                )

    # ========================================================================
    # Customers
    # ========================================================================

    async def get_or_create_customer(self, user: User) -> StripeCustomer:
        """
        Return the user's Stripe customer, creating it on first use.

        A stored customer id that Stripe reports as deleted or missing is
        replaced by a new customer.
        """
        if user.stripe_customer_id:
            existing = self._retrieve_customer(user.stripe_customer_id)
            if existing is not None:
                return existing

        customer = self._call(
            "customer creation",
            stripe.Customer.create,
            name=user.name,
            email=user.email,
            metadata={"user_id": str(user.id)},
        )
        user.stripe_customer_id = _field(customer, "id")

        logger.info(
            f"Created Stripe customer {user.stripe_customer_id} for user {user.id}",
            extra={"stripe_customer_id": user.stripe_customer_id, "user_id": user.id},
        )
        return StripeCustomer(
            id=_field(customer, "id"),
            email=_field(customer, "email"),
            name=_field(customer, "name"),
        )

    async def get_customer(self, user: User) -> Optional[StripeCustomer]:
        """The user's Stripe customer, or None if they have none yet."""
        if not user.stripe_customer_id:
            return None
        return self._retrieve_customer(user.stripe_customer_id)

    def _retrieve_customer(self, customer_id: str) -> Optional[StripeCustomer]:
        try:
            customer = self._call(
                "customer lookup",
                self._retrieve_raw_customer,
                customer_id,
                idempotent=True,
            )
        except _CustomerMissing:
            return None
        if _field(customer, "deleted", False):
            return None
        return StripeCustomer(
            id=_field(customer, "id"),
            email=_field(customer, "email"),
            name=_field(customer, "name"),
        )

    @staticmethod
    def _retrieve_raw_customer(customer_id: str) -> Any:
        try:
            return stripe.Customer.retrieve(customer_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                raise _CustomerMissing(customer_id) from e
            raise

    # ========================================================================
    # Checkout & Portal
    # ========================================================================

    async def create_checkout_session(self, user: User, plan: Plan) -> CheckoutSession:
        """
        Create a hosted Checkout page for a plan.

        Paid plans use subscription mode with an inline recurring price;
        free plans use setup mode with no line items.
        """
        customer = await self.get_or_create_customer(user)
        mode = CheckoutMode.SUBSCRIPTION if plan.is_paid else CheckoutMode.SETUP

        session = self._call(
            "checkout session creation",
            stripe.checkout.Session.create,
            customer=customer.id,
            payment_method_types=["card"],
            mode=mode.value,
            success_url=f"{self.frontend_url}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self.frontend_url}/subscription/cancel",
            line_items=self._line_items(plan),
            metadata={
                "user_id": str(user.id),
                "plan_code": plan.code,
                "plan_id": str(plan.id),
            },
        )

        logger.info(
            f"Created checkout session {_field(session, 'id')} for user {user.id}",
            extra={
                "checkout_session_id": _field(session, "id"),
                "user_id": user.id,
                "plan_code": plan.code,
                "mode": mode.value,
            },
        )
        return CheckoutSession(id=_field(session, "id"), url=_field(session, "url"), mode=mode)

    @staticmethod
    def _line_items(plan: Plan) -> List[Dict[str, Any]]:
        if not plan.is_paid:
            return []
        return [
            {
                "price_data": {
                    "currency": plan.currency.lower(),
                    "product_data": {
                        "name": plan.name,
                        "description": describe_plan(plan),
                    },
                    "unit_amount": to_minor_units(plan.price),
                    "recurring": {"interval": plan.interval, "interval_count": 1},
                },
                "quantity": 1,
            }
        ]

    async def create_portal_session(self, user: User) -> str:
        """Create a customer portal session and return its URL."""
        customer = await self.get_or_create_customer(user)
        session = self._call(
            "portal session creation",
            stripe.billing_portal.Session.create,
            customer=customer.id,
            return_url=f"{self.frontend_url}/subscription",
        )
        return _field(session, "url")

    # ========================================================================
    # Subscriptions
    # ========================================================================

    async def create_or_update_subscription(
        self, user: User, plan: Plan
    ) -> GatewaySubscription:
        """
        Put the user's Stripe subscription on ``plan``.

        Swaps the price of the existing subscription item when the user has
        a Stripe subscription, else creates a new subscription.

        Raises:
            PlanNotConfiguredError: If the plan has no Stripe price
            GatewayUnavailableError: If Stripe fails
        """
        if not plan.stripe_price_id:
            raise PlanNotConfiguredError(
                f"Plan '{plan.code}' has no gateway price configured",
                plan_code=plan.code,
            )

        if user.stripe_subscription_id:
            current = self._call(
                "subscription lookup",
                stripe.Subscription.retrieve,
                user.stripe_subscription_id,
                idempotent=True,
            )
            items = _field(_field(current, "items"), "data", [])
            item_update: Dict[str, Any] = {"price": plan.stripe_price_id}
            if items:
                item_update["id"] = _field(items[0], "id")
            updated = self._call(
                "subscription update",
                stripe.Subscription.modify,
                user.stripe_subscription_id,
                items=[item_update],
                metadata={"plan_code": plan.code, "plan_id": str(plan.id)},
            )
            result = _to_subscription(updated)
            logger.info(
                f"Updated Stripe subscription {result.id} to plan {plan.code}",
                extra={"stripe_subscription_id": result.id, "user_id": user.id},
            )
            return result

        customer = await self.get_or_create_customer(user)
        created = self._call(
            "subscription creation",
            stripe.Subscription.create,
            customer=customer.id,
            items=[{"price": plan.stripe_price_id}],
            metadata={
                "user_id": str(user.id),
                "plan_code": plan.code,
                "plan_id": str(plan.id),
            },
        )
        result = _to_subscription(created)
        logger.info(
            f"Created Stripe subscription {result.id} for user {user.id}",
            extra={"stripe_subscription_id": result.id, "user_id": user.id},
        )
        return result

    async def cancel_subscription(
        self, user: User, immediate: bool = False
    ) -> Optional[GatewaySubscription]:
        """
        Cancel the user's Stripe subscription.

        Without ``immediate`` the subscription runs until the end of the
        paid period. Returns None when the user has no Stripe subscription.
        """
        if not user.stripe_subscription_id:
            return None

        if immediate:
            canceled = self._call(
                "subscription cancellation",
                stripe.Subscription.cancel,
                user.stripe_subscription_id,
            )
        else:
            canceled = self._call(
                "subscription cancellation",
                stripe.Subscription.modify,
                user.stripe_subscription_id,
                cancel_at_period_end=True,
            )

        result = _to_subscription(canceled)
        logger.info(
            f"Canceled Stripe subscription {result.id}",
            extra={
                "stripe_subscription_id": result.id,
                "user_id": user.id,
                "immediate": immediate,
            },
        )
        return result

    async def reactivate_subscription(self, user: User) -> GatewaySubscription:
        """
        Undo a pending end-of-period cancellation.

        Raises:
            NoActiveSubscriptionError: If the user has no Stripe subscription
        """
        if not user.stripe_subscription_id:
            raise NoActiveSubscriptionError(
                "User does not have a gateway subscription", user_id=user.id
            )

        reactivated = self._call(
            "subscription reactivation",
            stripe.Subscription.modify,
            user.stripe_subscription_id,
            cancel_at_period_end=False,
        )
        result = _to_subscription(reactivated)
        logger.info(
            f"Reactivated Stripe subscription {result.id}",
            extra={"stripe_subscription_id": result.id, "user_id": user.id},
        )
        return result

    async def get_subscription_details(self, user: User) -> Optional[GatewaySubscription]:
        if not user.stripe_subscription_id:
            return None
        subscription = self._call(
            "subscription lookup",
            stripe.Subscription.retrieve,
            user.stripe_subscription_id,
            idempotent=True,
        )
        return _to_subscription(subscription)

    # ========================================================================
    # Invoices
    # ========================================================================

    async def list_invoices(self, user: User, limit: int = 10) -> List[GatewayInvoice]:
        """The customer's most recent Stripe invoices."""
        customer = await self.get_or_create_customer(user)
        invoices = self._call(
            "invoice listing",
            stripe.Invoice.list,
            customer=customer.id,
            limit=limit,
            idempotent=True,
        )
        return [_to_invoice(invoice) for invoice in _field(invoices, "data", [])]


class _CustomerMissing(Exception):
    """Stripe has no customer with the stored id."""


# ============================================================================
# Module-level convenience functions
# ============================================================================


_billing_gateway: Optional[StripeBillingGateway] = None


def get_billing_gateway() -> StripeBillingGateway:
    """
    Get or create the global billing gateway instance.

    Used as a FastAPI dependency so tests can override it.
    """
    global _billing_gateway

    if _billing_gateway is None:
        _billing_gateway = StripeBillingGateway()

    return _billing_gateway
