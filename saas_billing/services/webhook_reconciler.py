"""
Stripe webhook reconciler.

WHAT: Verifies inbound Stripe events and applies them to local
subscription and subscription-invoice records.

WHY: Stripe is the source of truth for payment state. Its events arrive
asynchronously, may be redelivered, and may reference objects this system
never created. The reconciler therefore:
1. Rejects payloads whose signature does not verify, before any database access
2. Ignores event types it does not know (new Stripe events must not break us)
3. Looks records up by Stripe ids and upserts, so replaying an event is harmless
4. Treats unresolvable users, subscriptions and plans as no-ops
5. Never raises: ``handle`` always returns a ``WebhookResult``

HOW: Event types are mapped onto the closed ``WebhookEventKind`` enum;
everything else becomes ``UNKNOWN``. Each handler runs inside a SAVEPOINT
and takes the subscription row lock, so a webhook cannot interleave with a
user-initiated transition on the same subscription.
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.core.config import settings
from saas_billing.dao.plan import PlanDAO
from saas_billing.dao.subscription import SubscriptionDAO
from saas_billing.dao.subscription_invoice import SubscriptionInvoiceDAO
from saas_billing.dao.user import UserDAO
from saas_billing.models.base import from_timestamp, utcnow
from saas_billing.models.subscription import Subscription, SubscriptionStatus
from saas_billing.models.subscription_invoice import SubscriptionInvoiceStatus
from saas_billing.models.user import User
from saas_billing.services.billing_gateway import from_minor_units

logger = logging.getLogger(__name__)

# Version of the set of event kinds below. Bump when a kind is added.
WEBHOOK_EVENT_KINDS_VERSION = 1

FREE_PLAN_CODE = "free"


class WebhookEventKind(str, Enum):
    """Stripe event types the reconciler acts on."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    UNKNOWN = "unknown"

    @classmethod
    def from_type(cls, event_type: Optional[str]) -> "WebhookEventKind":
        try:
            kind = cls(event_type)
        except ValueError:
            return cls.UNKNOWN
        return kind


@dataclass(frozen=True)
class WebhookEvent:
    """A verified Stripe event."""

    id: Optional[str]
    type: str
    kind: WebhookEventKind
    data: Dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WebhookEvent":
        event_type = payload.get("type") or ""
        return cls(
            id=payload.get("id"),
            type=event_type,
            kind=WebhookEventKind.from_type(event_type),
            data=(payload.get("data") or {}).get("object") or {},
        )


@dataclass(frozen=True)
class WebhookResult:
    """Outcome reported back to Stripe."""

    success: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message}


class WebhookReconciler:
    """
    Applies Stripe webhook events to local state.

    Example:
        reconciler = WebhookReconciler(db)
        result = await reconciler.handle(raw_body, request.headers["Stripe-Signature"])
    """

    def __init__(self, session: AsyncSession, webhook_secret: Optional[str] = None):
        self.session = session
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.subscription_dao = SubscriptionDAO(session)
        self.invoice_dao = SubscriptionInvoiceDAO(session)
        self.user_dao = UserDAO(session)
        self.plan_dao = PlanDAO(session)

    async def handle(self, payload: Union[bytes, str], signature: Optional[str]) -> WebhookResult:
        """
        Verify and apply one webhook delivery.

        Args:
            payload: Raw request body, exactly as received
            signature: Value of the Stripe-Signature header

        Returns:
            WebhookResult; success is False only for a bad signature or a
            handler failure (which Stripe will retry)
        """
        event = self.verify(payload, signature)
        if event is None:
            return WebhookResult(success=False, message="Invalid signature")

        if event.kind is WebhookEventKind.UNKNOWN:
            logger.info(
                f"Ignoring webhook event type {event.type}",
                extra={"event_id": event.id, "event_type": event.type},
            )
            return WebhookResult(success=True, message="Webhook processed")

        handler = self._handlers()[event.kind]
        try:
            async with self.session.begin_nested():
                await handler(event.data)
        except Exception as e:
            logger.error(
                f"Webhook event {event.id} ({event.type}) failed: {e}",
                exc_info=True,
                extra={"event_id": event.id, "event_type": event.type},
            )
            return WebhookResult(success=False, message="Webhook processing failed")

        logger.info(
            f"Processed webhook event {event.id} ({event.type})",
            extra={"event_id": event.id, "event_type": event.type},
        )
        return WebhookResult(success=True, message="Webhook processed")

    def verify(
        self, payload: Union[bytes, str], signature: Optional[str]
    ) -> Optional[WebhookEvent]:
        """
        Check the signature and parse the event.

        Returns:
            The parsed event, or None when the signature or body is invalid
        """
        if not signature:
            logger.warning("Webhook rejected: missing signature header")
            return None

        if isinstance(payload, bytes):
            try:
                body = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.warning(f"Webhook payload is not valid UTF-8: {e}")
                return None
        else:
            body = payload
        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.webhook_secret,
                settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            return None

        try:
            parsed = json.loads(body)
        except ValueError as e:
            logger.warning(f"Webhook payload is not valid JSON: {e}")
            return None
        if not isinstance(parsed, dict):
            logger.warning("Webhook payload is not a JSON object")
            return None

        return WebhookEvent.from_payload(parsed)

    def _handlers(self):
        return {
            WebhookEventKind.CHECKOUT_SESSION_COMPLETED: self._on_checkout_completed,
            WebhookEventKind.SUBSCRIPTION_UPDATED: self._on_subscription_updated,
            WebhookEventKind.SUBSCRIPTION_DELETED: self._on_subscription_deleted,
            WebhookEventKind.INVOICE_PAYMENT_SUCCEEDED: self._on_invoice_paid,
            WebhookEventKind.INVOICE_PAYMENT_FAILED: self._on_invoice_failed,
        }

    # ========================================================================
    # Handlers
    # ========================================================================

    async def _on_checkout_completed(self, session: Dict[str, Any]) -> None:
        """
        Link the Stripe customer and subscription to the user.

        Subscription checkouts put the user's current subscription on the
        purchased plan (creating one if needed) with status active.
        """
        metadata = session.get("metadata") or {}
        user = await self._user_from_metadata(metadata)
        if user is None:
            logger.warning(
                "checkout.session.completed for unknown user",
                extra={"metadata_user_id": metadata.get("user_id")},
            )
            return

        customer_id = session.get("customer")
        if customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = customer_id

        stripe_subscription_id = session.get("subscription")
        if session.get("mode") != "subscription" or not stripe_subscription_id:
            await self.session.flush()
            return

        plan_code = metadata.get("plan_code") or FREE_PLAN_CODE
        plan = await self.plan_dao.get_by_code(plan_code)
        if plan is None:
            logger.warning(
                f"checkout.session.completed for unknown plan {plan_code}",
                extra={"user_id": user.id, "plan_code": plan_code},
            )
            await self.session.flush()
            return

        subscription = await self.subscription_dao.get_by_stripe_subscription_id(
            stripe_subscription_id, for_update=True
        )
        if subscription is None:
            current = await self.subscription_dao.list_current_for_user(user.id, for_update=True)
            subscription = current[0] if current else None

        if subscription is None:
            subscription = await self.subscription_dao.create(
                user_id=user.id,
                plan=plan.code,
                status=SubscriptionStatus.ACTIVE.value,
                billing_period=plan.interval,
                price=plan.price,
                start_date=utcnow(),
                stripe_subscription_id=stripe_subscription_id,
            )
        else:
            if subscription.is_canceled:
                await self._supersede_current(subscription)
            if subscription.plan != plan.code:
                subscription.price = plan.price
            subscription.plan = plan.code
            subscription.status = SubscriptionStatus.ACTIVE.value
            subscription.canceled_at = None
            subscription.stripe_subscription_id = stripe_subscription_id

        self._mirror(user, subscription)
        await self.session.flush()

    async def _on_subscription_updated(self, data: Dict[str, Any]) -> None:
        """
        Copy Stripe's status and period boundaries verbatim.

        A locally canceled row that Stripe still reports as live becomes the
        user's current subscription again; any other current row is canceled.
        """
        subscription = await self._subscription_for(data)
        if subscription is None:
            return

        status = data.get("status") or subscription.status
        if status == SubscriptionStatus.CANCELED.value:
            if subscription.canceled_at is None:
                subscription.canceled_at = utcnow()
        elif subscription.is_canceled:
            await self._supersede_current(subscription)
            subscription.canceled_at = None
        subscription.status = status
        if data.get("current_period_start") is not None:
            subscription.current_period_start = from_timestamp(data["current_period_start"])
        if data.get("current_period_end") is not None:
            subscription.current_period_end = from_timestamp(data["current_period_end"])

        await self._mirror_owner(subscription)
        await self.session.flush()

    async def _on_subscription_deleted(self, data: Dict[str, Any]) -> None:
        """
        Stripe deleted the subscription: cancel locally and drop to free.

        A subscription that was already canceled keeps its original
        cancellation time.
        """
        subscription = await self._subscription_for(data)
        if subscription is None:
            return

        free_plan = await self.plan_dao.get_by_code(FREE_PLAN_CODE)
        if subscription.canceled_at is None or not subscription.is_canceled:
            subscription.canceled_at = utcnow()
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.plan = FREE_PLAN_CODE
        subscription.price = free_plan.price if free_plan else Decimal("0.00")

        await self._mirror_owner(subscription)
        await self.session.flush()

    async def _on_invoice_paid(self, invoice: Dict[str, Any]) -> None:
        await self._upsert_invoice(invoice, SubscriptionInvoiceStatus.PAID)

    async def _on_invoice_failed(self, invoice: Dict[str, Any]) -> None:
        await self._upsert_invoice(invoice, SubscriptionInvoiceStatus.FAILED)

    # ========================================================================
    # Internals
    # ========================================================================

    async def _upsert_invoice(
        self, invoice: Dict[str, Any], status: SubscriptionInvoiceStatus
    ) -> None:
        """
        Insert or update the invoice row keyed by the Stripe invoice id.

        The invoice is attached to the local subscription named by the event,
        falling back to the latest subscription of the customer's user.
        """
        stripe_invoice_id = invoice.get("id")
        if not stripe_invoice_id:
            return

        subscription = None
        if invoice.get("subscription"):
            subscription = await self.subscription_dao.get_by_stripe_subscription_id(
                invoice["subscription"], for_update=True
            )
        if subscription is None and invoice.get("customer"):
            user = await self.user_dao.get_by_stripe_customer_id(invoice["customer"])
            if user is not None:
                subscription = await self.subscription_dao.get_latest_for_user(
                    user.id, for_update=True
                )
        if subscription is None:
            logger.warning(
                f"No local subscription for invoice {stripe_invoice_id}",
                extra={
                    "stripe_invoice_id": stripe_invoice_id,
                    "stripe_customer_id": invoice.get("customer"),
                },
            )
            return

        if status is SubscriptionInvoiceStatus.PAID:
            amount = from_minor_units(invoice.get("amount_paid"))
            transitions = invoice.get("status_transitions") or {}
            paid_date = from_timestamp(transitions.get("paid_at")) or utcnow()
        else:
            amount = from_minor_units(invoice.get("amount_due"))
            paid_date = None

        invoice_date = from_timestamp(invoice.get("created")) or utcnow()
        values = {
            "subscription_id": subscription.id,
            "amount": amount,
            "currency": str(invoice.get("currency") or "eur").upper(),
            "status": status.value,
            "invoice_date": invoice_date,
            "due_date": from_timestamp(invoice.get("due_date")) or invoice_date,
            "paid_date": paid_date,
            "pdf_url": invoice.get("invoice_pdf"),
        }

        existing = await self.invoice_dao.get_by_stripe_invoice_id(stripe_invoice_id)
        if existing is None:
            try:
                async with self.session.begin_nested():
                    await self.invoice_dao.create(stripe_invoice_id=stripe_invoice_id, **values)
                return
            except IntegrityError:
                existing = await self.invoice_dao.get_by_stripe_invoice_id(stripe_invoice_id)
                if existing is None:
                    raise

        for key, value in values.items():
            setattr(existing, key, value)
        await self.session.flush()

    async def _subscription_for(self, data: Dict[str, Any]) -> Optional[Subscription]:
        stripe_subscription_id = data.get("id")
        if not stripe_subscription_id:
            return None
        subscription = await self.subscription_dao.get_by_stripe_subscription_id(
            stripe_subscription_id, for_update=True
        )
        if subscription is None:
            logger.warning(
                f"No local subscription for Stripe subscription {stripe_subscription_id}",
                extra={"stripe_subscription_id": stripe_subscription_id},
            )
        return subscription

    async def _supersede_current(self, subscription: Subscription) -> None:
        """Cancel the owner's other current rows before ``subscription`` is revived."""
        now = utcnow()
        for other in await self.subscription_dao.list_current_for_user(
            subscription.user_id, for_update=True
        ):
            if other.id == subscription.id:
                continue
            other.status = SubscriptionStatus.CANCELED.value
            other.canceled_at = now
            logger.info(
                f"Subscription {other.id} superseded by revived subscription {subscription.id}",
                extra={"user_id": subscription.user_id, "subscription_id": other.id},
            )

    async def _user_from_metadata(self, metadata: Dict[str, Any]) -> Optional[User]:
        try:
            user_id = int(metadata.get("user_id"))
        except (TypeError, ValueError):
            return None
        return await self.user_dao.get_by_id(user_id)

    async def _mirror_owner(self, subscription: Subscription) -> None:
        user = await self.user_dao.get_by_id(subscription.user_id)
        if user is None:
            return
        if subscription.is_canceled:
            current = await self.subscription_dao.list_current_for_user(user.id)
            current = [s for s in current if s.id != subscription.id]
            if current:
                return
        self._mirror(user, subscription)

    @staticmethod
    def _mirror(user: User, subscription: Subscription) -> None:
        user.subscription_plan = subscription.plan
        user.subscription_status = subscription.status
        user.stripe_subscription_id = subscription.stripe_subscription_id
