"""
Unit tests for the Stripe webhook reconciler.

WHAT: Signature checks, event dispatch, idempotent invoice upserts and
subscription state convergence.

WHY: Stripe redelivers events and may send them for objects we never
created; local state must converge no matter how often or in which
context an event arrives.
"""

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from saas_billing.dao.subscription import SubscriptionDAO
from saas_billing.dao.subscription_invoice import SubscriptionInvoiceDAO
from saas_billing.models.subscription import SubscriptionStatus
from saas_billing.models.subscription_invoice import SubscriptionInvoice
from saas_billing.services.audit import AuditContext
from saas_billing.services.subscription_store import SubscriptionStore
from saas_billing.services.webhook_reconciler import (
    WebhookEventKind,
    WebhookReconciler,
)
from tests.factories import StripeEventFactory, SubscriptionFactory, UserFactory


SECRET = "whsec_test"


async def deliver(db_session, event_type, data, signature=None, event_id="evt_test_1"):
    payload = StripeEventFactory.build(event_type, data, event_id=event_id)
    reconciler = WebhookReconciler(db_session, webhook_secret=SECRET)
    return await reconciler.handle(
        payload, signature if signature is not None else StripeEventFactory.sign(payload)
    )


async def invoice_count(db_session) -> int:
    result = await db_session.execute(select(func.count(SubscriptionInvoice.id)))
    return result.scalar_one()


async def cancel_and_fall_back_to_free(db_session, user, subscription):
    """Cancel locally, then let the store create the default free subscription."""
    store = SubscriptionStore(db_session)
    await store.cancel(subscription.id, AuditContext.for_user(user))
    return await store.get_or_create_current(user.id)


async def current_rows(db_session, user):
    return await SubscriptionDAO(db_session).list_current_for_user(user.id)


def invoice_payload(**overrides):
    data = {
        "id": "in_1",
        "object": "invoice",
        "subscription": "sub_remote_1",
        "customer": "cus_1",
        "amount_paid": 1200,
        "amount_due": 1200,
        "currency": "eur",
        "created": 1767225600,
        "due_date": None,
        "status_transitions": {"paid_at": 1767225660},
        "invoice_pdf": "https://pay.stripe.com/invoice/in_1/pdf",
    }
    data.update(overrides)
    return data


@pytest_asyncio.fixture
async def linked_subscription(db_session, plans):
    """A pro subscription already linked to Stripe."""
    user = await UserFactory.create(
        db_session, email="linked@example.com", stripe_customer_id="cus_1"
    )
    subscription = await SubscriptionFactory.create(
        db_session,
        user,
        plan="pro",
        price=Decimal("12.00"),
        stripe_subscription_id="sub_remote_1",
    )
    return user, subscription


class TestEventKinds:
    """Tests for mapping Stripe event types."""

    def test_known_types(self):
        assert (
            WebhookEventKind.from_type("invoice.payment_failed")
            is WebhookEventKind.INVOICE_PAYMENT_FAILED
        )

    def test_unknown_and_missing_types(self):
        assert WebhookEventKind.from_type("customer.created") is WebhookEventKind.UNKNOWN
        assert WebhookEventKind.from_type(None) is WebhookEventKind.UNKNOWN


@pytest.mark.asyncio
class TestSignature:
    """Tests for signature verification."""

    async def test_bad_signature_is_rejected_without_writes(
        self, db_session, linked_subscription
    ):
        result = await deliver(
            db_session,
            "invoice.payment_succeeded",
            invoice_payload(),
            signature=StripeEventFactory.sign("tampered"),
        )

        assert result.success is False
        assert await invoice_count(db_session) == 0

    async def test_wrong_secret_is_rejected(self, db_session):
        payload = StripeEventFactory.build("customer.created", {"id": "cus_1"})
        reconciler = WebhookReconciler(db_session, webhook_secret=SECRET)

        result = await reconciler.handle(
            payload, StripeEventFactory.sign(payload, secret="whsec_other")
        )

        assert result.success is False

    async def test_missing_signature_is_rejected(self, db_session):
        reconciler = WebhookReconciler(db_session, webhook_secret=SECRET)

        result = await reconciler.handle(b"{}", None)

        assert result.to_dict() == {"success": False, "message": "Invalid signature"}

    async def test_bytes_payload_is_accepted(self, db_session):
        payload = StripeEventFactory.build("customer.created", {"id": "cus_1"})
        reconciler = WebhookReconciler(db_session, webhook_secret=SECRET)

        result = await reconciler.handle(
            payload.encode("utf-8"), StripeEventFactory.sign(payload)
        )

        assert result.success is True

    async def test_non_utf8_payload_is_rejected(self, db_session):
        reconciler = WebhookReconciler(db_session, webhook_secret=SECRET)

        result = await reconciler.handle(b"\xff\xfe{bad", "t=1,v1=abc")

        assert result.to_dict() == {"success": False, "message": "Invalid signature"}


@pytest.mark.asyncio
class TestUnknownEvents:
    async def test_unknown_event_is_acknowledged(self, db_session):
        result = await deliver(db_session, "customer.created", {"id": "cus_1"})

        assert result.success is True
        assert result.message == "Webhook processed"


@pytest.mark.asyncio
class TestCheckoutCompleted:
    """Tests for checkout.session.completed."""

    async def test_links_customer_and_upgrades_current_subscription(self, db_session, plans):
        user = await UserFactory.create(db_session, email="checkout@example.com")
        subscription = await SubscriptionFactory.create(db_session, user)

        result = await deliver(
            db_session,
            "checkout.session.completed",
            {
                "id": "cs_1",
                "mode": "subscription",
                "customer": "cus_new",
                "subscription": "sub_new",
                "metadata": {"user_id": str(user.id), "plan_code": "pro"},
            },
        )

        assert result.success is True
        assert user.stripe_customer_id == "cus_new"
        assert user.subscription_plan == "pro"
        assert user.stripe_subscription_id == "sub_new"
        assert subscription.plan == "pro"
        assert subscription.price == Decimal("12.00")
        assert subscription.stripe_subscription_id == "sub_new"

    async def test_creates_subscription_when_none_exists(self, db_session, plans):
        user = await UserFactory.create(db_session, email="fresh@example.com")

        await deliver(
            db_session,
            "checkout.session.completed",
            {
                "mode": "subscription",
                "customer": "cus_fresh",
                "subscription": "sub_fresh",
                "metadata": {"user_id": user.id, "plan_code": "pro"},
            },
        )

        created = await SubscriptionDAO(db_session).get_by_stripe_subscription_id("sub_fresh")
        assert created is not None
        assert created.user_id == user.id
        assert created.status == SubscriptionStatus.ACTIVE.value

    async def test_setup_mode_only_links_customer(self, db_session, plans):
        user = await UserFactory.create(db_session, email="setup@example.com")

        await deliver(
            db_session,
            "checkout.session.completed",
            {
                "mode": "setup",
                "customer": "cus_setup",
                "metadata": {"user_id": user.id, "plan_code": "free"},
            },
        )

        assert user.stripe_customer_id == "cus_setup"
        assert user.stripe_subscription_id is None

    async def test_existing_customer_id_is_kept(self, db_session, plans):
        user = await UserFactory.create(
            db_session, email="kept@example.com", stripe_customer_id="cus_original"
        )

        await deliver(
            db_session,
            "checkout.session.completed",
            {"mode": "setup", "customer": "cus_other", "metadata": {"user_id": user.id}},
        )

        assert user.stripe_customer_id == "cus_original"

    async def test_unknown_user_is_a_no_op(self, db_session, plans):
        result = await deliver(
            db_session,
            "checkout.session.completed",
            {"mode": "subscription", "subscription": "sub_x", "metadata": {"user_id": "999"}},
        )

        assert result.success is True

    async def test_unknown_plan_is_a_no_op(self, db_session, linked_subscription):
        user, subscription = linked_subscription

        result = await deliver(
            db_session,
            "checkout.session.completed",
            {
                "mode": "subscription",
                "customer": "cus_1",
                "subscription": "sub_other",
                "metadata": {"user_id": user.id, "plan_code": "platinum"},
            },
        )

        assert result.success is True
        assert subscription.plan == "pro"
        assert subscription.price == Decimal("12.00")
        assert subscription.stripe_subscription_id == "sub_remote_1"
        assert await SubscriptionDAO(db_session).get_by_stripe_subscription_id("sub_other") is None
        assert user.subscription_plan == "pro"

    async def test_redelivery_after_local_cancel_keeps_one_current(
        self, db_session, linked_subscription
    ):
        user, subscription = linked_subscription
        free = await cancel_and_fall_back_to_free(db_session, user, subscription)
        session_data = {
            "mode": "subscription",
            "customer": "cus_1",
            "subscription": "sub_remote_1",
            "metadata": {"user_id": user.id, "plan_code": "pro"},
        }

        for event_id in ("evt_test_1", "evt_test_2"):
            result = await deliver(
                db_session, "checkout.session.completed", session_data, event_id=event_id
            )
            assert result.success is True

        current = await current_rows(db_session, user)
        assert [s.id for s in current] == [subscription.id]
        assert subscription.status == SubscriptionStatus.ACTIVE.value
        assert subscription.canceled_at is None
        assert free.status == SubscriptionStatus.CANCELED.value
        assert free.canceled_at is not None
        assert user.subscription_plan == "pro"


@pytest.mark.asyncio
class TestSubscriptionEvents:
    """Tests for customer.subscription.updated / deleted."""

    async def test_updated_copies_status_and_period(self, db_session, linked_subscription):
        user, subscription = linked_subscription

        await deliver(
            db_session,
            "customer.subscription.updated",
            {
                "id": "sub_remote_1",
                "status": "past_due",
                "current_period_start": 1767225600,
                "current_period_end": 1769904000,
            },
        )

        assert subscription.status == "past_due"
        assert subscription.current_period_start.year == 2026
        assert subscription.current_period_end > subscription.current_period_start
        assert user.subscription_status == "past_due"

    async def test_updated_to_canceled_sets_canceled_at(self, db_session, linked_subscription):
        _, subscription = linked_subscription

        await deliver(
            db_session,
            "customer.subscription.updated",
            {"id": "sub_remote_1", "status": "canceled"},
        )

        assert subscription.status == SubscriptionStatus.CANCELED.value
        assert subscription.canceled_at is not None

    async def test_active_update_after_local_cancel_revives_one_row(
        self, db_session, linked_subscription
    ):
        user, subscription = linked_subscription
        free = await cancel_and_fall_back_to_free(db_session, user, subscription)

        result = await deliver(
            db_session,
            "customer.subscription.updated",
            {"id": "sub_remote_1", "status": "active", "cancel_at_period_end": True},
        )

        assert result.success is True
        current = await current_rows(db_session, user)
        assert [s.id for s in current] == [subscription.id]
        assert subscription.status == SubscriptionStatus.ACTIVE.value
        assert subscription.canceled_at is None
        assert free.status == SubscriptionStatus.CANCELED.value
        assert user.subscription_plan == "pro"
        assert user.subscription_status == SubscriptionStatus.ACTIVE.value

    async def test_deleted_drops_to_free(self, db_session, linked_subscription):
        user, subscription = linked_subscription

        await deliver(db_session, "customer.subscription.deleted", {"id": "sub_remote_1"})

        assert subscription.status == SubscriptionStatus.CANCELED.value
        assert subscription.plan == "free"
        assert subscription.price == Decimal("0.00")
        assert user.subscription_plan == "free"
        assert user.subscription_status == SubscriptionStatus.CANCELED.value

    async def test_deleted_keeps_original_canceled_at(self, db_session, linked_subscription):
        _, subscription = linked_subscription
        await deliver(
            db_session,
            "customer.subscription.updated",
            {"id": "sub_remote_1", "status": "canceled"},
        )
        first_canceled_at = subscription.canceled_at

        await deliver(
            db_session,
            "customer.subscription.deleted",
            {"id": "sub_remote_1"},
            event_id="evt_test_2",
        )

        assert subscription.canceled_at == first_canceled_at

    async def test_event_sequence_converges(self, db_session, linked_subscription):
        """updated(active) then deleted, each delivered twice, ends canceled on free."""
        user, subscription = linked_subscription
        events = [
            ("customer.subscription.updated", {"id": "sub_remote_1", "status": "active"}),
            ("customer.subscription.deleted", {"id": "sub_remote_1"}),
        ]

        for event_type, data in events + events:
            result = await deliver(db_session, event_type, data)
            assert result.success is True

        assert subscription.status == SubscriptionStatus.CANCELED.value
        assert subscription.plan == "free"
        assert user.subscription_plan == "free"

    async def test_unknown_subscription_is_a_no_op(self, db_session, linked_subscription):
        _, subscription = linked_subscription

        result = await deliver(
            db_session,
            "customer.subscription.deleted",
            {"id": "sub_somebody_else"},
        )

        assert result.success is True
        assert subscription.status == SubscriptionStatus.ACTIVE.value


@pytest.mark.asyncio
class TestInvoiceEvents:
    """Tests for invoice.payment_succeeded / failed."""

    async def test_paid_invoice_is_recorded(self, db_session, linked_subscription):
        _, subscription = linked_subscription

        await deliver(db_session, "invoice.payment_succeeded", invoice_payload())

        invoice = await SubscriptionInvoiceDAO(db_session).get_by_stripe_invoice_id("in_1")
        assert invoice.subscription_id == subscription.id
        assert invoice.amount == Decimal("12.00")
        assert invoice.currency == "EUR"
        assert invoice.status == "paid"
        assert invoice.paid_date is not None
        assert invoice.due_date == invoice.invoice_date
        assert invoice.pdf_url.endswith("/pdf")

    async def test_replayed_invoice_is_stored_once(self, db_session, linked_subscription):
        for _ in range(3):
            result = await deliver(db_session, "invoice.payment_succeeded", invoice_payload())
            assert result.success is True

        assert await invoice_count(db_session) == 1

    async def test_failed_then_paid_updates_the_same_row(self, db_session, linked_subscription):
        await deliver(
            db_session,
            "invoice.payment_failed",
            invoice_payload(amount_paid=0, status_transitions={}),
        )
        invoice = await SubscriptionInvoiceDAO(db_session).get_by_stripe_invoice_id("in_1")
        assert invoice.status == "failed"
        assert invoice.amount == Decimal("12.00")
        assert invoice.paid_date is None

        await deliver(
            db_session,
            "invoice.payment_succeeded",
            invoice_payload(),
            event_id="evt_test_2",
        )

        assert await invoice_count(db_session) == 1
        assert invoice.status == "paid"

    async def test_customer_fallback(self, db_session, linked_subscription):
        _, subscription = linked_subscription

        await deliver(
            db_session,
            "invoice.payment_succeeded",
            invoice_payload(subscription=None),
        )

        invoice = await SubscriptionInvoiceDAO(db_session).get_by_stripe_invoice_id("in_1")
        assert invoice.subscription_id == subscription.id

    async def test_unresolvable_invoice_is_a_no_op(self, db_session, linked_subscription):
        result = await deliver(
            db_session,
            "invoice.payment_succeeded",
            invoice_payload(subscription="sub_unknown", customer="cus_unknown"),
        )

        assert result.success is True
        assert await invoice_count(db_session) == 0
