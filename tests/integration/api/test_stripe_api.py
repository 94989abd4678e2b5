"""
Integration tests for the Stripe pass-through routes and the webhook endpoint.

WHAT: /api/stripe/* with the billing gateway mocked, and /api/stripe/webhook
with payloads signed by the test webhook secret.
"""

from decimal import Decimal

import pytest

from saas_billing.core.exceptions import GatewayUnavailableError
from saas_billing.dao.subscription import SubscriptionDAO
from saas_billing.services.billing_gateway import (
    CheckoutMode,
    CheckoutSession,
    GatewayInvoice,
    GatewaySubscription,
    StripeCustomer,
)
from tests.factories import StripeEventFactory, SubscriptionFactory, UserFactory


BASE = "/api/stripe"


@pytest.mark.asyncio
class TestCheckoutAndPortal:
    async def test_checkout_for_paid_plan(self, client, plans, auth_headers, mock_gateway):
        mock_gateway.create_checkout_session.return_value = CheckoutSession(
            id="cs_test_1",
            url="https://checkout.stripe.com/c/cs_test_1",
            mode=CheckoutMode.SUBSCRIPTION,
        )

        response = await client.post(
            f"{BASE}/checkout", json={"planCode": "pro"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "sessionId": "cs_test_1",
            "checkoutUrl": "https://checkout.stripe.com/c/cs_test_1",
            "mode": "subscription",
        }
        plan = mock_gateway.create_checkout_session.await_args.args[1]
        assert plan.code == "pro"

    async def test_checkout_unknown_plan(self, client, plans, auth_headers, mock_gateway):
        response = await client.post(
            f"{BASE}/checkout", json={"planCode": "diamond"}, headers=auth_headers
        )

        assert response.status_code == 404
        mock_gateway.create_checkout_session.assert_not_awaited()

    async def test_checkout_gateway_failure(self, client, plans, auth_headers, mock_gateway):
        mock_gateway.create_checkout_session.side_effect = GatewayUnavailableError()

        response = await client.post(
            f"{BASE}/checkout", json={"planCode": "pro"}, headers=auth_headers
        )

        assert response.status_code == 502

    async def test_portal(self, client, plans, auth_headers):
        response = await client.post(f"{BASE}/portal", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["portalUrl"] == "https://billing.stripe.com/p/session"


@pytest.mark.asyncio
class TestGatewaySubscription:
    async def test_cancel_at_period_end(self, client, plans, auth_headers, mock_gateway):
        response = await client.post(f"{BASE}/cancel", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["message"] == (
            "Subscription will be canceled at the end of the billing period"
        )
        assert mock_gateway.cancel_subscription.await_args.kwargs == {"immediate": False}

    async def test_cancel_immediately(self, client, plans, auth_headers, mock_gateway):
        mock_gateway.cancel_subscription.return_value = GatewaySubscription(
            id="sub_test_123", status="canceled"
        )

        response = await client.post(
            f"{BASE}/cancel", json={"immediately": True}, headers=auth_headers
        )

        assert response.json()["message"] == "Subscription canceled"
        assert response.json()["subscriptionStatus"] == "canceled"

    async def test_cancel_without_gateway_subscription(
        self, client, plans, auth_headers, mock_gateway
    ):
        mock_gateway.cancel_subscription.return_value = None

        response = await client.post(f"{BASE}/cancel", headers=auth_headers)

        assert response.status_code == 404

    async def test_subscription_details(self, client, plans, auth_headers, mock_gateway):
        mock_gateway.get_subscription_details.return_value = GatewaySubscription(
            id="sub_test_123", status="active", cancel_at_period_end=True
        )

        response = await client.get(f"{BASE}/subscription", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["cancelAtPeriodEnd"] is True

    async def test_subscription_details_missing(self, client, plans, auth_headers):
        response = await client.get(f"{BASE}/subscription", headers=auth_headers)

        assert response.status_code == 404

    async def test_customer(self, client, plans, auth_headers, mock_gateway):
        mock_gateway.get_customer.return_value = StripeCustomer(
            id="cus_1", email="tenant@example.com", name="Tenant"
        )

        response = await client.get(f"{BASE}/customer", headers=auth_headers)

        assert response.json() == {"id": "cus_1", "name": "Tenant", "email": "tenant@example.com"}

    async def test_customer_missing(self, client, plans, auth_headers):
        response = await client.get(f"{BASE}/customer", headers=auth_headers)

        assert response.status_code == 404

    async def test_invoices(self, client, plans, auth_headers, mock_gateway):
        mock_gateway.list_invoices.return_value = [
            GatewayInvoice(
                id="in_1",
                number="A-1",
                amount=Decimal("12.00"),
                currency="EUR",
                status="paid",
                created=None,
                paid=True,
            )
        ]

        response = await client.get(f"{BASE}/invoices", params={"limit": 5}, headers=auth_headers)

        data = response.json()
        assert data["count"] == 1
        assert data["invoices"][0]["amount"] == 12.0
        assert mock_gateway.list_invoices.await_args.kwargs == {"limit": 5}


@pytest.mark.asyncio
class TestWebhookEndpoint:
    """POST /stripe/webhook"""

    async def test_missing_signature_header(self, client):
        response = await client.post(f"{BASE}/webhook", content=b"{}")

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Invalid signature"}

    async def test_invalid_signature(self, client):
        payload = StripeEventFactory.build("customer.created", {"id": "cus_1"})

        response = await client.post(
            f"{BASE}/webhook",
            content=payload,
            headers={"Stripe-Signature": StripeEventFactory.sign(payload, secret="whsec_wrong")},
        )

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Invalid signature"}

    async def test_unknown_event_is_acknowledged(self, client):
        payload = StripeEventFactory.build("customer.created", {"id": "cus_1"})

        response = await client.post(
            f"{BASE}/webhook",
            content=payload,
            headers={"Stripe-Signature": StripeEventFactory.sign(payload)},
        )

        assert response.status_code == 200
        assert response.json()["success"] is True

    async def test_subscription_deleted_is_applied(self, client, db_session, plans):
        user = await UserFactory.create(db_session, email="hook@example.com")
        await SubscriptionFactory.create(
            db_session, user, plan="pro", price=Decimal("12.00"),
            stripe_subscription_id="sub_hook",
        )
        payload = StripeEventFactory.build("customer.subscription.deleted", {"id": "sub_hook"})

        response = await client.post(
            f"{BASE}/webhook",
            content=payload,
            headers={"Stripe-Signature": StripeEventFactory.sign(payload)},
        )

        assert response.status_code == 200
        subscription = await SubscriptionDAO(db_session).get_by_stripe_subscription_id("sub_hook")
        assert subscription.status == "canceled"
        assert subscription.plan == "free"
