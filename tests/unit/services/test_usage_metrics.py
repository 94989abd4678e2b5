"""
Usage & Metrics Calculator Tests.

WHAT: Tenant usage against plan limits plus the admin KPIs (MRR, churn,
daily analytics series).

HOW: Pure helpers are tested directly; aggregates run against SQLite with
backdated rows.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from saas_billing.core.exceptions import NoActiveSubscriptionError
from saas_billing.models.invoice import InvoiceStatus
from saas_billing.models.subscription import SubscriptionStatus
from saas_billing.schemas.subscription import UsageResponse
from saas_billing.services.usage_metrics import (
    UsageMetrics,
    activity_title,
    activity_type,
    churn_rate,
    month_bounds,
    percentage_used,
)
from tests.factories import (
    ClientFactory,
    InvoiceFactory,
    SubscriptionFactory,
    UserFactory,
)


class TestPureCalculations:
    """Tests for the formula helpers."""

    def test_percentage_used(self):
        assert percentage_used(2, 5) == 40
        assert percentage_used(5, 5) == 100

    @pytest.mark.parametrize("limit", [-1, 0, None, "100 MB", True])
    def test_percentage_used_without_numeric_limit_is_zero(self, limit):
        assert percentage_used(42, limit) == 0

    def test_churn_rate_rounds_to_one_decimal(self):
        assert churn_rate(2, 10) == 20.0
        assert churn_rate(1, 3) == 33.3

    def test_churn_rate_without_live_subscriptions(self):
        assert churn_rate(4, 0) == 0.0

    def test_month_bounds_december(self):
        start, end = month_bounds(datetime(2026, 12, 18, 9, 30))

        assert start == datetime(2026, 12, 1)
        assert end == datetime(2027, 1, 1)

    def test_activity_labels(self):
        assert activity_type("USER_CANCEL_SUBSCRIPTION") == "user"
        assert activity_type("ASSIGN_PLAN") == "system"
        assert activity_type("UPGRADE_SUBSCRIPTION") == "subscription"
        assert activity_title("CANCEL_SUBSCRIPTION") == "Subscription canceled"
        assert activity_title("UPDATE_SETTINGS") == "Update Settings"


@pytest.mark.asyncio
class TestUsageForTenant:
    """Tests for UsageMetrics.usage_for."""

    async def test_free_plan_usage(self, db_session, plans, test_user):
        await SubscriptionFactory.create(db_session, test_user)
        await InvoiceFactory.create(db_session, test_user, invoice_number="INV-1")
        await InvoiceFactory.create(db_session, test_user, invoice_number="INV-2")
        await ClientFactory.create(db_session, test_user)

        report = await UsageMetrics(db_session).usage_for(test_user.id)

        assert report.invoices_this_month == 2
        assert report.invoices_limit == 5
        assert report.clients_created == 1
        assert report.clients_limit == 3
        assert report.storage_limit == "100 MB"
        assert report.percentage_used == 40

    async def test_previous_month_invoices_are_not_counted(self, db_session, plans, test_user):
        now = datetime(2026, 5, 10, 12, 0)
        await SubscriptionFactory.create(db_session, test_user)
        await InvoiceFactory.create(
            db_session, test_user, invoice_number="INV-OLD", created_at=datetime(2026, 4, 30, 23, 59)
        )
        await InvoiceFactory.create(
            db_session, test_user, invoice_number="INV-NEW", created_at=datetime(2026, 5, 1)
        )

        report = await UsageMetrics(db_session).usage_for(test_user.id, now=now)

        assert report.invoices_this_month == 1

    async def test_unlimited_plan_reports_zero_percent(self, db_session, plans, test_user):
        await SubscriptionFactory.create(db_session, test_user, plan="pro", price=Decimal("12.00"))
        for number in range(3):
            await InvoiceFactory.create(db_session, test_user, invoice_number=f"INV-{number}")

        report = await UsageMetrics(db_session).usage_for(test_user.id)

        assert report.invoices_limit == -1
        assert report.percentage_used == 0

    async def test_report_serialization(self, db_session, plans, test_user):
        await SubscriptionFactory.create(db_session, test_user)

        report = await UsageMetrics(db_session).usage_for(test_user.id)
        data = UsageResponse.model_validate(report).model_dump(by_alias=True)

        assert data["storageUsed"] is None
        assert data["storageUsedNotImplemented"] is True
        assert set(data) >= {"invoicesThisMonth", "invoicesLimit", "clientsCreated", "percentageUsed"}

    async def test_without_current_subscription(self, db_session, plans, test_user):
        await SubscriptionFactory.create(
            db_session,
            test_user,
            status=SubscriptionStatus.CANCELED.value,
            canceled_at=datetime(2026, 1, 2),
        )

        with pytest.raises(NoActiveSubscriptionError):
            await UsageMetrics(db_session).usage_for(test_user.id)


@pytest.mark.asyncio
class TestRevenueAndChurn:
    """Tests for MRR and churn aggregates."""

    async def test_mrr_counts_active_paid_subscriptions(self, db_session, plans):
        for index in range(3):
            user = await UserFactory.create(db_session, email=f"pro{index}@example.com")
            await SubscriptionFactory.create(db_session, user, plan="pro", price=Decimal("12.00"))
        free_user = await UserFactory.create(db_session, email="free@example.com")
        await SubscriptionFactory.create(db_session, free_user)
        gone = await UserFactory.create(db_session, email="gone@example.com")
        await SubscriptionFactory.create(
            db_session,
            gone,
            plan="pro",
            price=Decimal("12.00"),
            status=SubscriptionStatus.CANCELED.value,
            canceled_at=datetime(2026, 2, 1),
        )

        mrr = await UsageMetrics(db_session).monthly_recurring_revenue()

        assert mrr == Decimal("36.00")

    async def test_churn_over_a_month(self, db_session, plans):
        """10 live at the start of March, 2 canceled during March: 20%."""
        start = datetime(2026, 3, 1)
        for index in range(10):
            user = await UserFactory.create(db_session, email=f"churn{index}@example.com")
            canceled = index < 2
            await SubscriptionFactory.create(
                db_session,
                user,
                plan="pro",
                price=Decimal("12.00"),
                start_date=datetime(2026, 1, 15),
                status=SubscriptionStatus.CANCELED.value if canceled else SubscriptionStatus.ACTIVE.value,
                canceled_at=datetime(2026, 3, 5 + index) if canceled else None,
            )
        late = await UserFactory.create(db_session, email="late@example.com")
        await SubscriptionFactory.create(db_session, late, start_date=datetime(2026, 3, 20))

        rate = await UsageMetrics(db_session).churn_rate_between(start, datetime(2026, 4, 1))

        assert rate == 20.0

    async def test_churn_without_subscriptions(self, db_session, plans):
        rate = await UsageMetrics(db_session).churn_rate_between(
            datetime(2026, 3, 1), datetime(2026, 4, 1)
        )

        assert rate == 0.0


@pytest.mark.asyncio
class TestDashboard:
    """Tests for overview() and analytics_stats()."""

    async def test_overview_shape(self, db_session, plans, test_user):
        await SubscriptionFactory.create(db_session, test_user, plan="pro", price=Decimal("12.00"))

        overview = await UsageMetrics(db_session).overview()

        assert set(overview) == {"metrics", "subscriptions", "support", "recentActivity"}
        assert overview["metrics"]["usersTotal"] == 1
        assert overview["metrics"]["mrr"] == 12.0
        assert overview["subscriptions"]["pro"] == 1
        assert overview["subscriptions"]["free"] == 0
        assert overview["support"]["notImplemented"] is True
        assert overview["support"]["slaBreaches"] is None

    async def test_week_series(self, db_session, plans):
        now = datetime(2026, 6, 10, 15, 0)
        await UserFactory.create(db_session, email="old@example.com", created_at=datetime(2026, 6, 1))
        await UserFactory.create(db_session, email="new@example.com", created_at=datetime(2026, 6, 9, 8))
        owner = await UserFactory.create(
            db_session, email="owner@example.com", created_at=datetime(2026, 5, 1)
        )
        await InvoiceFactory.create(
            db_session,
            owner,
            status=InvoiceStatus.PAID.value,
            total=Decimal("250.00"),
            paid_date=datetime(2026, 6, 10, 9, 0),
        )

        stats = await UsageMetrics(db_session).analytics_stats("week", now=now)

        assert stats["period"] == "week"
        assert len(stats["users"]) == 7
        assert stats["users"][0]["date"] == "2026-06-04"
        assert stats["users"][-1] == {"date": "2026-06-10", "value": 3}
        assert stats["users"][-3]["value"] == 2
        assert stats["revenue"][-1]["value"] == 250.0
        assert stats["revenue"][0]["value"] == 0.0
        assert all(point["value"] == 0.0 for point in stats["churnRate"])

    async def test_unknown_period_falls_back_to_week(self, db_session, plans):
        stats = await UsageMetrics(db_session).analytics_stats("decade")

        assert stats["period"] == "week"
        assert len(stats["revenue"]) == 7

    async def test_month_series_length(self, db_session, plans):
        stats = await UsageMetrics(db_session).analytics_stats("month")

        assert len(stats["churnRate"]) == 30
