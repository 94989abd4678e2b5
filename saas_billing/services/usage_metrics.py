"""
Usage and metrics calculator.

WHAT: Per-tenant usage against plan limits, and cross-tenant analytics
(MRR, churn, revenue and user growth) for the admin dashboard.

WHY: All numbers here are read-only derivations of subscription, user,
client and invoice rows. Conventions shared by every caller:
- Unlimited limits (-1) report 0% used
- Churn = canceled in period / live at period start * 100, one decimal,
  0 when nothing was live
- MRR = active paid subscriptions per plan * that plan's current price
- Metrics without an agreed formula (storage usage, support SLA) are
  reported as null with a ``notImplemented`` marker
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.core.exceptions import NoActiveSubscriptionError
from saas_billing.dao.audit_log import AuditLogDAO
from saas_billing.dao.client import ClientDAO
from saas_billing.dao.invoice import InvoiceDAO
from saas_billing.dao.plan import PlanDAO
from saas_billing.dao.subscription import SubscriptionDAO
from saas_billing.dao.user import UserDAO
from saas_billing.models.audit_log import AuditLog
from saas_billing.models.base import utcnow
from saas_billing.models.subscription import SubscriptionStatus
from saas_billing.models.user import UserStatus

logger = logging.getLogger(__name__)

ANALYTICS_PERIOD_DAYS = {"week": 7, "month": 30, "year": 365}
DEFAULT_ANALYTICS_PERIOD = "week"

ACTIVITY_TITLES = {
    "ASSIGN_PLAN": "Plan assigned",
    "CANCEL_SUBSCRIPTION": "Subscription canceled",
}

Limit = Optional[Union[int, str]]


# ============================================================================
# Pure calculations
# ============================================================================


def percentage_used(used: int, limit: Limit) -> int:
    """
    Share of a numeric limit consumed, as a whole percent.

    Unlimited (-1), missing and non-numeric limits report 0.
    """
    if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
        return 0
    return int(round(used / limit * 100))


def churn_rate(canceled: int, active_at_start: int) -> float:
    """Churn percentage rounded to one decimal, 0.0 when nothing was live."""
    if active_at_start <= 0:
        return 0.0
    return round(canceled / active_at_start * 100, 1)


def month_bounds(moment: datetime):
    """Start of the calendar month containing ``moment`` and of the next one."""
    start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def activity_type(action: str) -> str:
    if "USER" in action:
        return "user"
    if "SUBSCRIPTION" in action:
        return "subscription"
    return "system"


def activity_title(action: str) -> str:
    return ACTIVITY_TITLES.get(action, action.replace("_", " ").lower().title())


@dataclass
class UsageReport:
    """A tenant's consumption of its plan limits."""

    invoices_this_month: int
    invoices_limit: Limit
    clients_created: int
    clients_limit: Limit
    storage_limit: Limit
    percentage_used: int
    storage_used: Optional[str] = None


# ============================================================================
# Calculator
# ============================================================================


class UsageMetrics:
    """Database-backed usage and analytics queries."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.subscription_dao = SubscriptionDAO(session)
        self.plan_dao = PlanDAO(session)
        self.user_dao = UserDAO(session)
        self.client_dao = ClientDAO(session)
        self.invoice_dao = InvoiceDAO(session)
        self.audit_dao = AuditLogDAO(session)

    async def usage_for(self, user_id: int, now: Optional[datetime] = None) -> UsageReport:
        """
        Usage of the user's current subscription this calendar month.

        Raises:
            NoActiveSubscriptionError: If the user has no current subscription
        """
        current = await self.subscription_dao.list_current_for_user(user_id)
        if not current:
            raise NoActiveSubscriptionError(user_id=user_id)
        subscription = current[0]

        plan = await self.plan_dao.get_by_code(subscription.plan)
        if plan is None:
            logger.warning(
                f"Subscription {subscription.id} references unknown plan {subscription.plan}",
                extra={"subscription_id": subscription.id, "plan_code": subscription.plan},
            )

        month_start, month_end = month_bounds(now or utcnow())
        invoices = await self.invoice_dao.count_for_user_between(user_id, month_start, month_end)
        clients = await self.client_dao.count_for_user(user_id)
        invoices_limit = plan.get_limit("invoicesPerMonth") if plan else None

        return UsageReport(
            invoices_this_month=invoices,
            invoices_limit=invoices_limit,
            clients_created=clients,
            clients_limit=plan.get_limit("clients") if plan else None,
            storage_limit=plan.get_limit("storage") if plan else None,
            percentage_used=percentage_used(invoices, invoices_limit),
        )

    async def monthly_recurring_revenue(self) -> Decimal:
        """Sum over paid plans of active subscriptions * current plan price."""
        counts = await self.subscription_dao.active_paid_counts()
        total = sum((price * count for count, price in counts.values()), Decimal("0"))
        return Decimal(total).quantize(Decimal("0.01"))

    async def churn_rate_between(self, start: datetime, end: datetime) -> float:
        """Churn over ``[start, end)``."""
        canceled = await self.subscription_dao.count_canceled_between(start, end)
        active_at_start = await self.subscription_dao.count_active_at(start)
        return churn_rate(canceled, active_at_start)

    async def overview(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """KPIs for the admin dashboard."""
        now = now or utcnow()
        month_start, month_end = month_bounds(now)

        recent, _ = await self.audit_dao.list_recent(skip=0, limit=10)

        return {
            "metrics": {
                "usersTotal": await self.user_dao.count(),
                "usersActive": await self.user_dao.count(status=UserStatus.ACTIVE.value),
                "mrr": float(await self.monthly_recurring_revenue()),
                "churnRate": await self.churn_rate_between(month_start, month_end),
            },
            "subscriptions": {
                "free": await self.subscription_dao.count(
                    plan="free", status=SubscriptionStatus.ACTIVE.value
                ),
                "pro": await self.subscription_dao.count(
                    plan="pro", status=SubscriptionStatus.ACTIVE.value
                ),
                "trial": await self.subscription_dao.count(
                    status=SubscriptionStatus.TRIALING.value
                ),
            },
            "support": {
                "avgResponseTimeHours": None,
                "slaBreaches": None,
                "notImplemented": True,
            },
            "recentActivity": [self._activity(log) for log in recent],
        }

    async def analytics_stats(
        self, period: Optional[str] = None, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Daily series over the last 7/30/365 days.

        Unknown periods fall back to a week. Each point covers one UTC day,
        oldest first, ending with today.
        """
        period = period if period in ANALYTICS_PERIOD_DAYS else DEFAULT_ANALYTICS_PERIOD
        days = ANALYTICS_PERIOD_DAYS[period]
        today = (now or utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)

        users: List[Dict[str, Any]] = []
        revenue: List[Dict[str, Any]] = []
        churn: List[Dict[str, Any]] = []
        for offset in range(days - 1, -1, -1):
            day_start = today - timedelta(days=offset)
            day_end = day_start + timedelta(days=1)
            label = day_start.date().isoformat()

            users.append(
                {"date": label, "value": await self.user_dao.count_created_before(day_end)}
            )
            paid = await self.invoice_dao.sum_paid_between(day_start, day_end)
            revenue.append({"date": label, "value": round(float(paid), 2)})
            churn.append(
                {"date": label, "value": await self.churn_rate_between(day_start, day_end)}
            )

        return {"users": users, "revenue": revenue, "churnRate": churn, "period": period}

    @staticmethod
    def _activity(log: AuditLog) -> Dict[str, Any]:
        return {
            "id": f"act_{log.id}",
            "type": activity_type(log.action),
            "title": activity_title(log.action),
            "description": log.actor_email,
            "createdAt": log.created_at.isoformat() if log.created_at else None,
        }
