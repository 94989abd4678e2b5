"""
Subscription schemas for API request/response validation.

WHAT: Pydantic schemas for the user-facing subscription and Stripe routes.

HOW: Uses Pydantic v2 with camelCase aliases (see ``CamelModel``). Plan
codes are validated against the catalog by the services, not here, so new
plans do not require a schema change.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, Field

from saas_billing.schemas.base import CamelModel


BillingPeriod = Literal["month", "year"]


# ============================================================================
# Plans
# ============================================================================


class PlanResponse(CamelModel):
    """Public plan details for the pricing page."""

    id: int
    code: str
    name: str
    price: float
    currency: str
    interval: str
    features: List[str] = Field(default_factory=list)
    limits: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Subscription Requests
# ============================================================================


class UpgradeRequest(CamelModel):
    """Body of POST /subscription/upgrade. ``plan`` is accepted as an alias of ``planId``."""

    plan_id: str = Field(
        min_length=1,
        max_length=50,
        validation_alias=AliasChoices("planId", "plan", "plan_id"),
    )
    billing_period: BillingPeriod = "month"


class DowngradeRequest(CamelModel):
    """Body of POST /subscription/downgrade."""

    plan_id: str = Field(
        min_length=1,
        max_length=50,
        validation_alias=AliasChoices("planId", "plan", "plan_id"),
    )
    effective_date: Optional[date] = Field(
        default=None,
        description="YYYY-MM-DD; omitted means immediately. Past dates are accepted.",
    )

    def effective_datetime(self) -> Optional[datetime]:
        if self.effective_date is None:
            return None
        return datetime.combine(self.effective_date, datetime.min.time())


class CancelRequest(CamelModel):
    """Body of POST /subscription/cancel; both fields end up in the audit log."""

    reason: Optional[str] = Field(default=None, max_length=500)
    feedback: Optional[str] = Field(default=None, max_length=2000)


# ============================================================================
# Subscription Responses
# ============================================================================


class SubscriptionResponse(CamelModel):
    """The user's current subscription."""

    id: int
    user_id: int
    plan: str
    status: str
    billing_period: str
    price: float
    start_date: datetime
    next_billing_date: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None


class UpgradeResponse(CamelModel):
    user_id: int
    plan: str
    status: str
    message: str = "Subscription plan updated successfully"
    start_date: datetime
    next_billing_date: Optional[datetime] = None


class DowngradeResponse(CamelModel):
    user_id: int
    plan: str
    status: str
    message: str = "Subscription plan updated successfully"
    start_date: datetime
    downgrade_effective_date: Optional[datetime] = None


class CancelResponse(CamelModel):
    """
    Cancellation result.

    Unused-credit calculation has no defined rule, so ``credits`` is always
    null and ``creditsNotImplemented`` is true.
    """

    message: str = "Subscription canceled successfully"
    canceled_at: datetime
    credits: Optional[float] = None
    credits_not_implemented: bool = True


class ReactivateResponse(CamelModel):
    user_id: int
    plan: str
    status: str
    reactivated_at: datetime


class SubscriptionInvoiceResponse(CamelModel):
    """Gateway invoice of a subscription."""

    id: int
    subscription_id: int
    amount: float
    currency: str
    status: str
    invoice_date: datetime
    due_date: datetime
    paid_date: Optional[datetime] = None
    pdf_url: Optional[str] = None


class SubscriptionInvoiceListResponse(CamelModel):
    total: int
    page: int
    limit: int
    invoices: List[SubscriptionInvoiceResponse]


class UsageResponse(CamelModel):
    """
    Usage of the current subscription this calendar month.

    ``storageUsed`` is not measured yet and is always null.
    """

    invoices_this_month: int
    invoices_limit: Optional[Any] = None
    clients_created: int
    clients_limit: Optional[Any] = None
    storage_used: Optional[str] = None
    storage_used_not_implemented: bool = True
    storage_limit: Optional[Any] = None
    percentage_used: int


# ============================================================================
# Stripe pass-through
# ============================================================================


class CheckoutRequest(CamelModel):
    plan_code: str = Field(
        min_length=1,
        max_length=50,
        validation_alias=AliasChoices("planCode", "plan", "plan_code"),
    )


class CheckoutResponse(CamelModel):
    success: bool = True
    session_id: str
    checkout_url: str
    mode: str


class PortalResponse(CamelModel):
    success: bool = True
    portal_url: str


class GatewayCancelRequest(CamelModel):
    immediately: bool = False


class GatewayCancelResponse(CamelModel):
    success: bool = True
    message: str
    subscription_status: str


class GatewaySubscriptionResponse(CamelModel):
    id: str
    status: str
    cancel_at_period_end: bool = False
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


class GatewayCustomerResponse(CamelModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class GatewayInvoiceResponse(CamelModel):
    id: str
    number: Optional[str] = None
    amount: float
    currency: str
    status: Optional[str] = None
    created: Optional[datetime] = None
    paid: bool


class GatewayInvoiceListResponse(CamelModel):
    success: bool = True
    invoices: List[GatewayInvoiceResponse]
    count: int


class WebhookResponse(CamelModel):
    success: bool
    message: str
