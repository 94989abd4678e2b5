"""
Subscription model.

WHY: A subscription record is the local view of a user's billing state.
It is authoritative for user-initiated plan changes until a Stripe webhook
says otherwise.

INVARIANTS:
- At most one subscription per user has a status other than ``canceled``
  (the "current" subscription). Canceled rows are history and are kept.
- Rows are never hard-deleted.
- ``price`` is a snapshot taken when the plan was assigned; later plan
  price edits do not touch existing subscriptions.

LIFECYCLE:
    active <-> trialing -> canceled -> active (within the reactivation window)

``expired`` is defined for trial expiry but nothing transitions into it yet.
The status column is a plain string because ``customer.subscription.updated``
copies Stripe's status through verbatim (e.g. ``past_due``).
"""

import enum
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime
from sqlalchemy.orm import relationship

from saas_billing.models.base import Base, TimestampMixin, PrimaryKeyMixin, utcnow


class SubscriptionStatus(str, enum.Enum):
    """
    Local subscription statuses.

    Statuses:
    - ACTIVE: Paid or free plan in good standing
    - TRIALING: Trial period
    - CANCELED: Canceled by the user, an admin, or a gateway deletion
    - EXPIRED: Reserved for trial expiry handling (not reached yet)
    """

    ACTIVE = "active"
    TRIALING = "trialing"
    CANCELED = "canceled"
    EXPIRED = "expired"


class Subscription(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Subscription model for tracking a user's plan.

    RELATIONS:
    - Many-to-one with User (current + historical subscriptions)
    - One-to-many with SubscriptionInvoice
    """

    __tablename__ = "subscriptions"

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    plan = Column(String(50), nullable=False, default="free", index=True, doc="Plan code")
    status = Column(
        String(32),
        nullable=False,
        default=SubscriptionStatus.ACTIVE.value,
        index=True,
    )
    billing_period = Column(String(10), nullable=False, default="month")
    price = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"), doc="Price snapshot")

    start_date = Column(DateTime, nullable=False, default=utcnow)
    next_billing_date = Column(DateTime, nullable=True)
    trial_ends_at = Column(DateTime, nullable=True)
    canceled_at = Column(DateTime, nullable=True, index=True)

    # Stripe state, mirrored from webhooks
    stripe_subscription_id = Column(
        String(255),
        nullable=True,
        unique=True,
        index=True,
        doc="Stripe subscription ID (sub_xxx)",
    )
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="subscriptions")
    invoices = relationship(
        "SubscriptionInvoice",
        back_populates="subscription",
        order_by="SubscriptionInvoice.invoice_date.desc()",
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, "
            f"plan={self.plan}, status={self.status})>"
        )

    @property
    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED.value

    def canceled_for(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        """How long ago the subscription was canceled, or None if it never was."""
        if self.canceled_at is None:
            return None
        return (now or utcnow()) - self.canceled_at
