"""
Subscription invoice model.

WHAT: Invoices Stripe issued for a subscription (what the tenant pays us),
as opposed to ``Invoice`` which is what tenants bill their own clients.

WHY: Rows are written only by webhook reconciliation and are keyed by the
Stripe invoice id, so a redelivered ``invoice.payment_*`` event updates the
existing row instead of adding a second one.
"""

import enum
from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship

from saas_billing.models.base import Base, TimestampMixin, PrimaryKeyMixin


class SubscriptionInvoiceStatus(str, enum.Enum):
    """Payment status of a subscription invoice."""

    PAID = "paid"
    PENDING = "pending"
    FAILED = "failed"


class SubscriptionInvoice(Base, PrimaryKeyMixin, TimestampMixin):
    """Stripe invoice attached to a subscription."""

    __tablename__ = "subscription_invoices"

    subscription_id = Column(
        Integer,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stripe_invoice_id = Column(String(255), nullable=False, unique=True, index=True)

    amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="EUR")
    status = Column(
        String(16),
        nullable=False,
        default=SubscriptionInvoiceStatus.PENDING.value,
        index=True,
    )

    invoice_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    paid_date = Column(DateTime, nullable=True)
    pdf_url = Column(Text, nullable=True)

    subscription = relationship("Subscription", back_populates="invoices")

    def __repr__(self) -> str:
        return (
            f"<SubscriptionInvoice(id={self.id}, stripe_invoice_id={self.stripe_invoice_id}, "
            f"status={self.status})>"
        )
