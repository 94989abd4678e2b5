"""
Invoice model (tenant invoices).

WHAT: Invoices a tenant issues to its own clients.

WHY: Billing reads these rows for two things only:
1. The monthly ``invoicesPerMonth`` usage count of a tenant
2. Platform revenue series in admin analytics (sum of paid totals per day)

Issuing, rendering and sending invoices is owned by the invoicing service.
"""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric

from saas_billing.models.base import Base, TimestampMixin, PrimaryKeyMixin


class InvoiceStatus(str, Enum):
    """
    Invoice payment workflow status.

    - DRAFT: created but not sent
    - SENT: sent to the client
    - PAID: full payment received
    - OVERDUE: past due date without payment
    - CANCELLED: voided
    """

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class Invoice(Base, PrimaryKeyMixin, TimestampMixin):
    """Invoice issued by a tenant to one of its clients."""

    __tablename__ = "invoices"

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    client_id = Column(
        Integer,
        ForeignKey("clients.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    invoice_number = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=InvoiceStatus.DRAFT.value, index=True)
    total = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    issue_date = Column(DateTime, nullable=True)
    due_date = Column(DateTime, nullable=True)
    paid_date = Column(DateTime, nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id}, number={self.invoice_number}, status={self.status})>"
