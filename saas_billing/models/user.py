"""
User model.

WHY: Users own subscriptions, clients and invoices. Billing keeps a mirror
of the current plan and status on the user row so the account directory
and admin screens can show them without joining subscriptions.
"""

import enum
from sqlalchemy import Column, String, Enum, Boolean
from sqlalchemy.orm import relationship

from saas_billing.models.base import Base, TimestampMixin, PrimaryKeyMixin


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    WHY: Enum ensures only valid roles can be assigned. SUPERADMIN is the
    only role allowed on the admin billing endpoints.
    """

    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class UserStatus(str, enum.Enum):
    """Account status as shown in admin screens."""

    ACTIVE = "active"
    SUSPENDED = "suspended"


class User(Base, PrimaryKeyMixin, TimestampMixin):
    """
    User model representing an account holder (one tenant).

    Fields:
    - subscription_plan / subscription_status: mirror of the current subscription
    - stripe_customer_id: Stripe customer (cus_xxx), set lazily on first checkout
    - stripe_subscription_id: Stripe subscription (sub_xxx) of the current subscription
    """

    __tablename__ = "users"

    name = Column(String(255), nullable=False)
    company_name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)

    role = Column(Enum(UserRole, name="userrole"), nullable=False, default=UserRole.USER)
    status = Column(String(32), nullable=False, default=UserStatus.ACTIVE.value, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Billing mirror
    subscription_plan = Column(String(50), nullable=False, default="free")
    subscription_status = Column(String(32), nullable=False, default="active")

    # Stripe identifiers
    stripe_customer_id = Column(String(255), nullable=True, unique=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, index=True)

    subscriptions = relationship(
        "Subscription",
        back_populates="user",
        order_by="Subscription.id",
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"

    @property
    def is_superadmin(self) -> bool:
        """Check if the user may access admin billing endpoints."""
        return self.role == UserRole.SUPERADMIN
