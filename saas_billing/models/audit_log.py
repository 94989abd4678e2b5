"""
Audit Log Model.

WHAT: SQLAlchemy model for the append-only record of billing and admin actions.

WHY: Plan changes, cancellations, catalog edits and settings changes need a
trail of who did what, when, and from where. Billing writes to it only after
a state transition has succeeded.

HOW: Immutable append-only table. ``action`` is stored as a plain string so
new actions do not require a database enum migration.
"""

import enum
from sqlalchemy import Column, Integer, String, ForeignKey, JSON
from sqlalchemy.orm import relationship

from saas_billing.models.base import Base, TimestampMixin, PrimaryKeyMixin


SYSTEM_ACTOR_EMAIL = "system"


class AuditAction(str, enum.Enum):
    """
    Enumeration of audited actions.

    Categories:
    - Subscription: user-initiated plan transitions
    - Admin: superadmin actions on subscriptions, plans, users and settings
    """

    # Subscription events (user-initiated)
    UPGRADE_SUBSCRIPTION = "UPGRADE_SUBSCRIPTION"
    DOWNGRADE_SUBSCRIPTION = "DOWNGRADE_SUBSCRIPTION"
    USER_CANCEL_SUBSCRIPTION = "USER_CANCEL_SUBSCRIPTION"
    REACTIVATE_SUBSCRIPTION = "REACTIVATE_SUBSCRIPTION"

    # Administrative events
    ASSIGN_PLAN = "ASSIGN_PLAN"
    CHANGE_SUBSCRIPTION_PLAN = "CHANGE_SUBSCRIPTION_PLAN"
    CANCEL_SUBSCRIPTION = "CANCEL_SUBSCRIPTION"
    UPDATE_SUBSCRIPTION_PLAN = "UPDATE_SUBSCRIPTION_PLAN"
    UPDATE_SETTINGS = "UPDATE_SETTINGS"


class AuditLog(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Immutable audit log entry.

    Fields:
    - actor_id: Who performed the action (null for system/webhook actions)
    - actor_email: Snapshot of the actor's email, "system" when no actor
    - action: AuditAction value
    - target: What was acted on, e.g. "subscription:12", "plan:pro", "settings"
    - ip_address: Source IP of the request
    - extra_data: Action-specific context (old/new values, reasons)
    """

    __tablename__ = "audit_logs"

    actor_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    actor_email = Column(String(255), nullable=False, default=SYSTEM_ACTOR_EMAIL)

    action = Column(String(64), nullable=False, index=True)
    target = Column(String(255), nullable=True, index=True)

    ip_address = Column(String(45), nullable=True)  # IPv6 max length

    # NOTE: Named 'extra_data' because 'metadata' is reserved by SQLAlchemy
    extra_data = Column("metadata", JSON, nullable=True)

    actor = relationship("User", foreign_keys=[actor_id])

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, action={self.action}, "
            f"actor_email={self.actor_email}, target={self.target})>"
        )
