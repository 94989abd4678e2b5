"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from saas_billing.models.base import Base, TimestampMixin, PrimaryKeyMixin, utcnow, from_timestamp
from saas_billing.models.user import User, UserRole, UserStatus
from saas_billing.models.plan import (
    Plan,
    BillingInterval,
    DEFAULT_PLANS,
    EDITABLE_PLAN_FIELDS,
    PROTECTED_PLAN_FIELDS,
    UNLIMITED,
)
from saas_billing.models.subscription import Subscription, SubscriptionStatus
from saas_billing.models.subscription_invoice import (
    SubscriptionInvoice,
    SubscriptionInvoiceStatus,
)
from saas_billing.models.client import Client
from saas_billing.models.invoice import Invoice, InvoiceStatus
from saas_billing.models.audit_log import AuditLog, AuditAction, SYSTEM_ACTOR_EMAIL
from saas_billing.models.system_setting import SystemSetting

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "utcnow",
    "from_timestamp",
    "User",
    "UserRole",
    "UserStatus",
    "Plan",
    "BillingInterval",
    "DEFAULT_PLANS",
    "EDITABLE_PLAN_FIELDS",
    "PROTECTED_PLAN_FIELDS",
    "UNLIMITED",
    "Subscription",
    "SubscriptionStatus",
    "SubscriptionInvoice",
    "SubscriptionInvoiceStatus",
    "Client",
    "Invoice",
    "InvoiceStatus",
    "AuditLog",
    "AuditAction",
    "SYSTEM_ACTOR_EMAIL",
    "SystemSetting",
]
