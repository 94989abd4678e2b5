"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from saas_billing.dao.base import BaseDAO
from saas_billing.dao.user import UserDAO
from saas_billing.dao.audit_log import AuditLogDAO
from saas_billing.dao.plan import PlanDAO
from saas_billing.dao.subscription import SubscriptionDAO
from saas_billing.dao.subscription_invoice import SubscriptionInvoiceDAO
from saas_billing.dao.client import ClientDAO
from saas_billing.dao.invoice import InvoiceDAO
from saas_billing.dao.system_setting import SystemSettingDAO

__all__ = [
    "BaseDAO",
    "UserDAO",
    "AuditLogDAO",
    "PlanDAO",
    "SubscriptionDAO",
    "SubscriptionInvoiceDAO",
    "ClientDAO",
    "InvoiceDAO",
    "SystemSettingDAO",
]
