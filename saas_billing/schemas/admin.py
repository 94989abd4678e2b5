"""
Admin schemas.

WHAT: Request/response models for the superadmin billing routes (plans,
subscriptions, plan assignment, audit logs, overview and analytics).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field

from saas_billing.schemas.base import CamelModel
from saas_billing.schemas.subscription import PlanResponse


# ============================================================================
# Plans
# ============================================================================


class AdminPlanResponse(PlanResponse):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PlanUpdateRequest(CamelModel):
    """
    Admin plan edit.

    Only name, features and limits are editable. Other keys (code, price,
    currency, interval) are dropped silently.
    """

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    features: Optional[List[str]] = None
    limits: Optional[Dict[str, Any]] = None


class PlanUpdateResponse(AdminPlanResponse):
    message: str = "Plan updated successfully"
    changes_applied: List[str] = Field(default_factory=list)


# ============================================================================
# Subscriptions
# ============================================================================


class AdminSubscriptionItem(CamelModel):
    id: int
    user_id: int
    user_email: Optional[str] = None
    plan: str
    status: str
    price: float
    start_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    canceled_at: Optional[datetime] = None


class AdminSubscriptionListResponse(CamelModel):
    total: int
    page: int
    limit: int
    subscriptions: List[AdminSubscriptionItem]


class ChangePlanRequest(CamelModel):
    plan: str = Field(min_length=1, max_length=50)


class AdminCancelRequest(CamelModel):
    reason: str = Field(min_length=1, max_length=500)


class AssignPlanRequest(CamelModel):
    plan: str = Field(min_length=1, max_length=50)


class AdminSubscriptionActionResponse(CamelModel):
    id: int
    user_id: int
    plan: str
    status: str
    next_billing_date: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    message: str


# ============================================================================
# Audit logs
# ============================================================================


class AuditLogItem(CamelModel):
    id: int
    actor_id: Optional[int] = None
    actor_email: str
    action: str
    target: Optional[str] = None
    ip_address: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime


class AuditLogListResponse(CamelModel):
    total: int
    page: int
    limit: int
    logs: List[AuditLogItem]
