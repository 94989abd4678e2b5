"""
Admin billing API endpoints.

WHAT: Cross-tenant billing administration:
1. Dashboard overview and analytics time series
2. Plan catalog edits (name, features, limits)
3. Subscription listing, plan changes and cancellations
4. Plan assignment to a user
5. Audit log listing
6. System settings

WHY: Support and finance staff need to correct subscriptions and tune the
catalog without database access. Every mutation leaves an audit entry
naming the admin and their IP.

HOW: FastAPI router with SUPERADMIN role requirement on all endpoints.
Admin changes are local only; Stripe is not called from here.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.core.deps import (
    get_audit_context,
    get_settings_store,
    require_superadmin,
)
from saas_billing.dao.audit_log import AuditLogDAO
from saas_billing.db.session import get_db
from saas_billing.models.subscription import Subscription
from saas_billing.models.user import User
from saas_billing.schemas.admin import (
    AdminCancelRequest,
    AdminPlanResponse,
    AdminSubscriptionActionResponse,
    AdminSubscriptionItem,
    AdminSubscriptionListResponse,
    AssignPlanRequest,
    AuditLogItem,
    AuditLogListResponse,
    ChangePlanRequest,
    PlanUpdateRequest,
    PlanUpdateResponse,
)
from saas_billing.schemas.settings import SettingsUpdate
from saas_billing.services.audit import AuditContext
from saas_billing.services.plan_catalog import PlanCatalog
from saas_billing.services.settings_store import SettingsStore
from saas_billing.services.subscription_store import SubscriptionStore
from saas_billing.services.usage_metrics import UsageMetrics


router = APIRouter(prefix="/admin", tags=["admin"])


def _action_response(subscription: Subscription, message: str) -> AdminSubscriptionActionResponse:
    return AdminSubscriptionActionResponse(
        id=subscription.id,
        user_id=subscription.user_id,
        plan=subscription.plan,
        status=subscription.status,
        next_billing_date=subscription.next_billing_date,
        canceled_at=subscription.canceled_at,
        message=message,
    )


# ============================================================================
# Dashboard
# ============================================================================


@router.get(
    "/overview",
    summary="Dashboard overview",
    description="Users, MRR, churn, subscription breakdown and recent activity (SUPERADMIN only)",
)
async def get_overview(
    current_user: User = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """
    Dashboard KPIs.

    Churn covers the current calendar month. Support metrics are not
    computed and come back as null with ``notImplemented: true``.
    """
    return await UsageMetrics(db).overview()


@router.get(
    "/analytics/stats",
    summary="Analytics time series",
    description="Daily users, revenue and churn over a week, month or year (SUPERADMIN only)",
)
async def get_analytics_stats(
    period: str = Query(default="week", description="week, month or year"),
    current_user: User = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Unknown periods fall back to a week."""
    return await UsageMetrics(db).analytics_stats(period)


# ============================================================================
# Plan Catalog
# ============================================================================


@router.get(
    "/subscription-plans",
    response_model=list[AdminPlanResponse],
    summary="List subscription plans",
)
async def list_subscription_plans(
    current_user: User = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    return await PlanCatalog(db).list_all()


@router.get(
    "/subscription-plans/{plan_id}",
    response_model=AdminPlanResponse,
    summary="Get subscription plan",
)
async def get_subscription_plan(
    plan_id: int,
    current_user: User = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    return await PlanCatalog(db).get_by_id(plan_id)


@router.put(
    "/subscription-plans/{plan_id}",
    response_model=PlanUpdateResponse,
    summary="Update subscription plan",
    description="Edit name, features or limits. Code, price, currency and interval are ignored.",
)
async def update_subscription_plan(
    plan_id: int,
    body: PlanUpdateRequest,
    current_user: User = Depends(require_superadmin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Update a plan's editable fields.

    WHY: Prices are snapshotted on subscriptions and billed by Stripe;
    changing them here would silently diverge from both, so only display
    fields and limits are editable.

    Raises:
        PlanNotFoundError (404): Unknown plan id
    """
    result = await PlanCatalog(db).update_plan(
        plan_id, body.model_dump(exclude_unset=True), context
    )
    plan = AdminPlanResponse.model_validate(result.plan)
    return PlanUpdateResponse(
        **plan.model_dump(),
        message="Plan updated successfully" if result.changes_applied else "No changes applied",
        changes_applied=result.changes_applied,
    )


# ============================================================================
# Subscriptions
# ============================================================================


@router.get(
    "/subscriptions",
    response_model=AdminSubscriptionListResponse,
    summary="List subscriptions",
)
async def list_subscriptions(
    plan: Optional[str] = Query(default=None, description="Filter by plan code"),
    subscription_status: Optional[str] = Query(
        default=None, alias="status", description="Filter by status"
    ),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    current_user: User = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    subscriptions, total = await SubscriptionStore(db).list_subscriptions(
        plan=plan, status=subscription_status, page=page, limit=limit
    )
    return AdminSubscriptionListResponse(
        total=total,
        page=page,
        limit=limit,
        subscriptions=[
            AdminSubscriptionItem(
                id=s.id,
                user_id=s.user_id,
                user_email=s.user.email if s.user else None,
                plan=s.plan,
                status=s.status,
                price=float(s.price or 0),
                start_date=s.start_date,
                next_billing_date=s.next_billing_date,
                canceled_at=s.canceled_at,
            )
            for s in subscriptions
        ],
    )


@router.put(
    "/subscriptions/{subscription_id}/plan",
    response_model=AdminSubscriptionActionResponse,
    summary="Change a subscription's plan",
)
async def change_subscription_plan(
    subscription_id: int,
    body: ChangePlanRequest,
    current_user: User = Depends(require_superadmin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Raises:
        SubscriptionNotFoundError (404): Unknown subscription
        PlanNotFoundError (404): Unknown plan code
        AlreadyOnPlanError (400): Subscription already on this plan
    """
    subscription = await SubscriptionStore(db).change_plan(subscription_id, body.plan, context)
    return _action_response(subscription, "Subscription plan updated successfully")


@router.post(
    "/subscriptions/{subscription_id}/cancel",
    response_model=AdminSubscriptionActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel a subscription",
)
async def cancel_subscription(
    subscription_id: int,
    body: AdminCancelRequest,
    current_user: User = Depends(require_superadmin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
):
    subscription = await SubscriptionStore(db).admin_cancel(
        subscription_id, context, reason=body.reason
    )
    return _action_response(subscription, "Subscription canceled successfully")


@router.post(
    "/users/{user_id}/assign-plan",
    response_model=AdminSubscriptionActionResponse,
    summary="Assign a plan to a user",
)
async def assign_plan(
    user_id: int,
    body: AssignPlanRequest,
    current_user: User = Depends(require_superadmin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Put a user on a plan, creating a subscription if they have none.

    Raises:
        ResourceNotFoundError (404): Unknown user
        PlanNotFoundError (404): Unknown plan code
    """
    subscription = await SubscriptionStore(db).assign_plan(user_id, body.plan, context)
    return _action_response(subscription, "Plan assigned successfully")


# ============================================================================
# Audit Logs
# ============================================================================


@router.get(
    "/audit-logs",
    response_model=AuditLogListResponse,
    summary="List audit logs",
    description="Paginated audit logs, newest first (SUPERADMIN only)",
)
async def list_audit_logs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500, description="Maximum items to return"),
    current_user: User = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
) -> AuditLogListResponse:
    logs, total = await AuditLogDAO(db).list_recent(skip=(page - 1) * limit, limit=limit)
    return AuditLogListResponse(
        total=total,
        page=page,
        limit=limit,
        logs=[
            # ``metadata`` is reserved on ORM models; the column is mapped as extra_data
            AuditLogItem(
                id=log.id,
                actor_id=log.actor_id,
                actor_email=log.actor_email,
                action=log.action,
                target=log.target,
                ip_address=log.ip_address,
                metadata=log.extra_data,
                created_at=log.created_at,
            )
            for log in logs
        ],
    )


# ============================================================================
# System Settings
# ============================================================================


@router.get(
    "/settings",
    summary="Get system settings",
)
async def get_settings(
    current_user: User = Depends(require_superadmin),
    store: SettingsStore = Depends(get_settings_store),
) -> Dict[str, Dict[str, Any]]:
    """All settings sections; sections never saved read as defaults."""
    return await store.get_all()


@router.put(
    "/settings",
    summary="Update system settings",
)
async def update_settings(
    body: SettingsUpdate,
    current_user: User = Depends(require_superadmin),
    context: AuditContext = Depends(get_audit_context),
    store: SettingsStore = Depends(get_settings_store),
) -> Dict[str, Dict[str, Any]]:
    """
    Deep-merge a partial update into the stored sections.

    Each section is validated after merging and stored as its own row, so
    concurrent edits of different sections never overwrite each other.

    Raises:
        ValidationError (400): A merged section is out of range
    """
    return await store.update(body, context)
