"""
FastAPI dependencies for authentication, authorization and audit context.

WHY: Dependencies provide reusable authentication and authorization logic
that can be injected into route handlers, ensuring consistent security
across the API.
"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.core.auth import verify_token
from saas_billing.core.cache import get_redis
from saas_billing.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    TokenExpiredError,
    TokenInvalidError,
)
from saas_billing.dao.user import UserDAO
from saas_billing.db.session import get_db
from saas_billing.middleware.request_context import context_from_request
from saas_billing.models.user import User, UserRole
from saas_billing.services.audit import AuditContext
from saas_billing.services.settings_store import SettingsStore


# HTTP Bearer token security scheme
# Format: "Authorization: Bearer <token>"
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Get current authenticated user from JWT token.

    WHY: This dependency:
    1. Extracts token from Authorization header
    2. Verifies token signature and expiration
    3. Fetches user from database
    4. Ensures user still exists and is active

    Raises:
        AuthenticationError: If token is invalid, expired, or user not found
    """
    token = credentials.credentials

    try:
        payload = verify_token(token)
    except (TokenExpiredError, TokenInvalidError) as e:
        # WHY: Re-raise as AuthenticationError for consistent API responses
        raise AuthenticationError(
            message=str(e),
            status_code=e.status_code,
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationError(
            message="Invalid token: missing user_id",
        )

    # WHY: User data in token might be stale; always fetch current data
    user = await UserDAO(db).get_by_id(int(user_id))

    if not user:
        raise AuthenticationError(
            message="User not found",
            user_id=user_id,
        )

    if not user.is_active:
        raise AuthenticationError(
            message="User account is inactive",
            user_id=user_id,
        )

    return user


async def require_superadmin(
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Require user to have SUPERADMIN role.

    WHY: Admin billing endpoints change other tenants' subscriptions and
    platform settings; only superadmins may call them.

    Raises:
        AuthorizationError: If user is not SUPERADMIN
    """
    if not current_user.is_superadmin:
        raise AuthorizationError(
            message="Superadmin access required",
            user_id=current_user.id,
            user_role=current_user.role.value,
            required_role=UserRole.SUPERADMIN.value,
        )

    return current_user


async def get_audit_context(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> AuditContext:
    """
    Build the actor context passed to mutating service calls.

    Combines the authenticated user with the client IP captured by the
    request context middleware.
    """
    context = context_from_request(request)
    return AuditContext.for_user(current_user, ip_address=context.ip_address)


async def get_settings_store(db: AsyncSession = Depends(get_db)) -> SettingsStore:
    """Settings store bound to the request session, cached in Redis when configured."""
    return SettingsStore(db, cache=await get_redis())
