"""
Billing error hierarchy.

WHY: Every failure a billing route can report maps onto one class here, and
each class carries its HTTP status. Handlers in ``exception_handlers``
turn them into ``{error, message, status_code, details}`` bodies.

Gateway failures get their own branch (``ExternalServiceError``) so a
client can tell "the plan change was refused" apart from "the plan change
was saved but Stripe could not be reached".

Services raise these instead of ``HTTPException`` or bare ``Exception``.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Root of the billing error hierarchy.

    Subclasses set ``status_code`` and ``default_message``; keyword context
    (subscription ids, plan codes) ends up in ``details``.
    """

    status_code: int = 500
    default_message: str = "Billing request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Args:
            message: Text shown to the client; falls back to ``default_message``
            status_code: Per-instance override of the class status
            **context: Identifiers reported under ``details``
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Response body; secrets and signatures never leave the process."""
        hidden = {"password", "token", "secret", "key", "api_key", "signature"}
        details = {k: v for k, v in self.context.items() if k.lower() not in hidden}

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": details or None,
        }


# ============================================================================
# Caller identity
# ============================================================================


class AuthenticationError(AppException):
    """No valid bearer token on the request (401)."""

    status_code = 401
    default_message = "Authentication failed"


class AuthorizationError(AppException):
    """
    The caller is known but may not do this (403).

    Raised by the super-administrator guard on every admin billing route.
    """

    status_code = 403
    default_message = "Super administrator access required"


class TokenExpiredError(AuthenticationError):
    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    default_message = "Token is invalid"


# ============================================================================
# Request contents
# ============================================================================


class ValidationError(AppException):
    """
    A request value is outside what billing accepts (400).

    Examples: a settings value out of range, or an admin cancel without a
    reason.
    """

    status_code = 400
    default_message = "Invalid billing request"


# ============================================================================
# Lookups
# ============================================================================


class ResourceNotFoundError(AppException):
    """A lookup by id or plan code came back empty (404)."""

    status_code = 404
    default_message = "Not found"


class PlanNotFoundError(ResourceNotFoundError):
    """Plan code is not in the catalog."""

    default_message = "Plan not found"


class SubscriptionNotFoundError(ResourceNotFoundError):
    default_message = "Subscription not found"


class NoActiveSubscriptionError(ResourceNotFoundError):
    """
    Every subscription of the user is canceled.

    Cancel and portal routes need a current row; the user has to
    reactivate or check out first.
    """

    default_message = "No active subscription"


# ============================================================================
# Subscription transitions
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    The request is well formed but the subscription cannot make that
    transition (422).
    """

    status_code = 422
    default_message = "Subscription transition not allowed"


class AlreadyOnPlanError(BusinessRuleViolation):
    """Upgrade or downgrade to the plan the subscription already has (400)."""

    status_code = 400
    default_message = "Already on this plan"


class ReactivationWindowExpiredError(BusinessRuleViolation):
    """Canceled longer ago than the reactivation window allows (409)."""

    status_code = 409
    default_message = "Cannot reactivate after the reactivation window"


class PlanNotConfiguredError(BusinessRuleViolation):
    """Paid plan without a Stripe price id for the requested period."""

    default_message = "Plan pricing not configured"


class FeatureNotImplementedError(AppException):
    """
    Billing behaviour with no agreed rule yet (501).

    Renewal processing and unused-credit refunds stay unimplemented rather
    than returning made-up numbers.
    """

    status_code = 501
    default_message = "Not implemented"


# ============================================================================
# Payment gateway
# ============================================================================


class ExternalServiceError(AppException):
    """An upstream service failed (502)."""

    status_code = 502
    default_message = "Upstream service error"


class GatewayUnavailableError(ExternalServiceError):
    """
    A Stripe call failed or timed out.

    Gateway sync runs after the local commit, so this never means the local
    change was rolled back; routes say so via ``local_state_committed``.
    """

    default_message = "Payment processor unavailable"


# ============================================================================
# Audit trail
# ============================================================================


class AuditLogImmutableError(AppException):
    """Billing audit entries are append-only (403)."""

    status_code = 403
    default_message = "Audit logs are immutable and cannot be modified"
