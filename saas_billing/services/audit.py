"""
Audit logging service.

WHAT: Service layer for writing audit log entries for billing and admin
actions.

WHY: Every plan change, cancellation, catalog edit and settings change
must leave a trail of who did it and from where. Recording is best effort:
a failure to write the audit row is logged but never undoes or fails the
business operation that triggered it.

HOW: Callers pass an explicit ``AuditContext`` (actor + source IP). Web
handlers build it from the authenticated user and the request context;
webhook reconciliation uses ``AuditContext.system()``. The insert runs in a
SAVEPOINT so a failed audit write leaves the caller's transaction usable.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.dao.audit_log import AuditLogDAO
from saas_billing.models.audit_log import AuditLog, AuditAction, SYSTEM_ACTOR_EMAIL


# Logger for audit service errors (not audit events themselves)
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditContext:
    """
    Who performed an action and from where.

    Fields:
    - actor_id: Acting user id, None for system actions
    - actor_email: Acting user email, "system" for system actions
    - ip_address: Source IP of the request, None outside a request
    """

    actor_id: Optional[int]
    actor_email: str
    ip_address: Optional[str] = None

    @classmethod
    def system(cls) -> "AuditContext":
        """Context for actions performed by the platform itself (webhooks, jobs)."""
        return cls(actor_id=None, actor_email=SYSTEM_ACTOR_EMAIL, ip_address=None)

    @classmethod
    def for_user(cls, user, ip_address: Optional[str] = None) -> "AuditContext":
        return cls(actor_id=user.id, actor_email=user.email, ip_address=ip_address)


class AuditService:
    """
    Service for creating audit log entries.

    Example:
        audit = AuditService(db)
        await audit.log(
            AuditAction.ASSIGN_PLAN,
            context,
            target=f"subscription:{subscription.id}",
            metadata={"plan": "pro"},
        )
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize audit service with database session.

        Args:
            session: Async database session for audit log persistence
        """
        self.dao = AuditLogDAO(session)
        self._session = session

    async def log(
        self,
        action: AuditAction,
        context: AuditContext,
        target: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Record an audit event.

        Args:
            action: Type of event (from AuditAction enum)
            context: Actor and source IP
            target: What was acted on, e.g. "subscription:12"
            metadata: Action-specific details (old/new values, reasons)

        Returns:
            Created AuditLog or None if logging failed

        Note:
            This method never raises. Errors are logged to the application
            logger instead.
        """
        try:
            async with self._session.begin_nested():
                log = await self.dao.create(
                    action=action.value,
                    target=target,
                    actor_id=context.actor_id,
                    actor_email=context.actor_email,
                    ip_address=context.ip_address,
                    extra_data=metadata,
                )
            return log

        except Exception as e:
            # WHY: The business change this entry describes has already
            # happened; failing the request now would misreport it.
            logger.error(
                f"Failed to create audit log: {e}",
                exc_info=True,
                extra={"action": action.value, "target": target},
            )
            return None
