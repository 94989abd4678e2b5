"""
Audit Log Data Access Object (DAO).

WHAT: Data access layer for audit log operations.

HOW: Standalone DAO (not BaseDAO) with update/delete blocked to keep the
log append-only.
"""

from typing import Optional, List, Dict, Any, Tuple
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from saas_billing.models.audit_log import AuditLog, SYSTEM_ACTOR_EMAIL
from saas_billing.core.exceptions import AuditLogImmutableError


class AuditLogDAO:
    """
    Data Access Object for audit log operations.

    WHY: Centralizes all audit log database operations with immutability
    enforcement (no updates or deletes).
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        action: str,
        target: Optional[str] = None,
        actor_id: Optional[int] = None,
        actor_email: Optional[str] = None,
        ip_address: Optional[str] = None,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Create a new audit log entry.

        Args:
            action: AuditAction value
            target: What was acted on (e.g. "subscription:12")
            actor_id: User who performed the action (None for system actions)
            actor_email: Actor email snapshot, defaults to "system"
            ip_address: Client IP address
            extra_data: Action-specific context

        Returns:
            The created AuditLog entry
        """
        log = AuditLog(
            action=action,
            target=target,
            actor_id=actor_id,
            actor_email=actor_email or SYSTEM_ACTOR_EMAIL,
            ip_address=ip_address,
            extra_data=extra_data,
        )
        self.session.add(log)
        await self.session.flush()
        await self.session.refresh(log)
        return log

    async def get_by_id(self, log_id: int) -> Optional[AuditLog]:
        result = await self.session.execute(select(AuditLog).where(AuditLog.id == log_id))
        return result.scalar_one_or_none()

    async def list_recent(self, skip: int = 0, limit: int = 50) -> Tuple[List[AuditLog], int]:
        """
        Page through audit logs, newest first.

        Returns:
            Tuple of (page of logs with actor loaded, total count)
        """
        total_result = await self.session.execute(select(func.count()).select_from(AuditLog))
        total = int(total_result.scalar_one())

        result = await self.session.execute(
            select(AuditLog)
            .options(selectinload(AuditLog.actor))
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_by_target(self, target: str) -> List[AuditLog]:
        """All entries for a target, oldest first."""
        result = await self.session.execute(
            select(AuditLog).where(AuditLog.target == target).order_by(AuditLog.id)
        )
        return list(result.scalars().all())

    async def update(self, log_id: int, **kwargs: Any) -> None:
        """
        Attempt to update an audit log (BLOCKED).

        Raises:
            AuditLogImmutableError: Always raised - updates not allowed
        """
        raise AuditLogImmutableError("Audit logs are immutable and cannot be updated.")

    async def delete(self, log_id: int) -> None:
        """
        Attempt to delete an audit log (BLOCKED).

        Raises:
            AuditLogImmutableError: Always raised - deletions not allowed
        """
        raise AuditLogImmutableError("Audit logs cannot be deleted.")
