"""
Plan catalog service.

WHAT: Lookup and admin editing of pricing tiers.

WHY: Every plan transition validates the target plan here first. Admins
may rename plans and edit features/limits, but price, currency, interval
and code never change once a plan exists; payload keys for those fields
are dropped without error.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.core.exceptions import PlanNotFoundError, ValidationError
from saas_billing.dao.plan import PlanDAO
from saas_billing.models.audit_log import AuditAction
from saas_billing.models.plan import Plan, EDITABLE_PLAN_FIELDS
from saas_billing.services.audit import AuditService, AuditContext

logger = logging.getLogger(__name__)


@dataclass
class PlanUpdateResult:
    """Outcome of an admin plan edit."""

    plan: Plan
    changes_applied: List[str] = field(default_factory=list)


class PlanCatalog:
    """Read access to plans plus the admin edit operation."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.dao = PlanDAO(session)
        self.audit = AuditService(session)

    async def get_by_code(self, code: str) -> Plan:
        """
        Get a plan by code.

        Raises:
            PlanNotFoundError: If no plan has this code
        """
        plan = await self.dao.get_by_code(code)
        if plan is None:
            raise PlanNotFoundError(f"Plan '{code}' not found", plan_code=code)
        return plan

    async def get_by_id(self, plan_id: int) -> Plan:
        plan = await self.dao.get_by_id(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id=plan_id)
        return plan

    async def list_all(self) -> List[Plan]:
        """All plans, ordered by code."""
        return await self.dao.list_ordered()

    async def update_plan(
        self,
        plan_id: int,
        payload: Dict[str, Any],
        context: AuditContext,
    ) -> PlanUpdateResult:
        """
        Apply an admin edit to a plan.

        Only ``name``, ``features`` and ``limits`` are considered. Values
        equal to the stored ones are not counted as changes. An audit entry
        with old and new values is written only when something changed.

        Raises:
            PlanNotFoundError: If the plan does not exist
            ValidationError: If an editable field has the wrong shape
        """
        plan = await self.dao.get_by_id(plan_id, for_update=True)
        if plan is None:
            raise PlanNotFoundError(plan_id=plan_id)

        old_values: Dict[str, Any] = {}
        new_values: Dict[str, Any] = {}
        for name in EDITABLE_PLAN_FIELDS:
            if name not in payload or payload[name] is None:
                continue
            value = payload[name]
            _check_editable_value(name, value)
            current = getattr(plan, name)
            if value == current:
                continue
            old_values[name] = current
            new_values[name] = value
            setattr(plan, name, value)

        if not new_values:
            return PlanUpdateResult(plan=plan)

        await self.session.flush()
        await self.session.refresh(plan)

        await self.audit.log(
            AuditAction.UPDATE_SUBSCRIPTION_PLAN,
            context,
            target=f"plan:{plan.code}",
            metadata={"old": old_values, "new": new_values},
        )
        logger.info(
            f"Plan {plan.code} updated",
            extra={"plan_code": plan.code, "fields": list(new_values)},
        )
        return PlanUpdateResult(plan=plan, changes_applied=list(new_values))


def _check_editable_value(name: str, value: Any) -> None:
    if name == "name" and not (isinstance(value, str) and value.strip()):
        raise ValidationError("Plan name must be a non-empty string")
    if name == "features" and not (
        isinstance(value, list) and all(isinstance(item, str) for item in value)
    ):
        raise ValidationError("Plan features must be a list of strings")
    if name == "limits" and not isinstance(value, dict):
        raise ValidationError("Plan limits must be an object")
