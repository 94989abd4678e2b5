"""
Plan Data Access Object (DAO).

WHAT: DAO for the plan catalog table.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.dao.base import BaseDAO
from saas_billing.models.plan import Plan


class PlanDAO(BaseDAO[Plan]):
    """Data Access Object for Plan model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Plan, session)

    async def get_by_code(self, code: str) -> Optional[Plan]:
        """Get a plan by its unique code."""
        result = await self.session.execute(select(Plan).where(Plan.code == code))
        return result.scalar_one_or_none()

    async def list_ordered(self) -> List[Plan]:
        """All plans ordered by code."""
        result = await self.session.execute(select(Plan).order_by(Plan.code))
        return list(result.scalars().all())
