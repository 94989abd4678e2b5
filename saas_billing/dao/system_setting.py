"""
System setting Data Access Object (DAO).

WHAT: Reads and writes settings sections, one row per section.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.dao.base import BaseDAO
from saas_billing.models.system_setting import SystemSetting


class SystemSettingDAO(BaseDAO[SystemSetting]):
    """Data Access Object for SystemSetting model."""

    def __init__(self, session: AsyncSession):
        super().__init__(SystemSetting, session)

    async def get_section(self, section: str) -> Optional[SystemSetting]:
        result = await self.session.execute(
            select(SystemSetting).where(SystemSetting.section == section)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> List[SystemSetting]:
        result = await self.session.execute(select(SystemSetting).order_by(SystemSetting.section))
        return list(result.scalars().all())

    async def upsert_section(
        self,
        section: str,
        values: Dict[str, Any],
        updated_by_id: Optional[int] = None,
    ) -> SystemSetting:
        """
        Insert or replace a section document.

        HOW: The insert runs inside a SAVEPOINT. If a concurrent writer
        inserted the same section first, the unique constraint fires and the
        write is retried as an update (last write wins).
        """
        existing = await self.get_section(section)
        if existing is None:
            try:
                async with self.session.begin_nested():
                    row = SystemSetting(
                        section=section, values=values, updated_by_id=updated_by_id
                    )
                    self.session.add(row)
                await self.session.refresh(row)
                return row
            except IntegrityError:
                existing = await self.get_section(section)
                if existing is None:
                    raise

        existing.values = values
        existing.updated_by_id = updated_by_id
        await self.session.flush()
        await self.session.refresh(existing)
        return existing
