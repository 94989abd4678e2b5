"""
Client Data Access Object (DAO).
"""

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.dao.base import BaseDAO
from saas_billing.models.client import Client


class ClientDAO(BaseDAO[Client]):
    """Data Access Object for Client model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Client, session)

    async def count_for_user(self, user_id: int) -> int:
        """Number of clients a tenant has created."""
        result = await self.session.execute(
            select(func.count()).select_from(Client).where(Client.user_id == user_id)
        )
        return int(result.scalar_one())
