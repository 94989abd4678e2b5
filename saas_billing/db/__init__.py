"""Database package"""

from saas_billing.db.session import AsyncSessionLocal, engine, get_db
from saas_billing.models.base import Base

__all__ = ["Base", "AsyncSessionLocal", "engine", "get_db"]
