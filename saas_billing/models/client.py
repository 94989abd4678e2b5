"""
Client model.

WHAT: A tenant's customer. Billing only counts these rows (plan ``clients``
limit); client management itself is owned by the CRUD service.
"""

from sqlalchemy import Column, Integer, String, ForeignKey

from saas_billing.models.base import Base, TimestampMixin, PrimaryKeyMixin


class Client(Base, PrimaryKeyMixin, TimestampMixin):
    """A customer of a tenant."""

    __tablename__ = "clients"

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    country = Column(String(2), nullable=True)

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, user_id={self.user_id}, name={self.name})>"
