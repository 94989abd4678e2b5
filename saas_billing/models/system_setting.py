"""
System setting model.

WHAT: One row per top-level settings section ("security", "billing", ...).

WHY: Storing sections as separate rows makes the concurrency policy
explicit: two admins editing different sections never overwrite each
other, and two edits of the same section resolve last-write-wins.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, JSON

from saas_billing.models.base import Base, TimestampMixin, PrimaryKeyMixin


class SystemSetting(Base, PrimaryKeyMixin, TimestampMixin):
    """A settings section stored as a JSON document."""

    __tablename__ = "system_settings"

    section = Column(String(50), nullable=False, unique=True, index=True)
    values = Column(JSON, nullable=False, default=dict)
    updated_by_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<SystemSetting(section={self.section})>"
