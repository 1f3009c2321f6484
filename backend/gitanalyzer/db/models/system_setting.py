"""SystemSetting model: runtime key/value configuration edited by admins."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text

from gitanalyzer.db.base import Base


class SystemSetting(Base):
    __tablename__ = "system_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    description = Column(Text, nullable=True)

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
