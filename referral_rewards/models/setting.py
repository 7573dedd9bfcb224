from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text

from referral_rewards.db.base import Base


class Setting(Base):
    """Key/value runtime settings edited from the admin panel."""

    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False, default="")
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
