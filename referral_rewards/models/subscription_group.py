from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from referral_rewards.db.base import Base


class SubscriptionGroup(Base):
    __tablename__ = "subscription_groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    subscription_type = Column(String(20), nullable=False, default="subscription")  # subscription, standard
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
