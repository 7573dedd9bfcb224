from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String

from referral_rewards.db.base import Base


class UserReferral(Base):
    """Referrer/referee pair. One row per referee; reward snapshot stays zero until rewarded."""

    __tablename__ = "user_referrals"
    __table_args__ = (CheckConstraint("referrer_id <> referee_id", name="ck_user_referrals_not_self"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    referrer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    referee_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default="pending", index=True)

    referrer_balance_reward = Column(Numeric(20, 8), nullable=False, default=0)
    referrer_group_id = Column(Integer, nullable=True)
    referrer_subscription_days = Column(Integer, nullable=False, default=0)
    referrer_rewarded_at = Column(DateTime(timezone=True), nullable=True)

    referee_balance_reward = Column(Numeric(20, 8), nullable=False, default=0)
    referee_group_id = Column(Integer, nullable=True)
    referee_subscription_days = Column(Integer, nullable=False, default=0)
    referee_rewarded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
