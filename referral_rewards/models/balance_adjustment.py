from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text

from referral_rewards.db.base import Base


class BalanceAdjustment(Base):
    """Balance history: top-ups and referral rewards, one row per credited user."""

    __tablename__ = "balance_adjustments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(64), unique=True, nullable=False, default=lambda: uuid4().hex)
    type = Column(String(32), nullable=False, index=True)  # balance, referral_reward
    status = Column(String(20), nullable=False, default="used")
    value = Column(Numeric(20, 8), nullable=False)
    used_by = Column(Integer, nullable=True, index=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
