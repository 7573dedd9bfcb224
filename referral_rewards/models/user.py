from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, Numeric, String

from referral_rewards.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, unique=True, nullable=False, index=True)
    balance = Column(Numeric(20, 8), nullable=False, default=0)
    # Lazily generated on first referral info request
    referral_code = Column(String(16), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
