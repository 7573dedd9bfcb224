"""
DTO referral: ReferralRecord (store output), RewardSnapshot, ReferralInfo/ReferralStats (read side).
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from referral_rewards.referral.config import ReferralSettings

STATUS_PENDING = "pending"
STATUS_REWARDED = "rewarded"


class ReferralRecord(BaseModel):
    """Detached view of a user_referrals row, optionally with both emails attached."""

    id: int
    referrer_id: int
    referee_id: int
    status: str
    referrer_balance_reward: Decimal = Decimal("0")
    referrer_group_id: int | None = None
    referrer_subscription_days: int = 0
    referrer_rewarded_at: datetime | None = None
    referee_balance_reward: Decimal = Decimal("0")
    referee_group_id: int | None = None
    referee_subscription_days: int = 0
    referee_rewarded_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    referrer_email: str = ""
    referee_email: str = ""

    model_config = {"from_attributes": True}

    @property
    def is_rewarded(self) -> bool:
        return self.status == STATUS_REWARDED


class RewardSnapshot(BaseModel):
    """Rewards frozen at distribution time; this, not live settings, is persisted."""

    referrer_balance_reward: Decimal = Decimal("0")
    referrer_group_id: int | None = None
    referrer_subscription_days: int = 0
    referee_balance_reward: Decimal = Decimal("0")
    referee_group_id: int | None = None
    referee_subscription_days: int = 0

    model_config = {"frozen": True}

    @classmethod
    def from_settings(cls, settings: ReferralSettings) -> RewardSnapshot:
        return cls(
            referrer_balance_reward=settings.referrer_balance_reward,
            referrer_group_id=settings.referrer_group_id if settings.referrer_group_id > 0 else None,
            referrer_subscription_days=settings.referrer_subscription_days,
            referee_balance_reward=settings.referee_balance_reward,
            referee_group_id=settings.referee_group_id if settings.referee_group_id > 0 else None,
            referee_subscription_days=settings.referee_subscription_days,
        )


class ReferralStats(BaseModel):
    total_count: int = 0
    rewarded_count: int = 0
    pending_count: int = 0
    total_balance_earn: Decimal = Decimal("0")


class ReferralInfo(BaseModel):
    referral_code: str
    referral_link: str = ""
    stats: ReferralStats
    rewards: ReferralSettings | None = None
