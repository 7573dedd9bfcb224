from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from referral_rewards.referral.config import ReferralSettings
from referral_rewards.utils.pagination import PaginationResult


class ReferralSettingsIn(BaseModel):
    enabled: bool = False
    referrer_balance_reward: Decimal = Field(Decimal("0"), ge=0)
    referrer_group_id: int = Field(0, ge=0)
    referrer_subscription_days: int = Field(0, ge=0)
    referee_balance_reward: Decimal = Field(Decimal("0"), ge=0)
    referee_group_id: int = Field(0, ge=0)
    referee_subscription_days: int = Field(0, ge=0)
    max_per_user: int = Field(0, ge=0)

    def to_settings(self) -> ReferralSettings:
        return ReferralSettings(**self.model_dump())


class ReferralOut(BaseModel):
    id: int
    referrer_id: int
    referee_id: int
    referrer_email: str = ""
    referee_email: str = ""
    status: str
    referrer_balance_reward: Decimal
    referrer_group_id: int | None = None
    referrer_subscription_days: int
    referrer_rewarded_at: datetime | None = None
    referee_balance_reward: Decimal
    referee_group_id: int | None = None
    referee_subscription_days: int
    referee_rewarded_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ReferralPageOut(BaseModel):
    items: list[ReferralOut]
    pagination: PaginationResult


class TopUpIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    notes: str = ""
    async_trigger: bool = False
