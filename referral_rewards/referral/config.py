"""
Referral program config — typed view over the key/value settings store.
Values are stored as strings; decimals keep 8 fractional digits.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation

from pydantic import BaseModel

from referral_rewards.referral.errors import InvalidReferralSettings

SETTING_KEY_REFERRAL_ENABLED = "referral_enabled"
SETTING_KEY_REFERRER_BALANCE_REWARD = "referral_referrer_balance_reward"
SETTING_KEY_REFERRER_GROUP_ID = "referral_referrer_group_id"
SETTING_KEY_REFERRER_SUBSCRIPTION_DAYS = "referral_referrer_subscription_days"
SETTING_KEY_REFEREE_BALANCE_REWARD = "referral_referee_balance_reward"
SETTING_KEY_REFEREE_GROUP_ID = "referral_referee_group_id"
SETTING_KEY_REFEREE_SUBSCRIPTION_DAYS = "referral_referee_subscription_days"
SETTING_KEY_MAX_PER_USER = "referral_max_per_user"
SETTING_KEY_SITE_BASE_URL = "site_base_url"

REFERRAL_SETTING_KEYS = (
    SETTING_KEY_REFERRAL_ENABLED,
    SETTING_KEY_REFERRER_BALANCE_REWARD,
    SETTING_KEY_REFERRER_GROUP_ID,
    SETTING_KEY_REFERRER_SUBSCRIPTION_DAYS,
    SETTING_KEY_REFEREE_BALANCE_REWARD,
    SETTING_KEY_REFEREE_GROUP_ID,
    SETTING_KEY_REFEREE_SUBSCRIPTION_DAYS,
    SETTING_KEY_MAX_PER_USER,
)

DECIMAL_SCALE = Decimal("0.00000001")


def _parse_decimal(raw: str | None) -> Decimal:
    if not raw:
        return Decimal("0")
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        return Decimal("0")
    return value if value.is_finite() else Decimal("0")


def _parse_int(raw: str | None) -> int:
    if not raw:
        return 0
    try:
        return int(raw.strip())
    except ValueError:
        return 0


def format_decimal(value: Decimal) -> str:
    return format(Decimal(value).quantize(DECIMAL_SCALE), "f")


class ReferralSettings(BaseModel):
    """Referral program settings. group_id 0 means "no subscription reward"; max_per_user 0 means unlimited."""

    enabled: bool = False
    referrer_balance_reward: Decimal = Decimal("0")
    referrer_group_id: int = 0
    referrer_subscription_days: int = 0
    referee_balance_reward: Decimal = Decimal("0")
    referee_group_id: int = 0
    referee_subscription_days: int = 0
    max_per_user: int = 0

    @classmethod
    def from_values(cls, values: dict[str, str]) -> ReferralSettings:
        """Build from raw store values; unparsable or missing values fall back to zero."""
        return cls(
            enabled=values.get(SETTING_KEY_REFERRAL_ENABLED) == "true",
            referrer_balance_reward=_parse_decimal(values.get(SETTING_KEY_REFERRER_BALANCE_REWARD)),
            referrer_group_id=_parse_int(values.get(SETTING_KEY_REFERRER_GROUP_ID)),
            referrer_subscription_days=_parse_int(values.get(SETTING_KEY_REFERRER_SUBSCRIPTION_DAYS)),
            referee_balance_reward=_parse_decimal(values.get(SETTING_KEY_REFEREE_BALANCE_REWARD)),
            referee_group_id=_parse_int(values.get(SETTING_KEY_REFEREE_GROUP_ID)),
            referee_subscription_days=_parse_int(values.get(SETTING_KEY_REFEREE_SUBSCRIPTION_DAYS)),
            max_per_user=_parse_int(values.get(SETTING_KEY_MAX_PER_USER)),
        )

    def to_values(self) -> dict[str, str]:
        return {
            SETTING_KEY_REFERRAL_ENABLED: "true" if self.enabled else "false",
            SETTING_KEY_REFERRER_BALANCE_REWARD: format_decimal(self.referrer_balance_reward),
            SETTING_KEY_REFERRER_GROUP_ID: str(self.referrer_group_id),
            SETTING_KEY_REFERRER_SUBSCRIPTION_DAYS: str(self.referrer_subscription_days),
            SETTING_KEY_REFEREE_BALANCE_REWARD: format_decimal(self.referee_balance_reward),
            SETTING_KEY_REFEREE_GROUP_ID: str(self.referee_group_id),
            SETTING_KEY_REFEREE_SUBSCRIPTION_DAYS: str(self.referee_subscription_days),
            SETTING_KEY_MAX_PER_USER: str(self.max_per_user),
        }

    def validate_non_negative(self) -> None:
        negative = [
            name
            for name in (
                "referrer_balance_reward",
                "referrer_group_id",
                "referrer_subscription_days",
                "referee_balance_reward",
                "referee_group_id",
                "referee_subscription_days",
                "max_per_user",
            )
            if getattr(self, name) < 0
        ]
        if negative:
            raise InvalidReferralSettings(f"negative values not allowed: {', '.join(negative)}")


def parse_max_per_user(raw: str | None) -> int:
    return max(0, _parse_int(raw))
