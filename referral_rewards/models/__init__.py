"""Import every model so Base.metadata sees all tables."""
from referral_rewards.models.audit_log import AuditLog
from referral_rewards.models.balance_adjustment import BalanceAdjustment
from referral_rewards.models.setting import Setting
from referral_rewards.models.subscription_group import SubscriptionGroup
from referral_rewards.models.user import User
from referral_rewards.models.user_referral import UserReferral
from referral_rewards.models.user_subscription import UserSubscription

__all__ = [
    "AuditLog",
    "BalanceAdjustment",
    "Setting",
    "SubscriptionGroup",
    "User",
    "UserReferral",
    "UserSubscription",
]
