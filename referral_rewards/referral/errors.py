"""
Referral error taxonomy. Most of these never reach a caller: registration and reward
distribution absorb them according to referral_rewards.referral.policy.
"""
from referral_rewards.core.errors import AppError, NotFoundError


class ReferralError(AppError):
    code = "REFERRAL_ERROR"
    message = "referral error"
    status_code = 400


class ReferralNotFound(NotFoundError, ReferralError):
    code = "REFERRAL_NOT_FOUND"
    message = "referral record not found"
    status_code = 404


class ReferralDisabled(ReferralError):
    code = "REFERRAL_DISABLED"
    message = "referral system is disabled"
    status_code = 403


class SelfReferral(ReferralError):
    code = "REFERRAL_SELF"
    message = "cannot refer yourself"
    status_code = 400


class ReferralAlreadyExists(ReferralError):
    code = "REFERRAL_ALREADY_EXIST"
    message = "user already has a referrer"
    status_code = 409


class ReferralMaxReached(ReferralError):
    code = "REFERRAL_MAX_REACHED"
    message = "referrer has reached maximum referral limit"
    status_code = 403


class InvalidReferralCode(ReferralError):
    code = "REFERRAL_CODE_INVALID"
    message = "invalid referral code"
    status_code = 400


class ReferralCodeConflict(ReferralError):
    code = "REFERRAL_CODE_CONFLICT"
    message = "referral code already taken"
    status_code = 409


class ReferralCodeGenerationFailed(ReferralError):
    code = "REFERRAL_CODE_GENERATION_FAILED"
    message = "failed to generate unique referral code after retries"
    status_code = 500


class InvalidStatusTransition(ReferralError):
    code = "REFERRAL_INVALID_STATUS_TRANSITION"
    message = "referral status can only move from pending to rewarded"
    status_code = 409


class InvalidReferralSettings(ReferralError):
    code = "REFERRAL_SETTINGS_INVALID"
    message = "invalid referral settings"
    status_code = 400


class RewardDistributionAborted(ReferralError):
    """Raised inside the distribution unit to unwind it; never leaves the service."""

    code = "REFERRAL_REWARD_ABORTED"
    message = "reward distribution aborted"
    status_code = 500
