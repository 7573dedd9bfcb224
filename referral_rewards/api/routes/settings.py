"""Public (unauthenticated) settings the frontend needs before login."""
from fastapi import APIRouter, Depends

from referral_rewards.api.deps import get_referral_service, get_setting_repository
from referral_rewards.core.errors import SettingNotFound
from referral_rewards.referral.config import SETTING_KEY_SITE_BASE_URL
from referral_rewards.referral.service import ReferralService
from referral_rewards.services.settings.service import SettingRepository

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/public")
def public_settings(
    svc: ReferralService = Depends(get_referral_service),
    repo: SettingRepository = Depends(get_setting_repository),
) -> dict:
    try:
        site_base_url = repo.get_value(SETTING_KEY_SITE_BASE_URL)
    except SettingNotFound:
        site_base_url = ""
    return {
        "referral_enabled": svc.is_referral_enabled(),
        "site_base_url": site_base_url,
    }
