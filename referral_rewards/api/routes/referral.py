"""
User-facing referral API: own code, link and stats; own referral history.
"""
from fastapi import APIRouter, Depends, Query

from referral_rewards.api.deps import get_current_user_id, get_referral_service
from referral_rewards.core.config import settings
from referral_rewards.referral.models import ReferralInfo
from referral_rewards.referral.service import ReferralService
from referral_rewards.schemas.referral import ReferralOut, ReferralPageOut
from referral_rewards.utils.pagination import PaginationParams

router = APIRouter(prefix="/referral", tags=["referral"])


@router.get("/info", response_model=ReferralInfo)
def referral_info(
    user_id: int = Depends(get_current_user_id),
    svc: ReferralService = Depends(get_referral_service),
):
    """Referral code (created on first call), share link, stats and current rewards."""
    return svc.get_referral_info(user_id)


@router.get("/history", response_model=ReferralPageOut)
def referral_history(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    user_id: int = Depends(get_current_user_id),
    svc: ReferralService = Depends(get_referral_service),
):
    items, pagination = svc.get_referral_history(user_id, PaginationParams(page=page, page_size=page_size))
    return ReferralPageOut(
        items=[ReferralOut.model_validate(item) for item in items],
        pagination=pagination,
    )
