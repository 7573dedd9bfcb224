"""
Admin API: referral program settings, referral listing, balance top-up.
"""
from fastapi import APIRouter, Depends, Query

from referral_rewards.api.deps import (
    get_audit_service,
    get_balance_service,
    get_referral_service,
    require_admin,
)
from referral_rewards.core.config import settings as app_settings
from referral_rewards.referral.config import ReferralSettings
from referral_rewards.referral.service import ReferralService
from referral_rewards.schemas.referral import ReferralOut, ReferralPageOut, ReferralSettingsIn, TopUpIn
from referral_rewards.services.audit.service import AuditService
from referral_rewards.services.balance.service import BalanceService, TopUpResult
from referral_rewards.utils.pagination import PaginationParams

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# ---------- Referral ----------
@router.get("/referral/settings", response_model=ReferralSettings)
def referral_get_settings(svc: ReferralService = Depends(get_referral_service)):
    return svc.get_referral_settings()


@router.put("/referral/settings", response_model=ReferralSettings)
def referral_update_settings(
    payload: ReferralSettingsIn,
    svc: ReferralService = Depends(get_referral_service),
    audit: AuditService = Depends(get_audit_service),
):
    new_settings = payload.to_settings()
    svc.update_referral_settings(new_settings)
    audit.log(
        actor_type="admin",
        actor_id=None,
        action="referral_settings_update",
        entity_type="settings",
        entity_id="referral",
        payload=new_settings.to_values(),
    )
    return svc.get_referral_settings()


@router.get("/referral/list", response_model=ReferralPageOut)
def referral_list(
    page: int = Query(1, ge=1),
    page_size: int = Query(app_settings.default_page_size, ge=1, le=app_settings.max_page_size),
    svc: ReferralService = Depends(get_referral_service),
):
    """All relationships, newest first, both emails unmasked."""
    items, pagination = svc.get_all_referrals(PaginationParams(page=page, page_size=page_size))
    return ReferralPageOut(
        items=[ReferralOut.model_validate(item) for item in items],
        pagination=pagination,
    )


# ---------- Balance ----------
@router.post("/users/{user_id}/top-up", response_model=TopUpResult)
def users_top_up(
    user_id: int,
    payload: TopUpIn,
    svc: BalanceService = Depends(get_balance_service),
):
    return svc.top_up(user_id, payload.amount, notes=payload.notes, async_trigger=payload.async_trigger)
