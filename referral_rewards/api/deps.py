"""FastAPI dependencies: caller identity, admin guard, service wiring."""
import secrets
from functools import lru_cache

from fastapi import Header, HTTPException, Request

from referral_rewards.core.config import settings
from referral_rewards.referral.service import ReferralService, build_referral_service
from referral_rewards.services.audit.service import AuditService
from referral_rewards.services.balance.service import BalanceService, build_balance_service
from referral_rewards.services.settings.service import SettingRepository


def require_admin(x_admin_key: str | None = Header(default=None)) -> None:
    if settings.admin_api_key and not secrets.compare_digest(x_admin_key or "", settings.admin_api_key):
        raise HTTPException(status_code=401, detail="unauthorized")


def get_current_user_id(request: Request) -> int:
    """Authenticated user id, set by the upstream gateway."""
    raw = request.headers.get(settings.user_id_header)
    if not raw:
        raise HTTPException(status_code=401, detail="unauthorized")
    try:
        return int(raw)
    except ValueError:
        raise HTTPException(status_code=401, detail="unauthorized")


@lru_cache
def get_referral_service() -> ReferralService:
    return build_referral_service()


def get_balance_service() -> BalanceService:
    return build_balance_service(referral_service=get_referral_service())


def get_setting_repository() -> SettingRepository:
    return SettingRepository()


def get_audit_service() -> AuditService:
    return AuditService()
