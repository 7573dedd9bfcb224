from fastapi import APIRouter, Depends, Response
import redis
from sqlalchemy import text
from sqlalchemy.orm import Session

from referral_rewards.core.config import settings
from referral_rewards.db.session import get_db


router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)) -> dict:
    """Readiness probe - 503 if the database or the reward lock backend is unreachable."""
    checks = {"database": "ok", "lock": settings.referral_lock_backend}
    try:
        db.execute(text("SELECT 1"))
        # The in-memory lock has nothing to ping
        if settings.referral_lock_backend == "redis":
            redis.Redis.from_url(settings.redis_url, decode_responses=True).ping()
    except Exception as e:
        response.status_code = 503
        return {"status": "not_ready", "checks": checks, "error": str(e)}
    return {"status": "ready", "checks": checks}
