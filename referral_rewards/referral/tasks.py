"""
Celery task: run reward distribution for a referee outside the top-up request.
"""
import logging

from referral_rewards.core.celery_app import celery_app
from referral_rewards.referral.service import build_referral_service

logger = logging.getLogger(__name__)


@celery_app.task(name="referral_rewards.referral.tasks.trigger_referral_reward")
def trigger_referral_reward(referee_id: int) -> dict:
    """Fire-and-forget reward trigger. Failures are logged by the service; the task itself never retries."""
    try:
        build_referral_service().trigger_referral_reward(referee_id)
    except Exception:
        logger.exception("trigger_referral_reward_error", extra={"referee_id": referee_id})
        return {"referee_id": referee_id, "error": "exception"}
    logger.info("trigger_referral_reward_done", extra={"referee_id": referee_id})
    return {"referee_id": referee_id}
