"""
Celery application: broker and result backend from settings.
Referral reward triggers enqueued by the top-up flow run in referral_rewards.referral.tasks.
"""
from celery import Celery
from celery.signals import after_setup_logger

from referral_rewards.core.config import settings
from referral_rewards.core.logging import configure_logging

celery_app = Celery(
    "referral_rewards",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "referral_rewards.referral.tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    # Reward lock TTL bounds a single distribution; anything longer is stuck
    task_time_limit=settings.referral_lock_ttl_seconds * 4,
    result_expires=86400,
)

celery_app.conf.task_routes = {
    "referral_rewards.referral.tasks.trigger_referral_reward": {"queue": "referral"},
}


@after_setup_logger.connect
def _setup_json_logging(**_kwargs) -> None:
    configure_logging()
