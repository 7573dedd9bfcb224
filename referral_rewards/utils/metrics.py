"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
referral_registrations_total = Counter(
    "referral_registrations_total",
    "Referral registration attempts by outcome",
    ["outcome"],  # created, error, or the REFERRAL_* code of the skip reason
)

referral_reward_attempts_total = Counter(
    "referral_reward_attempts_total",
    "Referral reward trigger calls by outcome",
    ["outcome"],  # rewarded, disabled, no_relationship, already_rewarded, lock_contended, aborted
)

referral_subscription_grant_failures_total = Counter(
    "referral_subscription_grant_failures_total",
    "Subscription rewards that failed and were skipped",
    ["beneficiary"],  # referrer, referee
)

referral_lock_release_failures_total = Counter(
    "referral_lock_release_failures_total",
    "Reward lock releases that failed (lock left to expire)",
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
