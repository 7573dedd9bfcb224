"""
Failure policy of the referral flows: what happens when a step raises.

Registration and reward distribution are fed by events the user never waits on
(signup, top-up), so most of their failures turn into logged no-ops. Admin settings
updates are synchronous and propagate.
"""
from __future__ import annotations

import logging
from enum import Enum


class Policy(str, Enum):
    PROPAGATE = "propagate"
    LOG_AND_CONTINUE = "log_and_continue"
    LOG_AND_ABORT = "log_and_abort"


POLICIES: dict[str, Policy] = {
    # Registration: signup must succeed whatever happens here
    "register": Policy.LOG_AND_ABORT,
    # Reward distribution
    "trigger.lookup": Policy.LOG_AND_ABORT,
    "trigger.acquire_lock": Policy.LOG_AND_ABORT,
    "trigger.recheck": Policy.LOG_AND_ABORT,
    "trigger.read_settings": Policy.LOG_AND_ABORT,
    "trigger.balance_credit": Policy.LOG_AND_ABORT,
    "trigger.subscription_grant": Policy.LOG_AND_CONTINUE,
    "trigger.reward_record": Policy.LOG_AND_CONTINUE,
    "trigger.persist_status": Policy.LOG_AND_ABORT,
    "trigger.release_lock": Policy.LOG_AND_CONTINUE,
    # Settings: reads degrade to defaults, admin writes reach the caller
    "settings.read": Policy.LOG_AND_CONTINUE,
    "settings.update": Policy.PROPAGATE,
}


def policy_for(operation: str) -> Policy:
    return POLICIES.get(operation, Policy.PROPAGATE)


def handle_failure(operation: str, exc: Exception, logger: logging.Logger, **context) -> Policy:
    """
    Apply the policy of `operation` to `exc`.

    Re-raises for PROPAGATE, otherwise logs with the given context and returns the
    policy so the caller knows whether to stop or carry on.
    """
    policy = policy_for(operation)
    if policy is Policy.PROPAGATE:
        raise exc
    extra = {"operation": operation, "policy": policy.value, "error": str(exc), **context}
    if policy is Policy.LOG_AND_ABORT:
        logger.error("referral_operation_aborted", extra=extra, exc_info=exc)
    else:
        logger.warning("referral_operation_failed", extra=extra, exc_info=exc)
    return policy
