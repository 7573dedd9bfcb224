"""
SubscriptionService — grant or extend a user's subscription to a group.

Callers that already run inside a transaction pass it as `scope`; every read and
write then happens in that same session instead of a separately committed one.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from referral_rewards.core.errors import GroupNotFound, InvalidSubscriptionInput
from referral_rewards.db.session import SessionLocal, session_scope
from referral_rewards.models.subscription_group import SubscriptionGroup
from referral_rewards.models.user_subscription import UserSubscription

logger = logging.getLogger(__name__)

SUBSCRIPTION_TYPE_SUBSCRIPTION = "subscription"
STATUS_ACTIVE = "active"
STATUS_SUSPENDED = "suspended"
EXTENDABLE_STATUSES = (STATUS_ACTIVE, STATUS_SUSPENDED)


class SubscriptionRecord(BaseModel):
    id: int
    user_id: int
    group_id: int
    status: str
    starts_at: datetime
    expires_at: datetime
    assigned_by: int | None = None
    notes: str = ""

    model_config = {"from_attributes": True}


def _as_utc(value: datetime) -> datetime:
    # Some drivers (sqlite) hand back naive datetimes for timestamptz columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SubscriptionService:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    def assign_or_extend(
        self,
        user_id: int,
        group_id: int,
        validity_days: int,
        assigned_by: int | None = None,
        notes: str = "",
        scope: Session | None = None,
    ) -> tuple[SubscriptionRecord, bool]:
        """
        Extend an active/suspended subscription to the group (and reactivate it), or
        create a new one. Returns (subscription, extended).
        """
        if validity_days <= 0:
            raise InvalidSubscriptionInput("validity_days must be positive")

        with session_scope(scope, self.session_factory) as db:
            group = db.query(SubscriptionGroup).filter(SubscriptionGroup.id == group_id).one_or_none()
            if group is None or group.status != STATUS_ACTIVE:
                raise GroupNotFound(f"group {group_id} not found")
            if group.subscription_type != SUBSCRIPTION_TYPE_SUBSCRIPTION:
                raise InvalidSubscriptionInput(f"group {group_id} is not a subscription group")

            now = datetime.now(timezone.utc)
            existing = (
                db.query(UserSubscription)
                .filter(
                    UserSubscription.user_id == user_id,
                    UserSubscription.group_id == group_id,
                    UserSubscription.status.in_(EXTENDABLE_STATUSES),
                )
                .order_by(UserSubscription.expires_at.desc())
                .with_for_update()
                .first()
            )

            if existing is not None:
                base = max(now, _as_utc(existing.expires_at))
                existing.expires_at = base + timedelta(days=validity_days)
                existing.status = STATUS_ACTIVE
                if notes:
                    existing.notes = f"{existing.notes}\n{notes}" if existing.notes else notes
                existing.updated_at = now
                db.add(existing)
                db.flush()
                logger.info(
                    "subscription_extended",
                    extra={"user_id": user_id, "group_id": group_id, "amount": validity_days},
                )
                return SubscriptionRecord.model_validate(existing), True

            sub = UserSubscription(
                user_id=user_id,
                group_id=group_id,
                status=STATUS_ACTIVE,
                starts_at=now,
                expires_at=now + timedelta(days=validity_days),
                assigned_by=assigned_by,
                notes=notes,
            )
            db.add(sub)
            db.flush()
            logger.info(
                "subscription_assigned",
                extra={"user_id": user_id, "group_id": group_id, "amount": validity_days},
            )
            return SubscriptionRecord.model_validate(sub), False
