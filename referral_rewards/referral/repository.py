"""
ReferralRepository — durable store of referrer/referee pairs.

Every method accepts an optional `scope` session. Given one, the work joins the caller's
transaction (flush only). Without one, the call is its own atomic unit.
"""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal
from typing import TypeVar

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased, sessionmaker

from referral_rewards.db.session import SessionLocal, session_scope
from referral_rewards.models.user import User
from referral_rewards.models.user_referral import UserReferral
from referral_rewards.referral.errors import (
    InvalidStatusTransition,
    ReferralAlreadyExists,
    ReferralNotFound,
    SelfReferral,
)
from referral_rewards.referral.models import STATUS_PENDING, STATUS_REWARDED, ReferralRecord, RewardSnapshot
from referral_rewards.utils.pagination import PaginationParams, PaginationResult

T = TypeVar("T")

# status -> statuses it may move to
ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_REWARDED},
    STATUS_REWARDED: set(),
}


class ReferralRepository:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    def run_in_tx(self, fn: Callable[[Session], T], scope: Session | None = None) -> T:
        """Run fn inside the caller's transaction if there is one, otherwise in a new one."""
        with session_scope(scope, self.session_factory) as db:
            return fn(db)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, referrer_id: int, referee_id: int, scope: Session | None = None) -> ReferralRecord:
        if referrer_id == referee_id:
            raise SelfReferral()
        with session_scope(scope, self.session_factory) as db:
            row = UserReferral(referrer_id=referrer_id, referee_id=referee_id, status=STATUS_PENDING)
            try:
                # Savepoint keeps an outer scope usable after a unique violation
                with db.begin_nested():
                    db.add(row)
            except IntegrityError as exc:
                raise ReferralAlreadyExists() from exc
            return ReferralRecord.model_validate(row)

    def update_status_and_snapshot(
        self,
        referral_id: int,
        status: str,
        snapshot: RewardSnapshot | None = None,
        scope: Session | None = None,
    ) -> None:
        """
        Move a relationship to `status`, writing the snapshot in the same UPDATE.
        Moving to rewarded also stamps both rewarded_at columns.
        """
        with session_scope(scope, self.session_factory) as db:
            current = db.query(UserReferral.status).filter(UserReferral.id == referral_id).scalar()
            if current is None:
                raise ReferralNotFound()
            if status not in ALLOWED_TRANSITIONS.get(current, set()):
                raise InvalidStatusTransition(f"referral {referral_id}: {current} -> {status}")

            now = datetime.now(timezone.utc)
            values = {UserReferral.status: status, UserReferral.updated_at: now}
            if snapshot is not None:
                values.update({
                    UserReferral.referrer_balance_reward: snapshot.referrer_balance_reward,
                    UserReferral.referrer_group_id: snapshot.referrer_group_id,
                    UserReferral.referrer_subscription_days: snapshot.referrer_subscription_days,
                    UserReferral.referee_balance_reward: snapshot.referee_balance_reward,
                    UserReferral.referee_group_id: snapshot.referee_group_id,
                    UserReferral.referee_subscription_days: snapshot.referee_subscription_days,
                })
            if status == STATUS_REWARDED:
                values[UserReferral.referrer_rewarded_at] = now
                values[UserReferral.referee_rewarded_at] = now

            # Compare-and-set on the old status: a concurrent writer makes rowcount 0
            updated = (
                db.query(UserReferral)
                .filter(UserReferral.id == referral_id, UserReferral.status == current)
                .update(values, synchronize_session=False)
            )
            if not updated:
                raise InvalidStatusTransition(f"referral {referral_id} changed concurrently")
            db.flush()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_referee(self, referee_id: int, scope: Session | None = None) -> ReferralRecord:
        with session_scope(scope, self.session_factory) as db:
            row = (
                db.query(UserReferral)
                .filter(UserReferral.referee_id == referee_id)
                .populate_existing()
                .one_or_none()
            )
            if row is None:
                raise ReferralNotFound()
            return ReferralRecord.model_validate(row)

    def get_by_id(self, referral_id: int, scope: Session | None = None) -> ReferralRecord:
        with session_scope(scope, self.session_factory) as db:
            row = (
                db.query(UserReferral)
                .filter(UserReferral.id == referral_id)
                .populate_existing()
                .one_or_none()
            )
            if row is None:
                raise ReferralNotFound()
            return ReferralRecord.model_validate(row)

    def count_by_referrer(self, referrer_id: int, scope: Session | None = None) -> int:
        with session_scope(scope, self.session_factory) as db:
            return (
                db.query(func.count(UserReferral.id))
                .filter(UserReferral.referrer_id == referrer_id)
                .scalar()
                or 0
            )

    def count_by_referrer_and_status(self, referrer_id: int, status: str, scope: Session | None = None) -> int:
        with session_scope(scope, self.session_factory) as db:
            return (
                db.query(func.count(UserReferral.id))
                .filter(UserReferral.referrer_id == referrer_id, UserReferral.status == status)
                .scalar()
                or 0
            )

    def sum_referrer_balance_reward(self, referrer_id: int, scope: Session | None = None) -> Decimal:
        """Balance earned by a referrer; pending rows carry no snapshot and are excluded."""
        with session_scope(scope, self.session_factory) as db:
            total = (
                db.query(func.coalesce(func.sum(UserReferral.referrer_balance_reward), 0))
                .filter(UserReferral.referrer_id == referrer_id, UserReferral.status == STATUS_REWARDED)
                .scalar()
            )
            return Decimal(str(total or 0))

    def list_by_referrer(
        self, referrer_id: int, params: PaginationParams, scope: Session | None = None
    ) -> tuple[list[ReferralRecord], PaginationResult]:
        return self._list(params, scope, referrer_id=referrer_id)

    def list_all(
        self, params: PaginationParams, scope: Session | None = None
    ) -> tuple[list[ReferralRecord], PaginationResult]:
        return self._list(params, scope)

    def _list(
        self, params: PaginationParams, scope: Session | None, referrer_id: int | None = None
    ) -> tuple[list[ReferralRecord], PaginationResult]:
        """Newest first, with referrer/referee emails attached unmasked."""
        referrer = aliased(User)
        referee = aliased(User)
        with session_scope(scope, self.session_factory) as db:
            count_q = db.query(func.count(UserReferral.id))
            q = (
                db.query(UserReferral, referrer.email, referee.email)
                .outerjoin(referrer, referrer.id == UserReferral.referrer_id)
                .outerjoin(referee, referee.id == UserReferral.referee_id)
                .populate_existing()
            )
            if referrer_id is not None:
                count_q = count_q.filter(UserReferral.referrer_id == referrer_id)
                q = q.filter(UserReferral.referrer_id == referrer_id)
            total = count_q.scalar() or 0

            rows = (
                q.order_by(UserReferral.created_at.desc(), UserReferral.id.desc())
                .offset(params.offset)
                .limit(params.limit)
                .all()
            )
            items = [
                ReferralRecord.model_validate(row).model_copy(
                    update={"referrer_email": referrer_email or "", "referee_email": referee_email or ""}
                )
                for row, referrer_email, referee_email in rows
            ]
            return items, PaginationResult.from_total(total, params)
