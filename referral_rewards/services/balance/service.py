"""
BalanceService — admin/payment top-ups. The user's first top-up is what earns the
referral reward, so this is where the reward trigger fires.
"""
from __future__ import annotations

import logging
from decimal import Decimal

from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from referral_rewards.core.errors import InvalidAmount
from referral_rewards.db.session import SessionLocal, session_scope
from referral_rewards.referral.service import ReferralService
from referral_rewards.referral.tasks import trigger_referral_reward
from referral_rewards.services.adjustments.service import ADJUSTMENT_TYPE_BALANCE, AdjustmentRepository
from referral_rewards.services.users.service import UserRepository

logger = logging.getLogger(__name__)


class TopUpResult(BaseModel):
    user_id: int
    amount: Decimal
    balance: Decimal
    first_top_up: bool


class BalanceService:
    def __init__(
        self,
        user_repo: UserRepository,
        adjustment_repo: AdjustmentRepository,
        referral_service: ReferralService | None = None,
        session_factory: sessionmaker = SessionLocal,
    ) -> None:
        self.user_repo = user_repo
        self.adjustment_repo = adjustment_repo
        self.referral_service = referral_service
        self.session_factory = session_factory

    def top_up(
        self,
        user_id: int,
        amount: Decimal,
        notes: str = "",
        scope: Session | None = None,
        async_trigger: bool = False,
    ) -> TopUpResult:
        """
        Credit `amount` and record it. On the user's first top-up the referral reward is
        distributed in the same transaction, or enqueued to Celery with async_trigger
        (after this unit commits when it owns the transaction).
        """
        if amount <= 0:
            raise InvalidAmount()

        with session_scope(scope, self.session_factory) as db:
            first = self.adjustment_repo.count_by_user_and_type(user_id, ADJUSTMENT_TYPE_BALANCE, scope=db) == 0
            self.user_repo.update_balance(user_id, amount, scope=db)
            self.adjustment_repo.record(ADJUSTMENT_TYPE_BALANCE, amount, user_id, notes, scope=db)
            logger.info("balance_top_up", extra={"user_id": user_id, "amount": amount})

            if first and not async_trigger and self.referral_service is not None:
                try:
                    self.referral_service.trigger_referral_reward(user_id, scope=db)
                except Exception:
                    # The top-up stands even if the reward does not
                    logger.exception("referral_trigger_failed", extra={"user_id": user_id})

            balance = self.user_repo.get_by_id(user_id, scope=db).balance

        if first and async_trigger:
            trigger_referral_reward.delay(user_id)

        return TopUpResult(user_id=user_id, amount=amount, balance=balance, first_top_up=first)


def build_balance_service(
    referral_service: ReferralService | None = None, session_factory: sessionmaker = SessionLocal
) -> BalanceService:
    return BalanceService(
        user_repo=UserRepository(session_factory),
        adjustment_repo=AdjustmentRepository(session_factory),
        referral_service=referral_service,
        session_factory=session_factory,
    )
