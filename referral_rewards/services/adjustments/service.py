"""Balance history records: top-ups and referral rewards."""
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from referral_rewards.db.session import SessionLocal, session_scope
from referral_rewards.models.balance_adjustment import BalanceAdjustment

ADJUSTMENT_TYPE_BALANCE = "balance"
ADJUSTMENT_TYPE_REFERRAL_REWARD = "referral_reward"
STATUS_USED = "used"


class AdjustmentRepository:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    def record(
        self,
        adjustment_type: str,
        value: Decimal,
        used_by: int,
        notes: str = "",
        scope: Session | None = None,
    ) -> None:
        with session_scope(scope, self.session_factory) as db:
            entry = BalanceAdjustment(
                code=uuid4().hex,
                type=adjustment_type,
                status=STATUS_USED,
                value=value,
                used_by=used_by,
                used_at=datetime.now(timezone.utc),
                notes=notes,
            )
            db.add(entry)
            db.flush()

    def count_by_user_and_type(self, user_id: int, adjustment_type: str, scope: Session | None = None) -> int:
        with session_scope(scope, self.session_factory) as db:
            return (
                db.query(func.count(BalanceAdjustment.id))
                .filter(BalanceAdjustment.used_by == user_id, BalanceAdjustment.type == adjustment_type)
                .scalar()
                or 0
            )
