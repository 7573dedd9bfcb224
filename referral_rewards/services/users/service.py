from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from referral_rewards.core.errors import UserNotFound
from referral_rewards.db.session import SessionLocal, session_scope
from referral_rewards.models.user import User
from referral_rewards.referral.errors import ReferralCodeConflict


class UserRecord(BaseModel):
    id: int
    email: str
    balance: Decimal = Decimal("0")
    referral_code: str | None = None

    model_config = {"from_attributes": True}


class UserRepository:
    """User directory as seen by the referral program: lookups, code persistence, balance."""

    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    def get_by_id(self, user_id: int, scope: Session | None = None) -> UserRecord:
        with session_scope(scope, self.session_factory) as db:
            # Balance and code are written with bulk UPDATEs; never trust the identity map here
            user = db.query(User).filter(User.id == user_id).populate_existing().one_or_none()
            if user is None:
                raise UserNotFound()
            return UserRecord.model_validate(user)

    def get_by_referral_code(self, code: str, scope: Session | None = None) -> UserRecord:
        with session_scope(scope, self.session_factory) as db:
            user = db.query(User).filter(User.referral_code == code).one_or_none()
            if user is None:
                raise UserNotFound()
            return UserRecord.model_validate(user)

    def update_referral_code(self, user_id: int, code: str, scope: Session | None = None) -> None:
        """Persist a referral code. Raises ReferralCodeConflict if another user holds it."""
        with session_scope(scope, self.session_factory) as db:
            try:
                with db.begin_nested():
                    updated = (
                        db.query(User)
                        .filter(User.id == user_id)
                        .update(
                            {User.referral_code: code, User.updated_at: datetime.now(timezone.utc)},
                            synchronize_session=False,
                        )
                    )
            except IntegrityError as exc:
                raise ReferralCodeConflict() from exc
            if not updated:
                raise UserNotFound()

    def update_balance(self, user_id: int, delta: Decimal, scope: Session | None = None) -> None:
        """Atomic increment in SQL; concurrent credits never overwrite each other."""
        with session_scope(scope, self.session_factory) as db:
            updated = (
                db.query(User)
                .filter(User.id == user_id)
                .update(
                    {User.balance: User.balance + delta, User.updated_at: datetime.now(timezone.utc)},
                    synchronize_session=False,
                )
            )
            if not updated:
                raise UserNotFound()
            db.flush()
