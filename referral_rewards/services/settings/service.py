"""Key/value settings store backing the admin-editable runtime configuration."""
from datetime import datetime, timezone
from collections.abc import Iterable

from sqlalchemy.orm import Session, sessionmaker

from referral_rewards.core.errors import SettingNotFound
from referral_rewards.db.session import SessionLocal, session_scope
from referral_rewards.models.setting import Setting


class SettingRepository:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    def get_value(self, key: str, scope: Session | None = None) -> str:
        with session_scope(scope, self.session_factory) as db:
            value = db.query(Setting.value).filter(Setting.key == key).scalar()
            if value is None:
                raise SettingNotFound(f"setting {key} not found")
            return value

    def get_multiple(self, keys: Iterable[str], scope: Session | None = None) -> dict[str, str]:
        """Values for the keys that exist; missing keys are simply absent."""
        keys = list(keys)
        if not keys:
            return {}
        with session_scope(scope, self.session_factory) as db:
            rows = db.query(Setting.key, Setting.value).filter(Setting.key.in_(keys)).all()
            return {row.key: row.value for row in rows}

    def set_multiple(self, values: dict[str, str], scope: Session | None = None) -> None:
        """Upsert all keys in one transaction."""
        now = datetime.now(timezone.utc)
        with session_scope(scope, self.session_factory) as db:
            for key, value in values.items():
                db.merge(Setting(key=key, value=value, updated_at=now))
            db.flush()
