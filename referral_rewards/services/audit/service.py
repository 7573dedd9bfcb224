from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from referral_rewards.db.session import SessionLocal, session_scope
from referral_rewards.models.audit_log import AuditLog


class AuditService:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    def log(
        self,
        actor_type: str,
        actor_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        payload: dict[str, Any] | None = None,
        scope: Session | None = None,
    ) -> None:
        with session_scope(scope, self.session_factory) as db:
            entry = AuditLog(
                actor_type=actor_type,
                actor_id=actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                payload=payload or {},
            )
            db.add(entry)
            db.flush()
